# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis client for digest buckets and message brokering.

Wraps redis-py's async client with connection pooling and error wrapping.
Tenant-specific keys are prefixed with tenant:{tenant_id}: so tenants
never share state.

Example:
    from notifyhub.infrastructure.cache import init_redis, get_redis

    await init_redis(settings)
    redis = get_redis()
    await redis.rpush("digest:bucket:abc", "instance-1")
"""

from typing import TYPE_CHECKING, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError as BaseRedisError

if TYPE_CHECKING:
    from notifyhub.core.config.settings import Settings

# Module-level state
_redis_client: Optional["RedisClient"] = None


class RedisError(Exception):
    """Exception raised for Redis operation failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying Redis error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class RedisClient:
    """Async Redis client with tenant key prefixing.

    Only the list and sorted-set operations the digest store needs are
    exposed, each wrapping driver failures in RedisError.

    Example:
        client = RedisClient(settings)
        await client.connect()
        await client.zadd_nx("digest:due", {"bucket": 1700000000.0})
        await client.close()
    """

    TENANT_KEY_PREFIX = "tenant"

    def __init__(self, settings: Optional["Settings"] = None, redis: Optional[Redis] = None) -> None:
        """Initialize the Redis client.

        Args:
            settings: Settings with Redis configuration, used by connect().
            redis: An already connected client, mainly for tests.
        """
        self._settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis

    async def connect(self) -> None:
        """Create the Redis connection pool.

        Raises:
            RedisError: If connection fails.
        """
        if self._settings is None:
            raise RedisError("Redis settings missing; cannot connect")
        try:
            self._pool = ConnectionPool.from_url(
                self._settings.redis.url,
                max_connections=self._settings.redis.max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)
            await self._redis.ping()
        except BaseRedisError as e:
            raise RedisError("Failed to connect to Redis", e) from e

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    def _ensure_connected(self) -> Redis:
        """Return the connected client.

        Raises:
            RedisError: If not connected.
        """
        if self._redis is None:
            raise RedisError("Redis client not connected. Call connect() first.")
        return self._redis

    def tenant_key(self, tenant_id: str, key: str) -> str:
        """Build a tenant-prefixed key: tenant:{tenant_id}:{key}."""
        return f"{self.TENANT_KEY_PREFIX}:{tenant_id}:{key}"

    # ========== List operations ==========

    async def rpush(self, key: str, value: str) -> int:
        redis = self._ensure_connected()
        try:
            return await redis.rpush(key, value)
        except BaseRedisError as e:
            raise RedisError(f"Failed to append to list: {key}", e) from e

    async def lrem(self, key: str, value: str) -> int:
        redis = self._ensure_connected()
        try:
            return await redis.lrem(key, 0, value)
        except BaseRedisError as e:
            raise RedisError(f"Failed to remove from list: {key}", e) from e

    async def lrange(self, key: str) -> list[str]:
        redis = self._ensure_connected()
        try:
            return list(await redis.lrange(key, 0, -1))
        except BaseRedisError as e:
            raise RedisError(f"Failed to read list: {key}", e) from e

    # ========== Sorted set operations ==========

    async def zadd_nx(self, key: str, mapping: dict[str, float]) -> int:
        """Add members without overwriting existing scores."""
        redis = self._ensure_connected()
        try:
            return await redis.zadd(key, mapping, nx=True)
        except BaseRedisError as e:
            raise RedisError(f"Failed to add to sorted set: {key}", e) from e

    async def zrangebyscore(self, key: str, max_score: float) -> list[str]:
        """Members scored at or below ``max_score``, lowest first."""
        redis = self._ensure_connected()
        try:
            return list(await redis.zrangebyscore(key, "-inf", max_score))
        except BaseRedisError as e:
            raise RedisError(f"Failed to range sorted set: {key}", e) from e

    # ========== Transactions ==========

    async def take_list(self, list_key: str, index_key: str, member: str) -> list[str]:
        """Atomically read and delete a list and drop its index entry.

        Runs LRANGE, DEL and ZREM in one MULTI/EXEC block, so exactly one
        caller receives the list contents.
        """
        redis = self._ensure_connected()
        try:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.lrange(list_key, 0, -1)
                pipe.delete(list_key)
                pipe.zrem(index_key, member)
                items, _, _ = await pipe.execute()
            return list(items or [])
        except BaseRedisError as e:
            raise RedisError(f"Failed to drain list: {list_key}", e) from e

    # ========== Health check ==========

    async def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            redis = self._ensure_connected()
            await redis.ping()
            return True
        except (RedisError, BaseRedisError):
            return False


# ========== Module-level functions ==========


async def init_redis(settings: "Settings") -> None:
    """Initialize the global Redis client.

    Raises:
        RedisError: If connection fails.
    """
    global _redis_client

    _redis_client = RedisClient(settings)
    await _redis_client.connect()


async def close_redis() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def get_redis() -> RedisClient:
    """Get the global Redis client.

    Raises:
        RedisError: If Redis has not been initialized.
    """
    if _redis_client is None:
        raise RedisError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def is_redis_initialized() -> bool:
    return _redis_client is not None
