# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis-backed digest bucket store shared by worker processes.

Layout:
    digest:bucket:{bucket}   list of instance IDs (RPUSH keeps arrival order)
    digest:due               sorted set of bucket keys scored by due epoch

A drain reads and deletes the list and its index entry in one MULTI/EXEC,
so a bucket is claimed by exactly one worker. Only a drain drops an index
entry; a bucket emptied by remove() stays indexed and drains to nothing.
"""

from datetime import datetime

from notifyhub.core.notifications.digest import DigestBucketStore
from notifyhub.core.notifications.scheduler import BucketKey
from notifyhub.infrastructure.cache.redis_client import RedisClient


class RedisDigestBucketStore(DigestBucketStore):
    """Digest buckets stored in Redis.

    Attributes:
        namespace: Key prefix, so several deployments can share a server.
    """

    def __init__(self, client: RedisClient, namespace: str = "digest") -> None:
        self._client = client
        self.namespace = namespace

    @property
    def due_key(self) -> str:
        return f"{self.namespace}:due"

    def bucket_key(self, key: BucketKey) -> str:
        return f"{self.namespace}:bucket:{key}"

    async def add(self, key: BucketKey, instance_id: str, due_at: datetime) -> None:
        await self._client.rpush(self.bucket_key(key), instance_id)
        await self._client.zadd_nx(self.due_key, {str(key): due_at.timestamp()})

    async def remove(self, key: BucketKey, instance_id: str) -> bool:
        return await self._client.lrem(self.bucket_key(key), instance_id) > 0

    async def members(self, key: BucketKey) -> list[str]:
        return await self._client.lrange(self.bucket_key(key))

    async def due(self, now: datetime) -> list[BucketKey]:
        keys = await self._client.zrangebyscore(self.due_key, now.timestamp())
        return [BucketKey.parse(k) for k in keys]

    async def drain(self, key: BucketKey) -> list[str]:
        members = await self._client.take_list(self.bucket_key(key), self.due_key, str(key))
        # RPUSH retries may have appended an ID twice.
        return list(dict.fromkeys(members))
