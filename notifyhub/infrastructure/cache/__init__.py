# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cache infrastructure using Redis.

Example:
    from notifyhub.infrastructure.cache import (
        RedisDigestBucketStore,
        get_redis,
        init_redis,
    )

    await init_redis(settings)
    digests = RedisDigestBucketStore(get_redis())
"""

from notifyhub.infrastructure.cache.digest_store import RedisDigestBucketStore
from notifyhub.infrastructure.cache.redis_client import (
    RedisClient,
    RedisError,
    close_redis,
    get_redis,
    init_redis,
    is_redis_initialized,
)

__all__ = [
    "RedisClient",
    "RedisDigestBucketStore",
    "RedisError",
    "close_redis",
    "get_redis",
    "init_redis",
    "is_redis_initialized",
]
