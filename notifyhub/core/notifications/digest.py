# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Digest bucket storage.

A bucket holds instance IDs waiting for their period to end. Appends to
one bucket are serialized by a per-bucket lock; different buckets never
contend. ``drain`` atomically takes every member and forgets the bucket.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from notifyhub.core.notifications.locks import KeyedLock
from notifyhub.core.notifications.scheduler import BucketKey


class DigestBucketStore(ABC):
    """Storage for digest buckets."""

    @abstractmethod
    async def add(self, key: BucketKey, instance_id: str, due_at: datetime) -> None:
        """Append an instance to a bucket, creating it with ``due_at`` if new."""

    @abstractmethod
    async def remove(self, key: BucketKey, instance_id: str) -> bool:
        """Remove one member. Returns False if it was not there."""

    @abstractmethod
    async def members(self, key: BucketKey) -> list[str]:
        """Peek at a bucket's members without draining it."""

    @abstractmethod
    async def due(self, now: datetime) -> list[BucketKey]:
        """Keys of buckets whose due instant is at or before ``now``."""

    @abstractmethod
    async def drain(self, key: BucketKey) -> list[str]:
        """Atomically take all members and delete the bucket."""


@dataclass
class _Bucket:
    due_at: datetime
    members: list[str] = field(default_factory=list)


class InMemoryDigestBucketStore(DigestBucketStore):
    """Process-local bucket store."""

    def __init__(self) -> None:
        self._buckets: dict[BucketKey, _Bucket] = {}
        self._locks = KeyedLock()

    async def add(self, key: BucketKey, instance_id: str, due_at: datetime) -> None:
        async with self._locks.hold(key):
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(due_at=due_at)
            if instance_id not in bucket.members:
                bucket.members.append(instance_id)

    async def remove(self, key: BucketKey, instance_id: str) -> bool:
        async with self._locks.hold(key):
            bucket = self._buckets.get(key)
            if bucket is None or instance_id not in bucket.members:
                return False
            bucket.members.remove(instance_id)
            if not bucket.members:
                del self._buckets[key]
            return True

    async def members(self, key: BucketKey) -> list[str]:
        bucket = self._buckets.get(key)
        return list(bucket.members) if bucket else []

    async def due(self, now: datetime) -> list[BucketKey]:
        ready = [(b.due_at, str(k), k) for k, b in self._buckets.items() if b.due_at <= now]
        return [k for _, _, k in sorted(ready)]

    async def drain(self, key: BucketKey) -> list[str]:
        async with self._locks.hold(key):
            bucket = self._buckets.pop(key, None)
        return list(bucket.members) if bucket else []
