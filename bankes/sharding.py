"""Hash-range shards assigned to instances, guarded by Redis locks."""

from __future__ import annotations

import asyncio
import enum
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from .redis_client import RedisClient

_logger = logging.getLogger(__name__)

U64_MAX = 2**64 - 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hash_key(key: str) -> int:
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big")


class ShardStatus(enum.Enum):
    AVAILABLE = "Available"
    ASSIGNED = "Assigned"
    REBALANCING = "Rebalancing"
    FAILED = "Failed"


@dataclass
class ShardInfo:
    id: str
    range_start: int
    range_end: int
    instance_id: str | None
    status: ShardStatus
    last_updated: datetime


@dataclass
class ShardConfig:
    shard_count: int = 16
    rebalance_threshold: float = 0.2
    rebalance_interval: timedelta = timedelta(seconds=300)
    lock_timeout: timedelta = timedelta(seconds=30)
    lock_retry_interval: timedelta = timedelta(milliseconds=100)
    max_retries: int = 3


class LockAcquisitionError(Exception):
    """Raised when a distributed lock stays held through every retry."""


class DistributedLock:
    """A lock held in Redis under a key, owned by a random id."""

    def __init__(self, redis_client: RedisClient, key: str, lock_id: str) -> None:
        self.redis_client = redis_client
        self.key = key
        self.lock_id = lock_id

    async def release(self) -> bool:
        """Delete the lock if this owner still holds it; return whether it did."""
        released = await self.redis_client.delete_if_equals(self.key, self.lock_id)
        if not released:
            _logger.warning(
                "Lock %s was already released or taken by another client", self.key
            )
        return released

    async def __aenter__(self) -> DistributedLock:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.release()


class LockManager:
    """Acquires and releases distributed locks with a few retries."""

    def __init__(
        self,
        redis_client: RedisClient,
        max_retries: int = 3,
        retry_interval: timedelta = timedelta(milliseconds=100),
    ) -> None:
        self.redis_client = redis_client
        self.max_retries = max_retries
        self.retry_interval = retry_interval

    async def acquire_lock(self, key: str, timeout: timedelta) -> DistributedLock:
        """Take the lock for key, expiring after timeout, or raise LockAcquisitionError."""
        lock_key = f"lock:{key}"
        lock_id = str(uuid.uuid4())
        milliseconds = timeout // timedelta(milliseconds=1)
        for _ in range(self.max_retries):
            if await self.redis_client.set_nx_px(lock_key, lock_id, milliseconds):
                return DistributedLock(self.redis_client, lock_key, lock_id)
            await asyncio.sleep(self.retry_interval.total_seconds())
        raise LockAcquisitionError("Failed to acquire lock after retries")

    async def release_lock(self, lock: DistributedLock) -> bool:
        return await lock.release()


class ShardManager:
    """Splits the 64-bit hash space into shards and balances them over instances."""

    def __init__(
        self,
        redis_client: RedisClient,
        config: ShardConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.redis_client = redis_client
        self.config = config or ShardConfig()
        self._clock = clock or _utcnow
        self.shards: dict[str, ShardInfo] = {}
        self.lock_manager = LockManager(
            redis_client, self.config.max_retries, self.config.lock_retry_interval
        )

    def initialize_shards(self) -> None:
        """Create shard-0 .. shard-N covering the whole hash range, all unassigned."""
        count = self.config.shard_count
        range_size = U64_MAX // count
        for i in range(count):
            shard_id = f"shard-{i}"
            range_end = U64_MAX if i == count - 1 else (i + 1) * range_size - 1
            self.shards[shard_id] = ShardInfo(
                id=shard_id,
                range_start=i * range_size,
                range_end=range_end,
                instance_id=None,
                status=ShardStatus.AVAILABLE,
                last_updated=self._clock(),
            )

    async def assign_shard(self, shard_id: str, instance_id: str) -> None:
        """Assign a shard to an instance under the shard's lock."""
        lock = await self.lock_manager.acquire_lock(
            f"shard:lock:{shard_id}", self.config.lock_timeout
        )
        try:
            shard = self.shards.get(shard_id)
            if shard is not None:
                shard.instance_id = instance_id
                shard.status = ShardStatus.ASSIGNED
                shard.last_updated = self._clock()
        finally:
            await self.lock_manager.release_lock(lock)

    def shard_for_key(self, key: str) -> ShardInfo | None:
        """The shard whose range holds the key's hash, if shards exist."""
        hashed = _hash_key(key)
        return next(
            (s for s in self.shards.values() if s.range_start <= hashed <= s.range_end),
            None,
        )

    async def rebalance_shards(self) -> bool:
        """Move shards from overloaded to underloaded instances; return whether it did."""
        lock = await self.lock_manager.acquire_lock(
            "shard:rebalance:lock", self.config.lock_timeout
        )
        try:
            instance_shards: dict[str, list[ShardInfo]] = {}
            for shard in self.shards.values():
                if shard.instance_id is not None:
                    instance_shards.setdefault(shard.instance_id, []).append(shard)
            if not instance_shards:
                return False

            avg = len(self.shards) / len(instance_shards)
            threshold = self.config.rebalance_threshold
            if not any(
                abs(len(shards) - avg) / avg > threshold
                for shards in instance_shards.values()
            ):
                return False

            _logger.info("Starting shard rebalancing")
            await self._perform_rebalancing(instance_shards, avg)
            return True
        finally:
            await self.lock_manager.release_lock(lock)

    async def _perform_rebalancing(
        self, instance_shards: dict[str, list[ShardInfo]], avg: float
    ) -> None:
        threshold = self.config.rebalance_threshold
        overloaded = [
            iid for iid, shards in instance_shards.items()
            if len(shards) > avg * (1.0 + threshold)
        ]
        underloaded = [
            iid for iid, shards in instance_shards.items()
            if len(shards) < avg * (1.0 - threshold)
        ]
        for overloaded_id in overloaded:
            first_shard_id = instance_shards[overloaded_id][0].id
            for underloaded_id in underloaded:
                await self.assign_shard(first_shard_id, underloaded_id)