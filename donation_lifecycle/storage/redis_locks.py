"""Redis-based distributed locks for claims and scheduler sweeps."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import UUID

import redis.asyncio as redis
from redis.exceptions import LockError

from donation_lifecycle.logging import get_logger

logger = get_logger(__name__)

_KEY_PREFIX = "dlc:lock"
_RETRY_INTERVAL_SECONDS = 0.05


class RedisLockHelper:
    """Helper for Redis-based distributed locking."""

    def __init__(self, redis_url: str, ttl_seconds: int = 5):
        """Initialize Redis lock helper."""
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        self._client = redis.from_url(self.redis_url, encoding="utf-8")
        await self._client.ping()
        logger.info("redis_connected")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @asynccontextmanager
    async def acquire_offer_lock(
        self, offer_id: UUID, wait_seconds: float = 0
    ) -> AsyncGenerator[bool, None]:
        """Acquire exclusive lock on an offer for claim operations.

        Waits up to ``wait_seconds`` for a busy lock before giving up.
        """
        async with self._acquire(
            f"{_KEY_PREFIX}:offer:{offer_id}", self.ttl_seconds, wait_seconds
        ) as acquired:
            yield acquired

    @asynccontextmanager
    async def acquire_sweep_lock(
        self, sweep_name: str, ttl_seconds: int
    ) -> AsyncGenerator[bool, None]:
        """Acquire exclusive lock on a scheduler sweep; never waits."""
        async with self._acquire(
            f"{_KEY_PREFIX}:sweep:{sweep_name}", ttl_seconds, 0
        ) as acquired:
            yield acquired

    @asynccontextmanager
    async def _acquire(
        self, lock_key: str, ttl_seconds: int, wait_seconds: float
    ) -> AsyncGenerator[bool, None]:
        client = self._require_client()
        # Token check on release runs server-side, so an expired lock
        # re-taken by another holder is never deleted here
        lock = client.lock(
            lock_key,
            timeout=ttl_seconds,
            sleep=_RETRY_INTERVAL_SECONDS,
            thread_local=False,
        )
        acquired = await lock.acquire(
            blocking=wait_seconds > 0, blocking_timeout=wait_seconds
        )
        if not acquired:
            logger.debug("lock_busy", lock_key=lock_key)

        try:
            yield acquired
        finally:
            if acquired:
                try:
                    await lock.release()
                except LockError as e:
                    logger.warning("lock_lost_before_release", lock_key=lock_key, error=str(e))

    def _require_client(self) -> redis.Redis:
        if not self._client:
            raise RuntimeError("Redis client not connected")
        return self._client
