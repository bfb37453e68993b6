"""
Course Quiz Attempt Service
Per-learner locks serializing attempt transitions
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import LockError

from ..exceptions import AttemptLockTimeoutException

logger = logging.getLogger(__name__)


class AttemptLock:
    """Mutual exclusion for attempt transitions on one (user, quiz) pair.

    Uses a Redis lock when a client is available so that several worker
    processes share it, otherwise an in-process asyncio.Lock per key.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, timeout: float = 10):
        self._redis = redis_client
        self._timeout = timeout
        self._local_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def is_distributed(self) -> bool:
        return self._redis is not None

    @staticmethod
    def _key(quiz_id, user_id) -> str:
        return f"lock:attempt:{quiz_id}:{user_id}"

    @asynccontextmanager
    async def hold(self, quiz_id, user_id) -> AsyncIterator[None]:
        key = self._key(quiz_id, user_id)

        if self._redis is not None:
            async with self._hold_redis(key, quiz_id, user_id):
                yield
            return

        lock = self._local_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._local_locks[key] = lock

        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out waiting for attempt lock {key}")
            raise AttemptLockTimeoutException(quiz_id, user_id)

        try:
            yield
        finally:
            lock.release()

    @asynccontextmanager
    async def _hold_redis(self, key: str, quiz_id, user_id) -> AsyncIterator[None]:
        lock = self._redis.lock(key, timeout=self._timeout, blocking_timeout=self._timeout)

        if not await lock.acquire():
            logger.warning(f"Timed out waiting for attempt lock {key}")
            raise AttemptLockTimeoutException(quiz_id, user_id)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lock expired while held; the unique constraint and status guard still apply
                logger.warning(f"Attempt lock {key} released late: {e}")


__all__ = ["AttemptLock"]
