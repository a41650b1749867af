"""Per-user turn serialization.

Turns for the same user mutate the same exchange counters, so they must not
interleave. Turns for different users never wait on each other.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from behavior_engine.core.errors import ConcurrentTurnError
from behavior_engine.core.logging import get_logger

logger = get_logger(__name__)


class UserTurnLocks:
    """Table of asyncio.Lock keyed by user id. Idle entries are pruned."""

    def __init__(self, reject_concurrent: bool = False):
        self.reject_concurrent = reject_concurrent
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, user_id: str, reject: bool | None = None) -> AsyncIterator[None]:
        """
        Hold the user's turn lock for the duration of the block.

        Args:
            user_id: User whose turns are serialized
            reject: Override reject_concurrent for this acquisition; False
                always queues

        Raises:
            ConcurrentTurnError: If rejection applies and another turn for
                this user is in progress
        """
        if reject is None:
            reject = self.reject_concurrent
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        if reject and lock.locked():
            raise ConcurrentTurnError(user_id)

        self._waiters[user_id] = self._waiters.get(user_id, 0) + 1
        try:
            if lock.locked():
                logger.debug(f"Queued turn for user {user_id}")
            async with lock:
                yield
        finally:
            self._waiters[user_id] -= 1
            if self._waiters[user_id] == 0:
                del self._waiters[user_id]
                self._locks.pop(user_id, None)
