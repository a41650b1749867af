"""Fire-and-forget audit writes with best-effort flush on shutdown."""

import asyncio
from collections.abc import Awaitable

from behavior_engine.core.logging import get_logger

logger = get_logger(__name__)


class AuditWriter:
    """Runs audit coroutines in the background. Failures are logged, never raised."""

    def __init__(self):
        self._pending: set[asyncio.Task] = set()
        self.failures = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, coro: Awaitable, label: str = "audit") -> asyncio.Task:
        task = asyncio.ensure_future(self._run(coro, label))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run(self, coro: Awaitable, label: str) -> None:
        try:
            await coro
        except Exception as e:
            self.failures += 1
            logger.error(f"Audit write failed ({label}): {e}")

    async def flush(self, timeout: float | None = 5.0) -> bool:
        """
        Wait for pending writes.

        Returns:
            True when everything finished within the timeout
        """
        if not self._pending:
            return True

        done, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        if not_done:
            logger.warning(f"Audit flush timed out with {len(not_done)} writes pending")
            return False
        return True

    async def aclose(self, timeout: float | None = 5.0) -> None:
        """Flush, then cancel whatever is still running."""
        if not await self.flush(timeout):
            for task in list(self._pending):
                task.cancel()
            await asyncio.gather(*self._pending, return_exceptions=True)
