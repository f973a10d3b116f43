from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from loan_console.core.settings import settings

logger = logging.getLogger(__name__)

CommitCallback = Callable[[str], Awaitable[Any] | Any]


class SearchDebouncer:
    """Quiet-period gate in front of search commits.

    Each ``schedule`` restarts the timer; only the last value survives a
    burst of keystrokes. ``pending_value`` is what the operator typed,
    ``committed_value`` is what the listing was last asked for.
    """

    def __init__(
        self,
        on_commit: CommitCallback,
        *,
        delay: float | None = None,
        committed_value: str = "",
    ) -> None:
        self._on_commit = on_commit
        self.delay = settings.search_debounce_seconds if delay is None else delay
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self._pending: str | None = None
        self._committed = committed_value

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    @property
    def pending_value(self) -> str | None:
        return self._pending

    @property
    def committed_value(self) -> str:
        return self._committed

    def schedule(self, value: str) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._pending = value
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        self._pending = None
        return True

    async def flush(self) -> None:
        """Commit the pending value now instead of waiting out the timer."""
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        result = self._commit()
        if inspect.isawaitable(result):
            await result

    async def wait_idle(self) -> None:
        if self._task is not None and not self._task.done():
            await self._task

    def _fire(self) -> None:
        self._handle = None
        result = self._commit()
        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(result)
            self._task.add_done_callback(self._log_failure)

    def _commit(self):
        value = self._pending or ""
        self._pending = None
        self._committed = value
        logger.debug("Search committed after quiet period: %r", value)
        return self._on_commit(value)

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Debounced search commit failed: %s", exc)
