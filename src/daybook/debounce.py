"""Trailing-edge debounce for search-style triggers.

Each call waits ``wait`` seconds; if another call arrives meanwhile, the
earlier one resolves to ``None`` and only the latest one runs. Calls that
have already started are never cancelled.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

import structlog

from daybook.config import get_settings
from daybook.config.settings import MIN_SEARCH_DEBOUNCE_MS

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MIN_WAIT_SECONDS = MIN_SEARCH_DEBOUNCE_MS / 1000


class Debouncer(Generic[T]):
    """Collapse bursts of calls to an async function into the last one."""

    def __init__(
        self,
        func: Callable[..., Awaitable[T]],
        wait: float | None = None,
    ):
        if wait is None:
            wait = get_settings().search_debounce_seconds
        if wait < MIN_WAIT_SECONDS:
            raise ValueError(
                f"Debounce wait must be at least {MIN_WAIT_SECONDS}s, got {wait}s"
            )
        self.func = func
        self.wait = wait
        self._generation = 0
        self.calls = 0
        self.runs = 0

    async def __call__(self, *args: Any, **kwargs: Any) -> T | None:
        self._generation += 1
        generation = self._generation
        self.calls += 1

        await asyncio.sleep(self.wait)

        if generation != self._generation:
            logger.debug("debounce_superseded", generation=generation)
            return None

        self.runs += 1
        return await self.func(*args, **kwargs)
