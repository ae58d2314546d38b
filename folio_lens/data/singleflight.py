"""
In-flight request coalescing.

While a call for a key is pending, later callers for the same key await
the pending task instead of issuing a duplicate request.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class SingleFlight:
    def __init__(self):
        self._inflight: dict[str, asyncio.Future] = {}

    def pending(self, key: str) -> bool:
        return key in self._inflight

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run fn() once per key at a time and share its result.

        Every waiter sees the same return value or the same exception.
        """
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug("singleflight_join", key=key)
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(fn())
        self._inflight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]
