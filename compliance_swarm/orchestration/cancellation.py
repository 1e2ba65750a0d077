"""
Cancellation token threaded through every suspend point of a run
(tool call, LLM call, retrieval-loop iteration).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunCancelledError(Exception):
    """The run was cancelled by its caller."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Run cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info(f"[Cancel] {reason}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError(self.reason or "Run cancelled")

    async def guard(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """
        Await *awaitable* unless the token fires or *timeout* elapses first.

        Raises RunCancelledError on cancellation and asyncio.TimeoutError on
        timeout; the pending work is cancelled in both cases.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        if waiter in done:
            raise RunCancelledError(self.reason or "Run cancelled")
        raise asyncio.TimeoutError(f"Operation exceeded {timeout}s")
