# qrlens/cancel.py

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from .errors import ScanCancelled

T = TypeVar("T")


class CancelToken:
    """
    Cooperative cancellation flag owned by one scan session.

    Every suspension point in the acquisition chain goes through `guard`.
    A cancel abandons whatever the guarded work is waiting on, and work
    that finishes after a cancel is dropped instead of acted on.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ScanCancelled()

        work = asyncio.ensure_future(awaitable)
        stop = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not work.done():
                work.cancel()

        if self.cancelled:
            if work.done() and not work.cancelled():
                work.exception()  # mark a late failure as retrieved
            raise ScanCancelled()
        return work.result()
