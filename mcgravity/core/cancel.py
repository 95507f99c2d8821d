"""Shared cancellation flag for the flow runner and its executors."""

from __future__ import annotations

import asyncio
import threading

from mcgravity.utils.logging import get_logger

log = get_logger(__name__)


class CancelFlag:
    """A boolean that, once set, stays set.

    Setting the flag never depends on anyone listening: the value is stored
    first and waiters are notified afterwards, so a waiter created later still
    sees it. ``set`` is safe to call from any thread (signal handlers, a UI
    thread); waiters are woken on their own event loop.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._set = False
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future[None]]] = []

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._set

    def __bool__(self) -> bool:
        return self.is_set

    def set(self) -> None:
        with self._lock:
            if self._set:
                return
            self._set = True
            waiters, self._waiters = self._waiters, []
        log.info("cancel_requested", waiters=len(waiters))
        for loop, fut in waiters:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_resolve, fut)

    async def wait(self) -> None:
        """Return once the flag is set (immediately if it already is)."""
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[None] = loop.create_future()
        with self._lock:
            if self._set:
                return
            entry = (loop, fut)
            self._waiters.append(entry)
        try:
            await fut
        finally:
            with self._lock:
                if entry in self._waiters:
                    self._waiters.remove(entry)


def _resolve(fut: asyncio.Future[None]) -> None:
    if not fut.done():
        fut.set_result(None)
