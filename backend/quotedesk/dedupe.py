from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Iterable, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_Slot = Tuple[asyncio.AbstractEventLoop, str]


class InFlightDeduplicator:
    """Collapses concurrent requests for the same key into one upstream call.

    Entries are scoped to the running event loop: callers on another loop
    start their own call instead of awaiting a future they cannot use.
    Waiters go through ``asyncio.shield`` so a cancelled caller never cancels
    the shared work other callers are waiting on.
    """

    def __init__(self) -> None:
        self._pending: Dict[_Slot, asyncio.Future[Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending(self, key: str) -> asyncio.Future[Any] | None:
        slot = (asyncio.get_running_loop(), key)
        with self._lock:
            return self._pending.get(slot)

    def _release(self, slot: _Slot, future: asyncio.Future[Any]) -> None:
        with self._lock:
            if self._pending.get(slot) is future:
                del self._pending[slot]
        # Mark a failure as retrieved even when nobody joined the call.
        if not future.cancelled():
            future.exception()

    def _register(self, slot: _Slot, future: asyncio.Future[Any]) -> None:
        self._pending[slot] = future
        future.add_done_callback(lambda done, slot=slot: self._release(slot, done))

    async def dedupe(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        slot = (asyncio.get_running_loop(), key)
        with self._lock:
            future = self._pending.get(slot)
            if future is None:
                future = asyncio.ensure_future(factory())
                self._register(slot, future)
            else:
                logger.debug("Joining in-flight request for %s", key)
        return await asyncio.shield(future)

    def claim(self, keys: Iterable[str]) -> Dict[str, asyncio.Future[Any]]:
        """Register futures for keys nobody is resolving yet; the caller must settle them."""
        loop = asyncio.get_running_loop()
        claimed: Dict[str, asyncio.Future[Any]] = {}
        with self._lock:
            for key in keys:
                if (loop, key) in self._pending or key in claimed:
                    continue
                future = loop.create_future()
                self._register((loop, key), future)
                claimed[key] = future
        return claimed

    def cancel_all(self) -> list[asyncio.Future[Any]]:
        """Cancel the calls still running on this loop and return them for awaiting."""
        loop = asyncio.get_running_loop()
        with self._lock:
            futures = [future for (owner, _), future in self._pending.items() if owner is loop]
        for future in futures:
            future.cancel()
        return futures

    @staticmethod
    def resolve(future: asyncio.Future[T], value: T) -> None:
        if not future.done():
            future.set_result(value)

    @staticmethod
    def fail(future: asyncio.Future[Any], exc: BaseException) -> None:
        if future.done():
            return
        if isinstance(exc, asyncio.CancelledError):
            future.cancel()
        else:
            future.set_exception(exc)
