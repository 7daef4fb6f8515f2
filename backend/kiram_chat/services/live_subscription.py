"""Push-based snapshot delivery over the realtime bus.

A subscription listens on one bus channel. Every change event marks the view
dirty; a single worker task reloads the full snapshot and hands it to
``on_snapshot``. Bursts of events collapse into one reload, and snapshots are
delivered strictly one after another, so every subscriber observes the same
order. Failures go to ``on_error`` and the subscription keeps running until
it is cancelled.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional

from kiram_chat.core.exceptions import ChatError, StoreUnavailable

logger = logging.getLogger(__name__)

SnapshotLoader = Callable[[], Awaitable[List[Any]]]
SnapshotCallback = Callable[[List[Any]], Any]
ErrorCallback = Callable[[ChatError], Any]


async def _call(callback: Callable, arg) -> None:
    result = callback(arg)
    if inspect.isawaitable(result):
        await result


class LiveSubscription:
    """Cancel handle for a live view; create through :meth:`start`."""

    def __init__(
        self,
        bus,
        channel: str,
        loader: SnapshotLoader,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._bus = bus
        self.channel = channel
        self._loader = loader
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._dirty = asyncio.Event()
        self._cancelled = False
        self._bus_sub = None
        self._tasks: List[asyncio.Task] = []
        self._teardown: Optional[asyncio.Task] = None

    @classmethod
    async def start(cls, bus, channel: str, loader: SnapshotLoader, on_snapshot: SnapshotCallback, on_error: Optional[ErrorCallback] = None) -> "LiveSubscription":
        sub = cls(bus, channel, loader, on_snapshot, on_error)
        # listen before the first load so no change between the two is missed
        sub._bus_sub = await bus.subscribe(channel, sub._on_change, sub._on_bus_error)
        sub._dirty.set()
        sub._tasks = [
            asyncio.create_task(sub._bus_sub.run(), name=f"bus:{channel}"),
            asyncio.create_task(sub._deliver_loop(), name=f"snapshots:{channel}"),
        ]
        logger.debug(f"Live subscription started on {channel}")
        return sub

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def _on_change(self, _message: str) -> None:
        self._dirty.set()

    async def _on_bus_error(self, error: Exception) -> None:
        await self._report(StoreUnavailable(f"Change feed interrupted on {self.channel}: {error}"))
        # changes published during the outage were never seen; reload once the feed is back
        self._dirty.set()

    async def _report(self, error: ChatError) -> None:
        if self._cancelled or self._on_error is None:
            return
        try:
            await _call(self._on_error, error)
        except Exception:
            logger.exception(f"on_error callback failed for {self.channel}")

    async def _deliver_loop(self) -> None:
        while not self._cancelled:
            await self._dirty.wait()
            self._dirty.clear()
            try:
                snapshot = await self._loader()
            except ChatError as e:
                logger.warning(f"Snapshot load failed on {self.channel}: {e.detail}")
                await self._report(e)
                continue
            except Exception as e:
                logger.exception(f"Snapshot load crashed on {self.channel}")
                await self._report(StoreUnavailable(f"Could not load snapshot for {self.channel}: {e}"))
                continue
            if self._cancelled:
                return
            try:
                await _call(self._on_snapshot, snapshot)
            except Exception:
                logger.exception(f"on_snapshot callback failed for {self.channel}")

    def cancel(self) -> None:
        """Stop delivery now; no callback runs after this returns. Teardown finishes in the background."""
        if self._cancelled:
            return
        self._cancelled = True
        for task in self._tasks:
            task.cancel()
        self._teardown = asyncio.ensure_future(self._release())

    async def _release(self) -> None:
        if self._bus_sub is not None:
            await self._bus_sub.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.debug(f"Live subscription released on {self.channel}")

    async def aclose(self) -> None:
        """Cancel and wait until the underlying watch is released."""
        self.cancel()
        if self._teardown is not None:
            await self._teardown
