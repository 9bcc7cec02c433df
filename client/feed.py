"""Live INSERT notifications for the reading tables."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from errors import NetworkError, StorageError

logger = logging.getLogger(__name__)

InsertHandler = Callable[[Dict[str, Any]], None]


class Channel(Protocol):
    """Per-table source of INSERT events."""

    table: str

    def on_insert(self, handler: InsertHandler) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class PollingChannel:
    """Emits one INSERT event per row appended to ``table`` after ``start()``.

    New rows are discovered by polling the remote store for ids above the
    highest id seen so far; events are delivered in id order.
    """

    def __init__(self, remote: Any, table: str, interval: float = 2.0) -> None:
        self.remote = remote
        self.table = table
        self.interval = interval
        self._handlers: List[InsertHandler] = []
        self._task: Optional[asyncio.Task[None]] = None
        self._last_id: Optional[int] = None

    def on_insert(self, handler: InsertHandler) -> None:
        self._handlers.append(handler)

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"feed:{self.table}"
        )

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._handlers.clear()

    async def _run(self) -> None:
        while True:
            try:
                await self._poll()
            except (NetworkError, StorageError) as exc:
                logger.warning(
                    "Live feed poll failed",
                    extra={"table": self.table, "reason": str(exc)},
                )
            except Exception:  # noqa: BLE001
                logger.exception("Unexpected live feed error", extra={"table": self.table})
            await asyncio.sleep(self.interval)

    async def _poll(self) -> None:
        if self._last_id is None:
            newest = await self.remote.fetch_readings(
                self.table, limit=1, order_by="id"
            )
            self._last_id = newest[0]["id"] if newest else 0
            return

        rows = await self.remote.fetch_readings(
            self.table,
            after_id=self._last_id,
            ascending=True,
            order_by="id",
            limit=1000,
        )
        for row in rows:
            self._last_id = row["id"]
            for handler in list(self._handlers):
                try:
                    handler(row)
                except Exception:  # noqa: BLE001
                    logger.exception(
                        "Live feed handler failed",
                        extra={"table": self.table, "reading_id": row["id"]},
                    )


class LiveSubscription:
    """Cancellable handle over a set of channels.

    Handlers run only while the subscription is active, so nothing reaches
    them once ``stop()`` has returned, even if a channel still delivers.
    """

    def __init__(
        self,
        channels: Mapping[str, Channel],
        handlers: Mapping[str, InsertHandler],
    ) -> None:
        self._channels = dict(channels)
        self._handlers = dict(handlers)
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> "LiveSubscription":
        if self._active:
            return self
        self._active = True
        for table, channel in self._channels.items():
            channel.on_insert(self._guarded(self._handlers[table]))
            channel.start()
        return self

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        for table, channel in self._channels.items():
            try:
                channel.stop()
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Error releasing live feed",
                    extra={"table": table, "reason": repr(exc)},
                )

    def _guarded(self, handler: InsertHandler) -> InsertHandler:
        def dispatch(row: Dict[str, Any]) -> None:
            if self._active:
                handler(row)

        return dispatch
