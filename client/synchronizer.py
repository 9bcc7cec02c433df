"""Keeps the dashboard's reading buffers in step with the remote store."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from client.feed import Channel, LiveSubscription, PollingChannel
from datastore.telemetry_store import ATMOSPHERIC_CONDITIONS, WATER_LEVELS
from errors import NetworkError, StorageError
from models.records import AtmosphericReading, SystemStatus, WaterReading, format_timestamp
from services.status import detect
from storage.local_cache import (
    LAST_ATMOSPHERIC_KEY,
    LAST_UPDATE_KEY,
    LAST_WATER_KEY,
    LocalCacheStore,
)

logger = logging.getLogger(__name__)

BUFFER_LIMIT = 100

_Reading = TypeVar("_Reading", WaterReading, AtmosphericReading)


class LoadState(str, Enum):
    idle = "idle"
    loading = "loading"
    loaded = "loaded"
    failed = "failed"


@dataclass(frozen=True)
class DashboardSnapshot:
    """Read-only view of the synchronizer state handed to the view layer."""

    water: Tuple[WaterReading, ...]
    atmospheric: Tuple[AtmosphericReading, ...]
    latest_water: Optional[WaterReading]
    latest_atmospheric: Optional[AtmosphericReading]
    status: SystemStatus
    is_online: bool
    load_state: LoadState
    last_update: Optional[datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decode_rows(rows: List[Dict[str, Any]], model: Type[_Reading], table: str) -> List[_Reading]:
    readings: List[_Reading] = []
    for row in rows:
        try:
            readings.append(model.from_row(row))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed row", extra={"table": table, "reason": str(exc)})
    return readings


class DataSynchronizer:
    """Owns the water and atmospheric buffers (newest first, at most 100 each).

    Buffers are filled by :meth:`initial_load` and then extended by live INSERT
    notifications in arrival order; they are never re-sorted. The latest
    reading of each kind and the last update instant are shadowed in the local
    cache so a later session can show them while offline.
    """

    def __init__(
        self,
        remote: Any,
        cache: LocalCacheStore,
        *,
        load_timeout: float = 10.0,
        poll_interval: float = 2.0,
        tz: Optional[tzinfo] = None,
        clock: Callable[[], datetime] = _utcnow,
        channel_factory: Optional[Callable[[str], Channel]] = None,
    ) -> None:
        self.remote = remote
        self.cache = cache
        self.load_timeout = load_timeout
        self.tz = tz
        self._clock = clock
        self._channel_factory = channel_factory or (
            lambda table: PollingChannel(remote, table, interval=poll_interval)
        )
        self._water: List[WaterReading] = []
        self._atmospheric: List[AtmosphericReading] = []
        self._latest_water = cache.last_water_reading()
        self._latest_atmospheric = cache.last_atmospheric_reading()
        self._last_update = cache.last_update()
        self._is_online = True
        self._load_state = LoadState.idle
        self._listeners: List[Callable[[DashboardSnapshot], None]] = []

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def is_online(self) -> bool:
        return self._is_online

    async def initial_load(self) -> bool:
        """Replace both buffers with the 100 newest rows of each table.

        Returns False (and leaves the buffers untouched) when the store cannot
        be reached in time; the cached latest readings stay available.
        """
        self._load_state = LoadState.loading
        try:
            water_rows, atmospheric_rows = await asyncio.wait_for(
                asyncio.gather(
                    self.remote.fetch_readings(WATER_LEVELS, limit=BUFFER_LIMIT),
                    self.remote.fetch_readings(ATMOSPHERIC_CONDITIONS, limit=BUFFER_LIMIT),
                ),
                timeout=self.load_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Initial load timed out", extra={"reason": f"{self.load_timeout}s"})
            self._load_state = LoadState.failed
            self._notify()
            return False
        except (NetworkError, StorageError) as exc:
            logger.error("Error loading data", extra={"reason": str(exc)})
            self._load_state = LoadState.failed
            self._notify()
            return False

        self._water = _decode_rows(water_rows, WaterReading, WATER_LEVELS)[:BUFFER_LIMIT]
        self._atmospheric = _decode_rows(
            atmospheric_rows, AtmosphericReading, ATMOSPHERIC_CONDITIONS
        )[:BUFFER_LIMIT]

        if self._water:
            self._latest_water = self._water[0]
            self._write_cache(LAST_WATER_KEY, self._latest_water.to_row())
        if self._atmospheric:
            self._latest_atmospheric = self._atmospheric[0]
            self._write_cache(LAST_ATMOSPHERIC_KEY, self._latest_atmospheric.to_row())
        self._touch()
        self._load_state = LoadState.loaded
        logger.info(
            "Loaded reading buffers",
            extra={"row_count": len(self._water) + len(self._atmospheric)},
        )
        self._notify()
        return True

    def subscribe_live(self) -> LiveSubscription:
        """Start INSERT feeds for both tables; ``stop()`` the result to cancel."""
        channels = {
            WATER_LEVELS: self._channel_factory(WATER_LEVELS),
            ATMOSPHERIC_CONDITIONS: self._channel_factory(ATMOSPHERIC_CONDITIONS),
        }
        handlers = {
            WATER_LEVELS: self._on_water_insert,
            ATMOSPHERIC_CONDITIONS: self._on_atmospheric_insert,
        }
        return LiveSubscription(channels, handlers).start()

    def set_online(self, online: bool) -> None:
        if online == self._is_online:
            return
        self._is_online = online
        logger.info("Connectivity changed", extra={"reason": "online" if online else "offline"})
        self._notify()

    def status(self, now: Optional[datetime] = None) -> SystemStatus:
        if now is None:
            now = self._clock().astimezone(self.tz)
        return detect(self._water, now=now, tz=self.tz)

    def snapshot(self) -> DashboardSnapshot:
        return DashboardSnapshot(
            water=tuple(self._water),
            atmospheric=tuple(self._atmospheric),
            latest_water=self._latest_water,
            latest_atmospheric=self._latest_atmospheric,
            status=self.status(),
            is_online=self._is_online,
            load_state=self._load_state,
            last_update=self._last_update,
        )

    def add_listener(self, listener: Callable[[DashboardSnapshot], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def lookup_at(
        self, instant: datetime
    ) -> Tuple[Optional[WaterReading], Optional[AtmosphericReading]]:
        """Newest reading of each kind taken at or before ``instant``."""
        water_rows, atmospheric_rows = await asyncio.gather(
            self.remote.fetch_readings(WATER_LEVELS, limit=1, lte=instant),
            self.remote.fetch_readings(ATMOSPHERIC_CONDITIONS, limit=1, lte=instant),
        )
        water = _decode_rows(water_rows, WaterReading, WATER_LEVELS)
        atmospheric = _decode_rows(atmospheric_rows, AtmosphericReading, ATMOSPHERIC_CONDITIONS)
        return (water[0] if water else None, atmospheric[0] if atmospheric else None)

    def describe_freshness(self, now: Optional[datetime] = None) -> str:
        marker = "online" if self._is_online else "offline"
        return f"{marker} · last update: {_time_ago(self._last_update, now or self._clock())}"

    def _on_water_insert(self, row: Dict[str, Any]) -> None:
        readings = _decode_rows([row], WaterReading, WATER_LEVELS)
        if not readings:
            return
        reading = readings[0]
        self._water.insert(0, reading)
        del self._water[BUFFER_LIMIT:]
        self._latest_water = reading
        self._write_cache(LAST_WATER_KEY, reading.to_row())
        self._touch()
        self._notify()

    def _on_atmospheric_insert(self, row: Dict[str, Any]) -> None:
        readings = _decode_rows([row], AtmosphericReading, ATMOSPHERIC_CONDITIONS)
        if not readings:
            return
        reading = readings[0]
        self._atmospheric.insert(0, reading)
        del self._atmospheric[BUFFER_LIMIT:]
        self._latest_atmospheric = reading
        self._write_cache(LAST_ATMOSPHERIC_KEY, reading.to_row())
        self._touch()
        self._notify()

    def _touch(self) -> None:
        self._last_update = self._clock()
        self._write_cache(LAST_UPDATE_KEY, format_timestamp(self._last_update))

    def _write_cache(self, key: str, value: Any) -> None:
        try:
            self.cache.set(key, value)
        except OSError as exc:
            logger.warning("Could not write local cache", extra={"reason": f"{key}: {exc}"})

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)


def _time_ago(instant: Optional[datetime], now: datetime) -> str:
    if instant is None:
        return "never"
    minutes = int((now - instant).total_seconds() // 60)
    hours = minutes // 60
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"
