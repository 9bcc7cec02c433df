"""Tests for the reading buffers, live feed handling and offline fallback."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

from client.feed import InsertHandler
from client.synchronizer import BUFFER_LIMIT, DataSynchronizer, LoadState
from datastore.telemetry_store import ATMOSPHERIC_CONDITIONS, WATER_LEVELS
from errors import NetworkError
from storage.local_cache import LAST_ATMOSPHERIC_KEY, LAST_UPDATE_KEY, LAST_WATER_KEY, LocalCacheStore

NOW = datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc)


def _water_row(reading_id: int, liters: float, minutes: int = 0) -> Dict[str, Any]:
    return {
        "id": reading_id,
        "timestamp": (NOW - timedelta(minutes=minutes)).isoformat(),
        "volume_m3": liters / 1000.0,
        "volume_liters": liters,
    }


def _atmospheric_row(reading_id: int, temperature: float, minutes: int = 0) -> Dict[str, Any]:
    return {
        "id": reading_id,
        "timestamp": (NOW - timedelta(minutes=minutes)).isoformat(),
        "temperature": temperature,
        "humidity": 55.0,
    }


class FakeRemote:
    def __init__(self) -> None:
        self.rows: Dict[str, List[Dict[str, Any]]] = {WATER_LEVELS: [], ATMOSPHERIC_CONDITIONS: []}
        self.fail_with: Exception | None = None
        self.delay = 0.0

    async def fetch_readings(self, table: str, **kwargs: Any) -> List[Dict[str, Any]]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        rows = list(self.rows[table])
        lte = kwargs.get("lte")
        if lte is not None:
            rows = [row for row in rows if datetime.fromisoformat(row["timestamp"]) <= lte]
        rows.sort(key=lambda row: row["timestamp"], reverse=True)
        return rows[: kwargs.get("limit", 100)]


class FakeChannel:
    """Channel that delivers whatever the test emits, even after ``stop()``."""

    def __init__(self, table: str) -> None:
        self.table = table
        self.handlers: List[InsertHandler] = []
        self.started = False
        self.stopped = False
        self.fail_on_stop = False

    def on_insert(self, handler: InsertHandler) -> None:
        self.handlers.append(handler)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True
        if self.fail_on_stop:
            raise RuntimeError("socket already closed")

    def emit(self, row: Dict[str, Any]) -> None:
        for handler in self.handlers:
            handler(row)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def channels() -> Dict[str, FakeChannel]:
    return {}


@pytest.fixture
def synchronizer(remote: FakeRemote, channels: Dict[str, FakeChannel]) -> DataSynchronizer:
    def factory(table: str) -> FakeChannel:
        channels[table] = FakeChannel(table)
        return channels[table]

    return DataSynchronizer(
        remote,
        LocalCacheStore(),
        load_timeout=0.5,
        clock=lambda: NOW,
        channel_factory=factory,
    )


@pytest.mark.anyio
async def test_initial_load_fills_buffers_and_cache(remote: FakeRemote, synchronizer: DataSynchronizer) -> None:
    remote.rows[WATER_LEVELS] = [_water_row(1, 100.0, 20), _water_row(3, 120.0, 0), _water_row(2, 110.0, 10)]
    remote.rows[ATMOSPHERIC_CONDITIONS] = [_atmospheric_row(1, 20.0, 5)]

    assert await synchronizer.initial_load() is True

    snapshot = synchronizer.snapshot()
    assert [reading.id for reading in snapshot.water] == [3, 2, 1]
    assert snapshot.latest_water is not None and snapshot.latest_water.id == 3
    assert snapshot.latest_atmospheric is not None and snapshot.latest_atmospheric.temperature == 20.0
    assert snapshot.load_state is LoadState.loaded
    assert snapshot.last_update == NOW
    assert synchronizer.cache.get(LAST_WATER_KEY)["id"] == 3
    assert synchronizer.cache.get(LAST_ATMOSPHERIC_KEY)["id"] == 1
    assert synchronizer.cache.get(LAST_UPDATE_KEY) == NOW.isoformat()


@pytest.mark.anyio
async def test_failed_load_keeps_previous_buffers(remote: FakeRemote, synchronizer: DataSynchronizer) -> None:
    remote.rows[WATER_LEVELS] = [_water_row(1, 100.0)]
    await synchronizer.initial_load()
    remote.fail_with = NetworkError("offline")

    assert await synchronizer.initial_load() is False

    snapshot = synchronizer.snapshot()
    assert snapshot.load_state is LoadState.failed
    assert [reading.id for reading in snapshot.water] == [1]
    assert snapshot.latest_water is not None


@pytest.mark.anyio
async def test_load_times_out(remote: FakeRemote, synchronizer: DataSynchronizer) -> None:
    remote.delay = 5.0

    assert await synchronizer.initial_load() is False
    assert synchronizer.load_state is LoadState.failed


@pytest.mark.anyio
async def test_lookup_at_returns_newest_reading_before_instant(
    remote: FakeRemote, synchronizer: DataSynchronizer
) -> None:
    remote.rows[WATER_LEVELS] = [_water_row(1, 100.0, 30), _water_row(2, 110.0, 0)]

    water, atmospheric = await synchronizer.lookup_at(NOW - timedelta(minutes=10))

    assert water is not None and water.id == 1
    assert atmospheric is None


def test_live_inserts_keep_the_buffer_bounded(
    synchronizer: DataSynchronizer, channels: Dict[str, FakeChannel]
) -> None:
    subscription = synchronizer.subscribe_live()
    assert channels[WATER_LEVELS].started and channels[ATMOSPHERIC_CONDITIONS].started

    for reading_id in range(1, 106):
        channels[WATER_LEVELS].emit(_water_row(reading_id, float(reading_id)))

    snapshot = synchronizer.snapshot()
    assert len(snapshot.water) == BUFFER_LIMIT
    assert snapshot.water[0].id == 105
    assert snapshot.water[-1].id == 6
    assert snapshot.latest_water is not None and snapshot.latest_water.id == 105
    assert synchronizer.cache.get(LAST_WATER_KEY)["id"] == 105
    subscription.stop()


def test_live_inserts_are_kept_in_arrival_order(
    synchronizer: DataSynchronizer, channels: Dict[str, FakeChannel]
) -> None:
    synchronizer.subscribe_live()

    channels[WATER_LEVELS].emit(_water_row(2, 100.0, 0))
    channels[WATER_LEVELS].emit(_water_row(1, 90.0, 10))
    channels[ATMOSPHERIC_CONDITIONS].emit(_atmospheric_row(1, 18.0))

    snapshot = synchronizer.snapshot()
    assert [reading.id for reading in snapshot.water] == [1, 2]
    assert [reading.temperature for reading in snapshot.atmospheric] == [18.0]


def test_nothing_is_applied_after_stop(
    synchronizer: DataSynchronizer, channels: Dict[str, FakeChannel]
) -> None:
    notified: List[Any] = []
    synchronizer.add_listener(notified.append)
    subscription = synchronizer.subscribe_live()

    subscription.stop()
    channels[WATER_LEVELS].emit(_water_row(1, 100.0))

    assert subscription.active is False
    assert channels[WATER_LEVELS].stopped is True
    assert synchronizer.snapshot().water == ()
    assert notified == []


@pytest.mark.anyio
async def test_stop_right_after_initial_load_keeps_the_loaded_buffers(
    remote: FakeRemote, synchronizer: DataSynchronizer, channels: Dict[str, FakeChannel]
) -> None:
    remote.rows[WATER_LEVELS] = [_water_row(1, 100.0, 10), _water_row(2, 110.0, 0)]
    remote.rows[ATMOSPHERIC_CONDITIONS] = [_atmospheric_row(1, 20.0, 5)]
    assert await synchronizer.initial_load() is True
    loaded = synchronizer.snapshot()

    subscription = synchronizer.subscribe_live()
    subscription.stop()
    channels[WATER_LEVELS].emit(_water_row(3, 120.0))
    channels[ATMOSPHERIC_CONDITIONS].emit(_atmospheric_row(2, 25.0))

    after = synchronizer.snapshot()
    assert [reading.id for reading in after.water] == [2, 1]
    assert after.water == loaded.water
    assert after.atmospheric == loaded.atmospheric
    assert after.latest_water == loaded.latest_water


def test_stop_is_idempotent_and_swallows_channel_errors(
    synchronizer: DataSynchronizer, channels: Dict[str, FakeChannel]
) -> None:
    subscription = synchronizer.subscribe_live()
    channels[WATER_LEVELS].fail_on_stop = True

    subscription.stop()
    subscription.stop()

    assert channels[ATMOSPHERIC_CONDITIONS].stopped is True


def test_malformed_live_rows_are_skipped(
    synchronizer: DataSynchronizer, channels: Dict[str, FakeChannel]
) -> None:
    synchronizer.subscribe_live()

    channels[WATER_LEVELS].emit({"id": 1})
    channels[WATER_LEVELS].emit(_water_row(2, 100.0))

    assert [reading.id for reading in synchronizer.snapshot().water] == [2]


def test_status_follows_the_live_buffer(
    synchronizer: DataSynchronizer, channels: Dict[str, FakeChannel]
) -> None:
    synchronizer.subscribe_live()

    for reading_id, liters in enumerate((100.0, 90.0, 80.0), start=1):
        channels[WATER_LEVELS].emit(_water_row(reading_id, liters, 30 - 10 * reading_id))

    assert synchronizer.status(now=NOW).is_pump_active is True


def test_snapshot_status_uses_the_injected_clock(remote: FakeRemote, channels: Dict[str, FakeChannel]) -> None:
    current = {"now": NOW}

    def factory(table: str) -> FakeChannel:
        channels[table] = FakeChannel(table)
        return channels[table]

    synchronizer = DataSynchronizer(
        remote,
        LocalCacheStore(),
        tz=timezone.utc,
        clock=lambda: current["now"],
        channel_factory=factory,
    )
    synchronizer.subscribe_live()
    for reading_id, liters in enumerate((100.0, 90.0, 80.0), start=1):
        channels[WATER_LEVELS].emit(_water_row(reading_id, liters, 30 - 10 * reading_id))

    assert synchronizer.snapshot().status.is_pump_active is True

    current["now"] = NOW + timedelta(days=1)
    assert synchronizer.snapshot().status.is_pump_active is False


def test_listeners_can_be_removed(
    synchronizer: DataSynchronizer, channels: Dict[str, FakeChannel]
) -> None:
    seen: List[int] = []
    remove = synchronizer.add_listener(lambda snapshot: seen.append(len(snapshot.water)))
    synchronizer.subscribe_live()

    channels[WATER_LEVELS].emit(_water_row(1, 100.0))
    remove()
    channels[WATER_LEVELS].emit(_water_row(2, 100.0))

    assert seen == [1]


def test_cached_readings_are_available_offline(remote: FakeRemote) -> None:
    cache = LocalCacheStore()
    cache.set(LAST_WATER_KEY, _water_row(9, 1500.0))
    cache.set(LAST_UPDATE_KEY, (NOW - timedelta(minutes=5)).isoformat())

    synchronizer = DataSynchronizer(remote, cache, clock=lambda: NOW)
    synchronizer.set_online(False)

    snapshot = synchronizer.snapshot()
    assert snapshot.is_online is False
    assert snapshot.water == ()
    assert snapshot.latest_water is not None and snapshot.latest_water.volume_m3 == 1.5
    assert synchronizer.describe_freshness() == "offline · last update: 5m ago"


@pytest.mark.parametrize(
    "age, expected",
    [
        (None, "never"),
        (timedelta(seconds=30), "just now"),
        (timedelta(hours=3), "3h ago"),
        (timedelta(days=2), "2d ago"),
    ],
)
def test_describe_freshness(remote: FakeRemote, age: timedelta | None, expected: str) -> None:
    cache = LocalCacheStore()
    if age is not None:
        cache.set(LAST_UPDATE_KEY, (NOW - age).isoformat())

    synchronizer = DataSynchronizer(remote, cache, clock=lambda: NOW)

    assert synchronizer.describe_freshness() == f"online · last update: {expected}"
