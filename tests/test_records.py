from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.schemas import SensorPayload
from datastore.telemetry_store import ATMOSPHERIC_CONDITIONS, WATER_LEVELS, TelemetryStore
from errors import ValidationError
from models.records import AtmosphericReading, WaterReading, derive_volumes, parse_timestamp
from services.ingestion import IngestionService


@pytest.mark.parametrize(
    "m3, liters, expected",
    [
        (None, 1500.0, (1.5, 1500.0)),
        (2.0, None, (2.0, 2000.0)),
        (1.0, 999.0, (1.0, 999.0)),
        (None, None, (0.0, 0.0)),
        (0.0, None, (0.0, 0.0)),
    ],
)
def test_derive_volumes(m3, liters, expected) -> None:
    assert derive_volumes(m3, liters) == expected


def test_parse_timestamp_normalizes_to_utc() -> None:
    assert parse_timestamp("2024-01-01T12:00:00Z") == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp("2024-01-01T09:00:00-03:00") == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp(datetime(2024, 1, 1, 12)).tzinfo is timezone.utc
    offset = parse_timestamp(datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(hours=2))))
    assert offset.hour == 10

    with pytest.raises(ValueError):
        parse_timestamp("")
    with pytest.raises(ValueError):
        parse_timestamp("last tuesday")


def test_rows_with_one_volume_unit_are_completed() -> None:
    reading = WaterReading.from_row({"id": "3", "timestamp": "2024-01-01T00:00:00Z", "volume_liters": 250})

    assert reading.id == 3
    assert reading.volume_m3 == 0.25
    assert reading.to_row()["timestamp"] == "2024-01-01T00:00:00+00:00"


def test_atmospheric_row_defaults_missing_values() -> None:
    reading = AtmosphericReading.from_row({"id": 1, "timestamp": "2024-01-01T00:00:00Z", "temperature": None})

    assert reading.temperature == 0.0
    assert reading.humidity == 0.0


def test_ingestion_service_writes_each_kind() -> None:
    store = TelemetryStore()
    service = IngestionService(store)

    water_only = service.ingest(SensorPayload(volume_liters=1500))
    atmospheric_only = service.ingest(SensorPayload(humidity=40))

    assert water_only.water_level is not None and water_only.water_level.volume_m3 == 1.5
    assert water_only.atmospheric_condition is None
    assert atmospheric_only.atmospheric_condition is not None
    assert atmospheric_only.atmospheric_condition.temperature == 0.0
    assert len(store.select(WATER_LEVELS)) == 1
    assert len(store.select(ATMOSPHERIC_CONDITIONS)) == 1


def test_ingestion_service_rejects_empty_payload() -> None:
    with pytest.raises(ValidationError):
        IngestionService(TelemetryStore()).ingest(SensorPayload())
