"""Sensor ingestion: unit derivation and per-kind inserts."""

from __future__ import annotations

import logging
from functools import lru_cache

from app.schemas import (
    AtmosphericConditionRow,
    IngestionResults,
    SensorPayload,
    WaterLevelRow,
)
from datastore.telemetry_store import (
    ATMOSPHERIC_CONDITIONS,
    WATER_LEVELS,
    TelemetryStore,
    build_default_store,
)
from errors import ValidationError
from models.records import derive_volumes

logger = logging.getLogger(__name__)


class IngestionService:
    """Writes sensor payloads into the reading tables."""

    def __init__(self, store: TelemetryStore) -> None:
        self.store = store

    def ingest(self, payload: SensorPayload) -> IngestionResults:
        """Insert a water row and/or an atmospheric row for one sensor payload.

        A failure on one kind is reported in its ``*_error`` field and does not
        prevent the other kind from being written.
        """
        if not payload.has_water and not payload.has_atmospheric:
            raise ValidationError("At least one measurement is required.")

        results = IngestionResults()

        if payload.has_water:
            volume_m3, volume_liters = derive_volumes(payload.volume_m3, payload.volume_liters)
            try:
                row = self.store.insert(
                    WATER_LEVELS,
                    {"volume_m3": volume_m3, "volume_liters": volume_liters},
                )
            except (OSError, KeyError, ValueError) as exc:
                logger.error(
                    "Error inserting water level",
                    extra={"table": WATER_LEVELS, "reason": str(exc)},
                )
                results.water_error = str(exc)
            else:
                results.water_level = WaterLevelRow.model_validate(row)

        if payload.has_atmospheric:
            try:
                row = self.store.insert(
                    ATMOSPHERIC_CONDITIONS,
                    {
                        "temperature": payload.temperature or 0.0,
                        "humidity": payload.humidity or 0.0,
                    },
                )
            except (OSError, KeyError, ValueError) as exc:
                logger.error(
                    "Error inserting atmospheric data",
                    extra={"table": ATMOSPHERIC_CONDITIONS, "reason": str(exc)},
                )
                results.atmospheric_error = str(exc)
            else:
                results.atmospheric_condition = AtmosphericConditionRow.model_validate(row)

        return results


@lru_cache
def build_default_ingestion() -> IngestionService:
    return IngestionService(store=build_default_store())
