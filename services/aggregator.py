"""Summary statistics over the reading buffers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Iterable, List, Optional, Sequence, TypeVar

from models.records import AtmosphericReading, WaterReading

_Reading = TypeVar("_Reading", WaterReading, AtmosphericReading)


@dataclass
class ReadingStatistics:
    """Computed statistics for a window of water and atmospheric readings."""

    water_count: int = 0
    atmospheric_count: int = 0
    consumption_liters: float = 0.0
    mean_volume_liters: float | None = None
    min_volume_liters: float | None = None
    max_volume_liters: float | None = None
    mean_temperature: float | None = None
    min_temperature: float | None = None
    max_temperature: float | None = None
    mean_humidity: float | None = None
    mean_interval_minutes: float = 0.0


def _bounds(start: Optional[date], end: Optional[date]) -> tuple[datetime, datetime]:
    lower = datetime.min.replace(tzinfo=timezone.utc)
    upper = datetime.max.replace(tzinfo=timezone.utc)
    if start is not None:
        lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
    if end is not None:
        upper = datetime.combine(end, time.max, tzinfo=timezone.utc)
    return lower, upper


def _within(readings: Iterable[_Reading], lower: datetime, upper: datetime) -> List[_Reading]:
    return [reading for reading in readings if lower <= reading.timestamp <= upper]


class ReadingAggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def summarize(
        self,
        water: Sequence[WaterReading],
        atmospheric: Sequence[AtmosphericReading],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ReadingStatistics:
        if start or end:
            lower, upper = _bounds(start, end)
            water = _within(water, lower, upper)
            atmospheric = _within(atmospheric, lower, upper)

        summary = ReadingStatistics(
            water_count=len(water),
            atmospheric_count=len(atmospheric),
        )

        if water:
            volumes = [reading.volume_liters for reading in water]
            summary.mean_volume_liters = sum(volumes) / len(volumes)
            summary.min_volume_liters = min(volumes)
            summary.max_volume_liters = max(volumes)
            summary.consumption_liters = self.consumption(water)
            summary.mean_interval_minutes = self.mean_interval_minutes(water)

        if atmospheric:
            temperatures = [reading.temperature for reading in atmospheric]
            humidities = [reading.humidity for reading in atmospheric]
            summary.mean_temperature = sum(temperatures) / len(temperatures)
            summary.min_temperature = min(temperatures)
            summary.max_temperature = max(temperatures)
            summary.mean_humidity = sum(humidities) / len(humidities)

        return summary

    @staticmethod
    def consumption(water: Sequence[WaterReading]) -> float:
        """Absolute volume change between the first and last buffer entries."""
        if len(water) < 2:
            return 0.0
        return abs(water[0].volume_liters - water[-1].volume_liters)

    @staticmethod
    def mean_interval_minutes(readings: Sequence[WaterReading]) -> float:
        """Average gap between consecutive buffer entries, in buffer order."""
        if len(readings) < 2:
            return 0.0
        gaps = [
            (newer.timestamp - older.timestamp).total_seconds()
            for newer, older in zip(readings, readings[1:])
        ]
        return sum(gaps) / len(gaps) / 60.0
