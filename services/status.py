"""Rain and pump detection from the water-level buffer."""

from __future__ import annotations

import logging
from datetime import datetime, time, tzinfo
from typing import Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.records import SystemStatus, WaterReading

logger = logging.getLogger(__name__)

RAIN_THRESHOLD_LITERS = 10.0
PUMP_WINDOW = 3


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """Return the configured dashboard timezone, or None for the host's local zone."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone, using local time", extra={"reason": name})
        return None


def local_midnight(now: datetime) -> datetime:
    """Start of the calendar day containing ``now``, in ``now``'s timezone."""
    return datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)


def detect(
    water_readings: Sequence[WaterReading],
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> SystemStatus:
    """Derive rain and pump indicators from newest-first water readings.

    Rainfall is the sum of same-day volume increases between adjacent readings
    (decreases are ignored); it counts as rain above ``RAIN_THRESHOLD_LITERS``.
    The pump is considered running when the three most recent readings show
    two successive strict drops. Fewer than two readings from today yield the
    default status.
    """

    if not water_readings:
        return SystemStatus()

    if now is None:
        now = datetime.now(tz)
    if now.tzinfo is None:
        now = now.astimezone(tz)
    start_of_day = local_midnight(now)

    today = [reading for reading in water_readings if reading.timestamp >= start_of_day]

    if len(today) < 2:
        return SystemStatus()

    rainfall = 0.0
    for newer, older in zip(today, today[1:]):
        diff = newer.volume_liters - older.volume_liters
        if diff > 0:
            rainfall += diff

    pump_active = False
    if len(water_readings) >= PUMP_WINDOW:
        first, second, third = water_readings[:PUMP_WINDOW]
        pump_active = (
            first.volume_liters < second.volume_liters
            and second.volume_liters < third.volume_liters
        )

    return SystemStatus(
        is_raining=rainfall > RAIN_THRESHOLD_LITERS,
        is_pump_active=pump_active,
        daily_rainfall_volume=rainfall,
    )


def fill_percentage(volume_m3: float, capacity_m3: float) -> float:
    if capacity_m3 <= 0:
        return 0.0
    return min(volume_m3 / capacity_m3 * 100.0, 100.0)


def remaining_capacity(volume_m3: float, capacity_m3: float) -> float:
    return capacity_m3 - volume_m3
