"""Domain models shared by the service and the dashboard client."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

LITERS_PER_CUBIC_METER = 1000.0
PRIMARY_ADMIN_USERNAME = "admin"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime."""

    if isinstance(value, datetime):
        parsed = value
    else:
        candidate = str(value or "").strip()
        if not candidate:
            raise ValueError("Timestamp is empty.")
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp format: {value!r}") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return parse_timestamp(value).isoformat()


def derive_volumes(
    volume_m3: float | None, volume_liters: float | None
) -> tuple[float, float]:
    """Fill in whichever volume unit is missing; absent values default to 0."""

    if volume_m3 is None and volume_liters is None:
        return 0.0, 0.0
    if volume_m3 is None:
        return float(volume_liters) / LITERS_PER_CUBIC_METER, float(volume_liters)
    if volume_liters is None:
        return float(volume_m3), float(volume_m3) * LITERS_PER_CUBIC_METER
    return float(volume_m3), float(volume_liters)


@dataclass(frozen=True, slots=True)
class WaterReading:
    """A tank volume observation."""

    id: int
    timestamp: datetime
    volume_m3: float
    volume_liters: float

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WaterReading":
        volume_m3, volume_liters = derive_volumes(
            row.get("volume_m3"), row.get("volume_liters")
        )
        return cls(
            id=int(row["id"]),
            timestamp=parse_timestamp(row["timestamp"]),
            volume_m3=volume_m3,
            volume_liters=volume_liters,
        )

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["timestamp"] = format_timestamp(self.timestamp)
        return row


@dataclass(frozen=True, slots=True)
class AtmosphericReading:
    """A temperature (°C) and relative humidity (%) observation."""

    id: int
    timestamp: datetime
    temperature: float
    humidity: float

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AtmosphericReading":
        return cls(
            id=int(row["id"]),
            timestamp=parse_timestamp(row["timestamp"]),
            temperature=float(row.get("temperature") or 0.0),
            humidity=float(row.get("humidity") or 0.0),
        )

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["timestamp"] = format_timestamp(self.timestamp)
        return row


@dataclass(frozen=True, slots=True)
class SystemStatus:
    """Indicators derived from the water buffer. Never persisted."""

    is_raining: bool = False
    is_pump_active: bool = False
    daily_rainfall_volume: float = 0.0


@dataclass(frozen=True, slots=True)
class UserSession:
    """Identity of the signed-in user as held by the client."""

    id: str
    username: str
    is_admin: bool = False
    dark_mode: bool = False

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UserSession":
        return cls(
            id=str(payload["id"]),
            username=str(payload["username"]),
            is_admin=bool(payload.get("is_admin", False)),
            dark_mode=bool(payload.get("dark_mode", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
