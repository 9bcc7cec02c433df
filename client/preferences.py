"""Device-local display settings: tank capacity and custom logo."""

from __future__ import annotations

import math
from typing import Any, Optional

from errors import ValidationError
from storage.local_cache import CUSTOM_LOGO_KEY, TANK_CAPACITY_KEY, LocalCacheStore

DEFAULT_TANK_CAPACITY_M3 = 10.0


def _positive_float(raw: Any) -> float:
    value = float(raw)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"not a positive capacity: {raw!r}")
    return value


class DisplayPreferences:

    def __init__(self, cache: LocalCacheStore) -> None:
        self.cache = cache

    def tank_capacity(self) -> float:
        capacity = self.cache.get_decoded(TANK_CAPACITY_KEY, _positive_float)
        return DEFAULT_TANK_CAPACITY_M3 if capacity is None else capacity

    def set_tank_capacity(self, capacity: float) -> float:
        try:
            value = _positive_float(capacity)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Tank capacity must be a positive number.") from exc
        self.cache.set(TANK_CAPACITY_KEY, value)
        return value

    def logo(self) -> Optional[str]:
        return self.cache.get_decoded(CUSTOM_LOGO_KEY, str)

    def set_logo(self, data_uri: str) -> None:
        if not data_uri.startswith("data:image/"):
            raise ValidationError("The logo must be an image data URI.")
        self.cache.set(CUSTOM_LOGO_KEY, data_uri)

    def reset_logo(self) -> None:
        self.cache.remove(CUSTOM_LOGO_KEY)
