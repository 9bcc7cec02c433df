from __future__ import annotations

import copy
import json
import logging
import os
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar

from models.records import AtmosphericReading, UserSession, WaterReading, parse_timestamp
from settings import get_settings

logger = logging.getLogger(__name__)

TANK_CAPACITY_KEY = "tankMaxCapacity"
LAST_WATER_KEY = "lastWaterLevel"
LAST_ATMOSPHERIC_KEY = "lastAtmospheric"
LAST_UPDATE_KEY = "lastUpdateTime"
CUSTOM_LOGO_KEY = "customLogo"
SESSION_KEY = "user"

T = TypeVar("T")


class LocalCacheStore:
    """Durable key-value cache backing the dashboard's offline fallback.

    Values are JSON documents kept in a single file and rewritten on every
    change. Anything unreadable is treated as absent rather than raised.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path
        self._values: Dict[str, Any] = {}
        self._lock = Lock()
        if path:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._values.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            previous = dict(self._values)
            self._values[key] = copy.deepcopy(value)
            self._commit(previous)

    def remove(self, key: str) -> None:
        with self._lock:
            if key in self._values:
                previous = dict(self._values)
                del self._values[key]
                self._commit(previous)

    def get_decoded(self, key: str, decoder: Callable[[Any], T]) -> Optional[T]:
        """Decode a cached value, treating missing or malformed entries as absent."""
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return decoder(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding corrupt cache entry", extra={"reason": f"{key}: {exc}"})
            return None

    def last_water_reading(self) -> Optional[WaterReading]:
        return self.get_decoded(LAST_WATER_KEY, WaterReading.from_row)

    def last_atmospheric_reading(self) -> Optional[AtmosphericReading]:
        return self.get_decoded(LAST_ATMOSPHERIC_KEY, AtmosphericReading.from_row)

    def last_update(self) -> Optional[datetime]:
        return self.get_decoded(LAST_UPDATE_KEY, parse_timestamp)

    def session(self) -> Optional[UserSession]:
        return self.get_decoded(SESSION_KEY, UserSession.from_dict)

    def _commit(self, previous: Dict[str, Any]) -> None:
        try:
            self._persist()
        except (OSError, TypeError, ValueError):
            self._values = previous
            raise

    def _persist(self) -> None:
        if not self.path:
            return
        scratch = self.path.with_suffix(self.path.suffix + ".tmp")
        scratch.write_text(json.dumps(self._values, indent=2, sort_keys=True))
        os.replace(scratch, self.path)

    def _load_from_disk(self) -> None:
        assert self.path is not None
        if not self.path.exists():
            return

        try:
            data = json.loads(self.path.read_text() or "{}")
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable cache file", extra={"reason": str(self.path)})
            return

        if isinstance(data, dict):
            self._values = data
        else:
            logger.warning("Ignoring malformed cache file", extra={"reason": str(self.path)})


@lru_cache
def build_default_cache(path: Optional[str] = None) -> LocalCacheStore:
    settings = get_settings()
    cache_path = settings.cache_path if path is None else path
    return LocalCacheStore(path=Path(cache_path) if cache_path else None)
