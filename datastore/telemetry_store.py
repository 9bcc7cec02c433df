from __future__ import annotations
import copy
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterator, List, Mapping, Optional
from uuid import uuid4

from models.records import format_timestamp, parse_timestamp
from settings import get_settings

logger = logging.getLogger(__name__)

WATER_LEVELS = "water_levels"
ATMOSPHERIC_CONDITIONS = "atmospheric_conditions"
USERS = "users"
RECOVERY_TOKENS = "recovery_tokens"

READING_TABLES = (WATER_LEVELS, ATMOSPHERIC_CONDITIONS)
TABLES = READING_TABLES + (USERS, RECOVERY_TOKENS)

_TIMESTAMP_FIELDS = {"timestamp", "created_at", "expires_at", "used_at"}

Row = Dict[str, Any]


class TelemetryStore:
    """Thread-safe in-memory table store with optional JSON persistence."""

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self._tables: Dict[str, List[Row]] = {name: [] for name in TABLES}
        self._sequences: Dict[str, int] = {name: 0 for name in READING_TABLES}
        self.persistence_path = persistence_path
        self._lock = RLock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    @contextmanager
    def atomic(self) -> Iterator["TelemetryStore"]:
        """Hold the store lock across several reads and writes."""
        with self._lock:
            yield self

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        with self._lock:
            rows = self._rows(table)
            item = dict(row)
            # Reading tables use a per-table integer sequence, the rest use UUIDs.
            if table in self._sequences:
                self._sequences[table] += 1
                item["id"] = self._sequences[table]
                item.setdefault("timestamp", datetime.now(timezone.utc))
            else:
                item.setdefault("id", str(uuid4()))
            item = self._normalize(item)
            rows.append(item)
            self._persist()
            logger.debug("Inserted row", extra={"table": table, "reading_id": item["id"]})
            return copy.deepcopy(item)

    def get(self, table: str, key: Any) -> Optional[Row]:
        with self._lock:
            for row in self._rows(table):
                if row["id"] == key:
                    return copy.deepcopy(row)
            return None

    def select(
        self,
        table: str,
        *,
        eq: Optional[Mapping[str, Any]] = None,
        lte: Optional[datetime] = None,
        gte: Optional[datetime] = None,
        after_id: Optional[int] = None,
        order_by: str = "timestamp",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """Return copies of matching rows, ordered and limited like a table query."""

        if lte is not None:
            lte = parse_timestamp(lte)
        if gte is not None:
            gte = parse_timestamp(gte)
        with self._lock:
            candidates = [copy.deepcopy(row) for row in self._rows(table)]

        def matches(row: Row) -> bool:
            if eq and any(row.get(field) != value for field, value in eq.items()):
                return False
            if lte is not None and parse_timestamp(row["timestamp"]) > lte:
                return False
            if gte is not None and parse_timestamp(row["timestamp"]) < gte:
                return False
            if after_id is not None and row["id"] <= after_id:
                return False
            return True

        def sort_key(row: Row) -> tuple:
            value = row.get(order_by)
            if value is None:
                return (0,)
            if order_by in _TIMESTAMP_FIELDS:
                return (1, parse_timestamp(value))
            return (1, value)

        selected = [row for row in candidates if matches(row)]
        selected.sort(key=sort_key, reverse=descending)
        if limit is not None:
            selected = selected[: max(limit, 0)]
        return selected

    def update(self, table: str, key: Any, changes: Mapping[str, Any]) -> Optional[Row]:
        with self._lock:
            for row in self._rows(table):
                if row["id"] == key:
                    row.update(self._normalize(dict(changes)))
                    self._persist()
                    return copy.deepcopy(row)
            return None

    def delete(self, table: str, key: Any) -> bool:
        with self._lock:
            rows = self._rows(table)
            for index, row in enumerate(rows):
                if row["id"] == key:
                    del rows[index]
                    self._persist()
                    return True
            return False

    def _rows(self, table: str) -> List[Row]:
        try:
            return self._tables[table]
        except KeyError:
            raise KeyError(f"Table {table!r} does not exist.") from None

    @staticmethod
    def _normalize(item: Row) -> Row:
        for field in _TIMESTAMP_FIELDS:
            value = item.get(field)
            if isinstance(value, datetime):
                item[field] = format_timestamp(value)
        return item

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {"tables": self._tables, "sequences": self._sequences}
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Ignoring unreadable store file",
                extra={"reason": str(self.persistence_path)},
            )
            data = {}

        for name, rows in (data.get("tables") or {}).items():
            if name in self._tables:
                self._tables[name] = list(rows)
        for name, value in (data.get("sequences") or {}).items():
            if name in self._sequences:
                self._sequences[name] = int(value)


@lru_cache
def build_default_store(path: Optional[str] = None) -> TelemetryStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return TelemetryStore(persistence_path=persistence)
