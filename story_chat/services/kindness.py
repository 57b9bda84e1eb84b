"""Journal of kindness shared and received, with simple activity stats."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from .game_state import _parse_timestamp, new_id, utcnow
from .storage import KINDNESS_DATA_KEY, KeyValueStorage, StorageError


LOGGER = logging.getLogger(__name__)

ENTRY_TYPES = ("shared", "received")
ENTRY_CATEGORIES = ("compliment", "help", "gift", "time", "listening", "other")
MIN_VALUE = 1
MAX_VALUE = 10
MAX_STREAK_DAYS = 30


class KindnessEntryError(RuntimeError):
    """Raised when a journal entry has an unknown type, category or value."""


@dataclass
class KindnessEntry:
    id: str
    type: str
    description: str
    value: int
    timestamp: datetime
    category: str = "other"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "KindnessEntry":
        return cls(
            id=str(data.get("id") or new_id()),
            type=str(data.get("type") or "shared"),
            description=str(data.get("description") or ""),
            value=int(data.get("value") or MIN_VALUE),
            timestamp=_parse_timestamp(data.get("timestamp")),
            category=str(data.get("category") or "other"),
        )


@dataclass
class KindnessStats:
    total_shared: int
    total_received: int
    weekly_shared: int
    weekly_received: int
    streak: int
    last_activity: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_shared": self.total_shared,
            "total_received": self.total_received,
            "weekly_shared": self.weekly_shared,
            "weekly_received": self.weekly_received,
            "streak": self.streak,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }


class KindnessJournal:
    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self._entries: List[KindnessEntry] = []
        self._unreadable: List[Any] = []
        self._load_failed = False

    def load_entries(self) -> List[KindnessEntry]:
        """Read the journal, keeping entries that cannot be parsed so saves preserve them."""

        try:
            raw = self._storage.get_item(KINDNESS_DATA_KEY)
            data = json.loads(raw) if raw else []
            if not isinstance(data, list):
                raise ValueError("kindness data must be a JSON array")
        except (StorageError, TypeError, ValueError):
            LOGGER.exception("Failed to load kindness entries")
            self._load_failed = True
            return []

        entries: List[KindnessEntry] = []
        unreadable: List[Any] = []
        for item in data:
            try:
                if not isinstance(item, Mapping):
                    raise TypeError("kindness entry must be a JSON object")
                entries.append(KindnessEntry.from_dict(item))
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Skipping unreadable kindness entry %r: %s", item, exc)
                unreadable.append(item)

        self._entries = entries
        self._unreadable = unreadable
        self._load_failed = False
        return list(entries)

    def add_entry(
        self,
        *,
        type: str,
        description: str,
        value: int,
        category: str = "other",
        timestamp: Optional[datetime] = None,
    ) -> KindnessEntry:
        if type not in ENTRY_TYPES:
            raise KindnessEntryError(f"Unknown kindness type '{type}'.")
        if category not in ENTRY_CATEGORIES:
            raise KindnessEntryError(f"Unknown kindness category '{category}'.")
        if not MIN_VALUE <= int(value) <= MAX_VALUE:
            raise KindnessEntryError(f"Kindness value must be between {MIN_VALUE} and {MAX_VALUE}.")

        self.load_entries()
        if self._load_failed:
            raise KindnessEntryError("Saved kindness entries could not be read; not overwriting them.")
        entry = KindnessEntry(
            id=new_id(),
            type=type,
            description=(description or "").strip(),
            value=int(value),
            timestamp=timestamp or utcnow(),
            category=category,
        )
        self._entries.append(entry)
        self._save_entries()
        return entry

    def get_stats(self, now: Optional[datetime] = None) -> KindnessStats:
        entries = self.load_entries()
        now = _parse_timestamp(now or utcnow())
        week_ago = now - timedelta(days=7)

        shared = [entry for entry in entries if entry.type == "shared"]
        received = [entry for entry in entries if entry.type == "received"]
        ordered = sorted(entries, key=lambda entry: entry.timestamp, reverse=True)

        active_days = {entry.timestamp.astimezone(now.tzinfo).date() for entry in entries}
        streak = 0
        day = now.date()
        while streak < MAX_STREAK_DAYS and day in active_days:
            streak += 1
            day -= timedelta(days=1)

        return KindnessStats(
            total_shared=len(shared),
            total_received=len(received),
            weekly_shared=sum(1 for entry in shared if entry.timestamp >= week_ago),
            weekly_received=sum(1 for entry in received if entry.timestamp >= week_ago),
            streak=streak,
            last_activity=ordered[0].timestamp if ordered else None,
        )

    def get_recent_entries(self, limit: int = 10) -> List[KindnessEntry]:
        entries = self.load_entries()
        return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)[: max(0, limit)]

    def get_total_value(self) -> int:
        return sum(entry.value for entry in self.load_entries())

    def _save_entries(self) -> None:
        stored = list(self._unreadable) + [entry.to_dict() for entry in self._entries]
        payload = json.dumps(stored, ensure_ascii=False)
        try:
            self._storage.set_item(KINDNESS_DATA_KEY, payload)
        except StorageError:
            LOGGER.exception("Failed to save kindness entries")
