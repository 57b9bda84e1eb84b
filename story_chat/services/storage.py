"""Key-value persistence for serialized game blobs."""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import StorageEntry


GAME_STATE_KEY = "STORY_GAME_STATE"
KINDNESS_DATA_KEY = "KINDNESS_DATA"


class StorageError(RuntimeError):
    """Raised when a storage backend cannot read or write a value."""


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class SQLAlchemyStorage:
    """Store blobs in the ``storage_entries`` table.

    Every call needs an active application context because it goes through the
    Flask-SQLAlchemy session.
    """

    def get_item(self, key: str) -> Optional[str]:
        try:
            entry = StorageEntry.query.filter_by(key=key).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError(f"Unable to read '{key}': {exc}") from exc
        return entry.value if entry else None

    def set_item(self, key: str, value: str) -> None:
        try:
            entry = StorageEntry.query.filter_by(key=key).first()
            if entry is None:
                entry = StorageEntry(key=key, value=value)
                db.session.add(entry)
            else:
                entry.value = value
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError(f"Unable to write '{key}': {exc}") from exc

    def remove_item(self, key: str) -> None:
        try:
            StorageEntry.query.filter_by(key=key).delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError(f"Unable to remove '{key}': {exc}") from exc


class MemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


__all__ = [
    "GAME_STATE_KEY",
    "KINDNESS_DATA_KEY",
    "KeyValueStorage",
    "MemoryStorage",
    "SQLAlchemyStorage",
    "StorageError",
]
