from __future__ import annotations

from datetime import datetime

from .extensions import db


class StorageEntry(db.Model):
    """A single key-value slot holding a serialized blob."""

    __tablename__ = "storage_entries"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(120), unique=True, nullable=False, index=True)
    value = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<StorageEntry {self.key} ({len(self.value or '')} chars)>"
