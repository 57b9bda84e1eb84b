"""Make sure the key-value storage table exists on start-up."""
from __future__ import annotations

from sqlalchemy import inspect

from .extensions import db


def ensure_database_schema() -> None:
    """Create ``storage_entries`` when the database does not have it yet.

    Runs on every application start, so it only inspects and never drops.
    """

    # Imported here so the models module is not loaded during app setup.
    from .models import StorageEntry

    if not inspect(db.engine).has_table(StorageEntry.__tablename__):
        StorageEntry.__table__.create(bind=db.engine)
