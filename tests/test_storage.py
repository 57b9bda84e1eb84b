import sys
from pathlib import Path

import pytest
from sqlalchemy import inspect

sys.path.append(str(Path(__file__).resolve().parents[1]))

from story_chat import create_app
from story_chat.config import TestConfig
from story_chat.db_utils import ensure_database_schema
from story_chat.extensions import db
from story_chat.models import StorageEntry
from story_chat.services.storage import MemoryStorage, SQLAlchemyStorage


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


def test_sqlalchemy_storage_upserts_and_removes(app_instance):
    storage = SQLAlchemyStorage()

    assert storage.get_item("STORY_GAME_STATE") is None

    storage.set_item("STORY_GAME_STATE", '{"player_name": "Sam"}')
    storage.set_item("STORY_GAME_STATE", '{"player_name": "Robin"}')

    assert storage.get_item("STORY_GAME_STATE") == '{"player_name": "Robin"}'
    assert StorageEntry.query.count() == 1

    storage.remove_item("STORY_GAME_STATE")
    storage.remove_item("STORY_GAME_STATE")

    assert storage.get_item("STORY_GAME_STATE") is None


def test_memory_storage_copies_initial_values():
    initial = {"KINDNESS_DATA": "[]"}
    storage = MemoryStorage(initial)

    storage.set_item("KINDNESS_DATA", "[1]")
    storage.remove_item("missing")

    assert initial == {"KINDNESS_DATA": "[]"}
    assert storage.get_item("KINDNESS_DATA") == "[1]"


def test_schema_guard_recreates_missing_table(app_instance):
    StorageEntry.__table__.drop(bind=db.engine)
    assert not inspect(db.engine).has_table("storage_entries")

    ensure_database_schema()
    ensure_database_schema()

    assert inspect(db.engine).has_table("storage_entries")
    SQLAlchemyStorage().set_item("KINDNESS_DATA", "[]")
    assert SQLAlchemyStorage().get_item("KINDNESS_DATA") == "[]"
