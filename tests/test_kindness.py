import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from story_chat.services.kindness import KindnessEntryError, KindnessJournal
from story_chat.services.storage import KINDNESS_DATA_KEY, MemoryStorage


NOW = datetime(2024, 5, 10, 18, 30, tzinfo=timezone.utc)


@pytest.fixture
def journal():
    return KindnessJournal(MemoryStorage())


def test_add_entry_validates_fields(journal):
    with pytest.raises(KindnessEntryError):
        journal.add_entry(type="given", description="Held the door", value=3)
    with pytest.raises(KindnessEntryError):
        journal.add_entry(type="shared", description="Held the door", value=11)
    with pytest.raises(KindnessEntryError):
        journal.add_entry(type="shared", description="Held the door", value=3, category="money")

    entry = journal.add_entry(type="shared", description="  Held the door ", value=3, category="help")

    assert entry.description == "Held the door"
    assert [e.id for e in journal.load_entries()] == [entry.id]


def test_stats_count_week_and_streak(journal):
    for days_ago, kind in ((0, "shared"), (1, "received"), (2, "shared"), (10, "shared")):
        journal.add_entry(
            type=kind,
            description=f"{kind} {days_ago}",
            value=2,
            timestamp=NOW - timedelta(days=days_ago),
        )

    stats = journal.get_stats(now=NOW)

    assert stats.total_shared == 3
    assert stats.total_received == 1
    assert stats.weekly_shared == 2
    assert stats.weekly_received == 1
    assert stats.streak == 3
    assert stats.last_activity == NOW
    assert stats.to_dict()["last_activity"] == NOW.isoformat()


def test_streak_is_zero_without_activity_today(journal):
    journal.add_entry(type="shared", description="Yesterday", value=1, timestamp=NOW - timedelta(days=1))

    assert journal.get_stats(now=NOW).streak == 0


def test_recent_entries_and_total_value(journal):
    for index in range(12):
        journal.add_entry(
            type="received",
            description=f"entry {index}",
            value=index % 10 + 1,
            timestamp=NOW - timedelta(hours=index),
        )

    recent = journal.get_recent_entries()

    assert len(recent) == 10
    assert recent[0].description == "entry 0"
    assert journal.get_recent_entries(limit=2)[1].description == "entry 1"
    assert journal.get_total_value() == sum(index % 10 + 1 for index in range(12))


def test_corrupt_journal_loads_as_empty():
    journal = KindnessJournal(MemoryStorage({KINDNESS_DATA_KEY: json.dumps({"not": "a list"})}))

    assert journal.load_entries() == []
    assert journal.get_stats(now=NOW).last_activity is None


def test_unreadable_entry_is_kept_when_journal_is_saved():
    good = [
        {"id": f"e{index}", "type": "shared", "description": f"good {index}", "value": 3,
         "timestamp": (NOW - timedelta(hours=index)).isoformat(), "category": "help"}
        for index in range(5)
    ]
    bad = {"id": "odd", "type": "shared", "description": "bad", "value": "lots",
           "timestamp": NOW.isoformat(), "category": "other"}
    storage = MemoryStorage({KINDNESS_DATA_KEY: json.dumps(good + [bad])})
    journal = KindnessJournal(storage)

    assert len(journal.load_entries()) == 5

    journal.add_entry(type="shared", description="new", value=2)

    saved = json.loads(storage.get_item(KINDNESS_DATA_KEY))
    assert len(saved) == 7
    assert bad in saved
    assert {item["id"] for item in good} <= {item["id"] for item in saved}


def test_add_entry_refuses_to_overwrite_unreadable_journal():
    raw = json.dumps({"not": "a list"})
    storage = MemoryStorage({KINDNESS_DATA_KEY: raw})
    journal = KindnessJournal(storage)

    with pytest.raises(KindnessEntryError):
        journal.add_entry(type="shared", description="new", value=2)

    assert storage.get_item(KINDNESS_DATA_KEY) == raw
