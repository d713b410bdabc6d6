"""Shared fixtures for TrackBack tests."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from trackback.config.settings import Config
from trackback.database.item_repository import SQLiteItemStore
from trackback.database.match_repository import MatchRepository
from trackback.models.item import ContactInfo, Item
from trackback.services.disclosure_gate import DisclosureGate
from trackback.services.matching_engine import MatchingEngine
from trackback.services.retry_strategy import RetryConfig, RetryStrategy


class RecordingDisclosureGate(DisclosureGate):
    """Disclosure gate that remembers every trigger."""

    def __init__(self):
        self.calls = []

    def on_match_confirmed(self, match_id, lost_reporter_contact, found_reporter_contact):
        self.calls.append((match_id, lost_reporter_contact, found_reporter_contact))


def utc(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def temp_dir():
    """Create temporary directory for databases and logs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir):
    """Path of a fresh temporary database."""
    return str(temp_dir / "trackback_test.db")


@pytest.fixture
def item_store(temp_db):
    """SQLiteItemStore over the temporary database."""
    return SQLiteItemStore(temp_db)


@pytest.fixture
def match_repository(temp_db):
    """MatchRepository over the temporary database."""
    return MatchRepository(temp_db)


@pytest.fixture
def config(temp_dir, temp_db):
    """Default configuration pointing at temporary paths."""
    return Config(
        _env_file=None,
        database_path=temp_db,
        log_file=str(temp_dir / "logs" / "trackback.log"),
    )


@pytest.fixture
def disclosure_gate():
    return RecordingDisclosureGate()


@pytest.fixture
def no_wait_retry():
    """Retry strategy that never sleeps."""
    return RetryStrategy(
        RetryConfig(max_retries=3, base_delay_seconds=0.01, jitter=False),
        sleep=lambda _delay: None,
    )


@pytest.fixture
def engine(item_store, match_repository, config, disclosure_gate, no_wait_retry):
    """Started matching engine subscribed to the item store."""
    engine = MatchingEngine(
        item_store,
        match_repository,
        config=config,
        disclosure_gate=disclosure_gate,
        retry_strategy=no_wait_retry,
    )
    engine.start()
    yield engine
    engine.stop()


@pytest.fixture
def make_item():
    """Factory for items with sensible defaults."""

    def _make(item_id: str, kind: str = "lost", **overrides) -> Item:
        data = {
            "id": item_id,
            "kind": kind,
            "reporter_id": f"reporter-{item_id}",
            "title": "Item",
            "description": "",
            "category": "Other",
            "location": {"address": ""},
            "event_date": utc(2025, 1, 9),
            "reported_at": utc(2025, 1, 10),
            "tags": [],
            "contact": ContactInfo(email=f"{item_id}@example.com"),
        }
        data.update(overrides)
        return Item.model_validate(data)

    return _make


@pytest.fixture
def central_mall_lost(make_item):
    """Lost iPhone reported at Central Mall on Jan 9."""
    return make_item(
        "lost-phone",
        kind="lost",
        title="Black iPhone 12",
        description="Black iPhone 12 with cracked screen",
        category="Electronics",
        location={"address": "Central Mall"},
        event_date=utc(2025, 1, 9),
        reported_at=utc(2025, 1, 9, 18),
        tags=["phone", "iphone"],
    )


@pytest.fixture
def central_mall_found(make_item):
    """Found iPhone handed in at the Central Mall food court on Jan 8."""
    return make_item(
        "found-phone",
        kind="found",
        title="iPhone 12",
        description="Black iPhone 12 in blue case, cracked",
        category="Electronics",
        location={"address": "Central Mall Food Court"},
        event_date=utc(2025, 1, 8),
        reported_at=utc(2025, 1, 8, 15),
        tags=["phone", "iphone", "case"],
    )


@pytest.fixture
def weak_found(make_item):
    """Found phone that only loosely resembles the Central Mall report."""
    return make_item(
        "found-weak",
        kind="found",
        title="iPhone",
        description="Black phone",
        category="Electronics",
        location={"address": "Central Station"},
        event_date=utc(2025, 1, 4),
        reported_at=utc(2025, 1, 4, 15),
        tags=["phone"],
    )
