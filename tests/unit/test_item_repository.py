"""Unit tests for SQLiteItemStore."""

import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from trackback.database.item_repository import SQLiteItemStore
from trackback.errors import ItemNotFound, ItemStoreUnavailable
from trackback.models.buckets import BucketScheme
from trackback.models.events import ItemArchived, ItemCreated, ItemUpdated
from trackback.models.item import ItemKind, ItemStatus


def utc(year, month, day, hour=12):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def events(item_store):
    """Collect events published by the store."""
    received = []
    item_store.subscribe(received.append)
    return received


class TestSchema:
    """Test database initialization."""

    def test_initialization_creates_tables(self, item_store, temp_db):
        """Test the migration creates items, matches, and schema_version."""
        assert Path(temp_db).exists()

        conn = sqlite3.connect(temp_db)
        tables = {
            row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
        match_columns = {row[1] for row in conn.execute("PRAGMA table_info(matches)")}
        conn.close()

        assert {"items", "matches", "schema_version"} <= tables
        assert version == 2
        assert {"degraded_signals", "disclosed_at"} <= match_columns


class TestItemWrites:
    """Test add/update/archive operations."""

    def test_add_and_get_round_trip(self, item_store, make_item):
        """Test every field survives storage."""
        item = make_item(
            "i1",
            title="Brown wallet",
            category="Accessories",
            location={"address": "Harbour Front", "coordinates": {"latitude": 1.28, "longitude": 103.85}},
            tags=["wallet", "leather"],
            reward=20.0,
            organization_id="org-9",
            images=["https://img.example.com/1.jpg"],
        )

        item_store.add_item(item)
        stored = item_store.get_item("i1")

        assert stored == item

    def test_add_duplicate_rejected(self, item_store, make_item):
        """Test ids are unique."""
        item_store.add_item(make_item("i1"))

        with pytest.raises(ValueError, match="already exists"):
            item_store.add_item(make_item("i1"))

    def test_get_missing_item(self, item_store):
        """Test unknown ids raise ItemNotFound."""
        with pytest.raises(ItemNotFound):
            item_store.get_item("nope")

    def test_add_publishes_created(self, item_store, events, make_item):
        """Test ItemCreated follows a successful insert."""
        item_store.add_item(make_item("i1"))

        assert len(events) == 1
        assert isinstance(events[0], ItemCreated)
        assert events[0].item.id == "i1"

    def test_scoring_edit_bumps_revision(self, item_store, events, make_item):
        """Test editing a scoring field increments the revision."""
        item_store.add_item(make_item("i1", category="Electronics"))

        updated = item_store.update_item("i1", category="Books")

        assert updated.category == "Books"
        assert updated.revision == 2
        assert updated.updated_at is not None
        assert isinstance(events[-1], ItemUpdated)
        assert events[-1].changed_fields == frozenset({"category"})
        assert events[-1].scoring_changed

    def test_non_scoring_edit_keeps_revision(self, item_store, events, make_item):
        """Test reward edits do not count as scoring changes."""
        item_store.add_item(make_item("i1"))

        updated = item_store.update_item("i1", reward=50.0)

        assert updated.revision == 1
        assert not events[-1].scoring_changed

    def test_no_op_edit_publishes_nothing(self, item_store, events, make_item):
        """Test writing identical values is a no-op."""
        item_store.add_item(make_item("i1", title="Scarf"))

        item_store.update_item("i1", title="Scarf")

        assert len(events) == 1

    def test_read_only_fields(self, item_store, make_item):
        """Test id, kind, and revision cannot be edited."""
        item_store.add_item(make_item("i1"))

        with pytest.raises(ValueError, match="read-only"):
            item_store.update_item("i1", kind=ItemKind.FOUND)

    def test_invalid_edit_rejected(self, item_store, make_item):
        """Test edits are validated like new items."""
        item_store.add_item(make_item("i1", reported_at=utc(2025, 1, 10)))

        with pytest.raises(ValueError):
            item_store.update_item("i1", event_date=utc(2025, 2, 1))
        assert item_store.get_item("i1").revision == 1

    def test_archive_publishes_archived(self, item_store, events, make_item):
        """Test archiving keeps the record and publishes ItemArchived."""
        item_store.add_item(make_item("i1"))

        item_store.archive_item("i1")

        assert isinstance(events[-1], ItemArchived)
        assert item_store.get_item("i1").status is ItemStatus.ARCHIVED
        assert item_store.list_active_items() == []

    def test_failing_subscriber_does_not_block_others(self, item_store, make_item):
        """Test a broken handler is logged and the rest still run."""
        received = []

        def broken(event):
            raise RuntimeError("boom")

        item_store.subscribe(broken)
        unsubscribe = item_store.subscribe(received.append)

        item_store.add_item(make_item("i1"))
        unsubscribe()
        item_store.add_item(make_item("i2"))

        assert [e.item.id for e in received] == ["i1"]

    def test_operational_error_is_transient(self, temp_dir):
        """Test SQLite operational failures surface as ItemStoreUnavailable."""
        store = SQLiteItemStore(temp_dir / "items.db")
        conn = sqlite3.connect(store.db_path)
        conn.execute("DROP TABLE items")
        conn.commit()
        conn.close()

        with pytest.raises(ItemStoreUnavailable):
            store.get_item("i1")


class TestItemReads:
    """Test listing, bucket lookup, and search."""

    @pytest.fixture
    def populated(self, item_store, make_item):
        item_store.add_item(make_item(
            "lost-umbrella", title="Blue umbrella", category="Other",
            location={"address": "Riverside Park"}, event_date=utc(2025, 3, 2),
            reported_at=utc(2025, 3, 3), tags=["umbrella"],
        ))
        item_store.add_item(make_item(
            "found-umbrella", kind="found", title="Umbrella", description="Navy blue, wooden handle",
            category="Other", location={"address": "Riverside Cafe"}, event_date=utc(2025, 3, 3),
            reported_at=utc(2025, 3, 4),
        ))
        item_store.add_item(make_item(
            "found-keys", kind="found", title="Car keys", category="Keys",
            location={"address": "Market Street"}, event_date=utc(2025, 4, 20),
            reported_at=utc(2025, 4, 21), tags=["toyota"],
        ))
        item_store.add_item(make_item(
            "lost-old", title="Blue notebook", category="Books", status=ItemStatus.RESOLVED,
            event_date=utc(2024, 12, 1), reported_at=utc(2024, 12, 2),
        ))
        return item_store

    def test_list_active_items(self, populated):
        """Test only active items are listed, ordered by id."""
        assert [i.id for i in populated.list_active_items()] == [
            "found-keys", "found-umbrella", "lost-umbrella",
        ]
        assert [i.id for i in populated.list_active_items(ItemKind.LOST)] == ["lost-umbrella"]

    def test_get_active_items_by_bucket(self, populated):
        """Test bucket lookup matches the bucket scheme."""
        scheme = BucketScheme()
        keys = populated.get_item("found-keys")

        items = populated.get_active_items_by_bucket("keys", "addr:market", scheme.time_bucket(keys))

        assert [i.id for i in items] == ["found-keys"]
        assert populated.get_active_items_by_bucket("keys", "addr:riverside", scheme.time_bucket(keys)) == []

    def test_search_free_text(self, populated):
        """Test free text matches title, description, and tags."""
        assert {i.id for i in populated.search_items(query="blue")} == {"lost-umbrella", "found-umbrella"}
        assert [i.id for i in populated.search_items(query="toyota")] == ["found-keys"]

    def test_search_filters(self, populated):
        """Test kind, category, location, and date filters combine."""
        assert [i.id for i in populated.search_items(kind="found", category="other")] == ["found-umbrella"]
        assert {i.id for i in populated.search_items(location="riverside")} == {
            "lost-umbrella", "found-umbrella",
        }
        assert [i.id for i in populated.search_items(date_from=date(2025, 4, 1))] == ["found-keys"]
        assert [i.id for i in populated.search_items(date_to=date(2025, 3, 2))] == ["lost-umbrella"]

    def test_search_newest_first_and_inactive(self, populated):
        """Test results are newest report first and inactive ones are opt-in."""
        assert [i.id for i in populated.search_items()] == [
            "found-keys", "found-umbrella", "lost-umbrella",
        ]
        assert "lost-old" in {i.id for i in populated.search_items(query="notebook", include_inactive=True)}
        assert populated.search_items(query="notebook") == []

    def test_statistics(self, populated):
        """Test counts by kind and status."""
        stats = populated.get_statistics()

        assert stats["total"] == 4
        assert stats["by_kind"] == {"lost": 2, "found": 2}
        assert stats["by_status"] == {"active": 3, "resolved": 1}
