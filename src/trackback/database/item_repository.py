"""
SQLite-backed item store.

Holds lost/found reports, bumps ``revision`` whenever a scoring-relevant field
changes, and publishes ItemCreated/ItemUpdated/ItemArchived events after each
committed write.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Iterator

from loguru import logger

from trackback.config.constants import SCORING_FIELDS
from trackback.database.connection import (
    from_iso,
    immediate_transaction,
    initialize_database,
    now_iso,
    open_connection,
    to_iso,
)
from trackback.database.item_store import ItemStore
from trackback.errors import ItemNotFound, ItemStoreUnavailable
from trackback.models.buckets import BucketScheme
from trackback.models.events import ItemArchived, ItemCreated, ItemUpdated
from trackback.models.item import Item, ItemKind, ItemStatus

# Fields a caller may not change through update_item
_READ_ONLY_FIELDS = frozenset({"id", "kind", "reporter_id", "reported_at", "revision", "updated_at"})


class SQLiteItemStore(ItemStore):
    """Item store persisted in the shared TrackBack SQLite database."""

    def __init__(self, db_path: str | Path = "~/.trackback/trackback.db",
                 bucket_scheme: BucketScheme | None = None):
        """Initialize store with database path.

        Args:
            db_path: Path to SQLite database (created with schema if missing)
            bucket_scheme: Bucketing used by get_active_items_by_bucket
        """
        super().__init__()
        self.db_path = initialize_database(db_path)
        self.bucket_scheme = bucket_scheme or BucketScheme()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, reporting SQLite operational failures as transient."""
        try:
            with open_connection(self.db_path) as conn:
                yield conn
        except sqlite3.OperationalError as e:
            raise ItemStoreUnavailable(f"Item store error: {e}") from e

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _to_row(item: Item) -> dict[str, Any]:
        coordinates = item.location.coordinates
        return {
            "id": item.id,
            "kind": item.kind.value,
            "reporter_id": item.reporter_id,
            "title": item.title,
            "description": item.description,
            "category": item.category,
            "address": item.location.address,
            "latitude": coordinates.latitude if coordinates else None,
            "longitude": coordinates.longitude if coordinates else None,
            "event_date": to_iso(item.event_date),
            "reported_at": to_iso(item.reported_at),
            "tags": json.dumps(sorted(item.tags)),
            "status": item.status.value,
            "contact": item.contact.model_dump_json(),
            "reward": item.reward,
            "organization_id": item.organization_id,
            "images": json.dumps(item.images),
            "revision": item.revision,
            "updated_at": to_iso(item.updated_at),
        }

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Item:
        coordinates = None
        if row["latitude"] is not None and row["longitude"] is not None:
            coordinates = {"latitude": row["latitude"], "longitude": row["longitude"]}
        return Item(
            id=row["id"],
            kind=row["kind"],
            reporter_id=row["reporter_id"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
            location={"address": row["address"], "coordinates": coordinates},
            event_date=from_iso(row["event_date"]),
            reported_at=from_iso(row["reported_at"]),
            tags=json.loads(row["tags"]),
            status=row["status"],
            contact=json.loads(row["contact"]),
            reward=row["reward"],
            organization_id=row["organization_id"],
            images=json.loads(row["images"]),
            revision=row["revision"],
            updated_at=from_iso(row["updated_at"]),
        )

    def _write(self, conn: sqlite3.Connection, item: Item) -> None:
        row = self._to_row(item)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        conn.execute(
            f"INSERT OR REPLACE INTO items ({columns}) VALUES ({placeholders})",
            tuple(row.values()),
        )

    def _read(self, conn: sqlite3.Connection, item_id: str) -> Item:
        row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise ItemNotFound(item_id)
        return self._from_row(row)

    # =========================================================================
    # Writes
    # =========================================================================

    def add_item(self, item: Item) -> Item:
        """Insert a new report and publish ItemCreated.

        Raises:
            ValueError: If an item with the same id already exists
        """
        with self._get_connection() as conn:
            try:
                with immediate_transaction(conn):
                    existing = conn.execute(
                        "SELECT 1 FROM items WHERE id = ?", (item.id,)
                    ).fetchone()
                    if existing:
                        raise ValueError(f"Item already exists: {item.id}")
                    self._write(conn, item)
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Invalid item {item.id}: {e}") from e

        logger.info(f"Added {item.kind.value} item {item.id}: {item.title!r} ({item.category})")
        self._publish(ItemCreated(item))
        return item

    def update_item(self, item_id: str, **changes: Any) -> Item:
        """Apply field changes to an item and publish ItemUpdated.

        ``revision`` is bumped when any scoring-relevant field changes. A
        ``status`` change to archived publishes ItemArchived instead.

        Args:
            item_id: Item to edit
            **changes: Field values to replace (e.g. ``category="Books"``)

        Returns:
            Updated item

        Raises:
            ItemNotFound: If the item does not exist
            ValueError: If a read-only field is changed or validation fails
        """
        forbidden = _READ_ONLY_FIELDS & changes.keys()
        if forbidden:
            raise ValueError(f"Cannot change read-only fields: {sorted(forbidden)}")

        with self._get_connection() as conn:
            with immediate_transaction(conn):
                current = self._read(conn, item_id)
                data = current.model_dump()
                data.update(changes)
                candidate = Item.model_validate(data)

                changed = {
                    name for name in Item.model_fields
                    if getattr(candidate, name) != getattr(current, name)
                }
                if not changed:
                    return current

                revision = current.revision + 1 if changed & SCORING_FIELDS else current.revision
                updated = candidate.model_copy(
                    update={"revision": revision, "updated_at": datetime.now(timezone.utc)}
                )
                self._write(conn, updated)

        logger.info(
            f"Updated item {item_id} (fields: {', '.join(sorted(changed))}; "
            f"revision {updated.revision})"
        )
        if updated.status is ItemStatus.ARCHIVED and "status" in changed:
            self._publish(ItemArchived(updated))
        else:
            self._publish(ItemUpdated(updated, frozenset(changed)))
        return updated

    def set_status(self, item_id: str, status: ItemStatus) -> Item:
        """Change an item's status."""
        return self.update_item(item_id, status=ItemStatus(status))

    def archive_item(self, item_id: str) -> Item:
        """Archive an item. It stays stored for audit but leaves candidate generation."""
        return self.set_status(item_id, ItemStatus.ARCHIVED)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_item(self, item_id: str) -> Item:
        with self._get_connection() as conn:
            return self._read(conn, item_id)

    def list_active_items(self, kind: ItemKind | None = None) -> list[Item]:
        query = "SELECT * FROM items WHERE status = 'active'"
        params: tuple = ()
        if kind is not None:
            query += " AND kind = ?"
            params = (ItemKind(kind).value,)
        query += " ORDER BY id"
        with self._get_connection() as conn:
            return [self._from_row(row) for row in conn.execute(query, params)]

    def get_active_items_by_bucket(
        self, category: str, location_bucket: str, time_bucket: int
    ) -> list[Item]:
        """Active items whose bucket keys include the given key.

        Category filtering happens in SQL; location and time buckets depend on
        the bucket scheme and are evaluated per row.
        """
        scheme = self.bucket_scheme
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM items
                WHERE status = 'active' AND lower(category) = lower(?)
                ORDER BY id
                """,
                (category,),
            ).fetchall()
        items = [self._from_row(row) for row in rows]
        return [
            item for item in items
            if scheme.time_bucket(item) == time_bucket
            and location_bucket in scheme.location_buckets(item)
        ]

    def search_items(
        self,
        query: str | None = None,
        kind: ItemKind | str | None = None,
        category: str | None = None,
        location: str | None = None,
        date_from: date | datetime | None = None,
        date_to: date | datetime | None = None,
        include_inactive: bool = False,
    ) -> list[Item]:
        """Filter reports the way the browse/search page does.

        Args:
            query: Case-insensitive substring of title, description, or any tag
            kind: Only lost or only found reports
            category: Exact category (case-insensitive)
            location: Case-insensitive substring of the address
            date_from: Earliest event date (inclusive)
            date_to: Latest event date (inclusive; a bare date covers the whole day)
            include_inactive: Also return matched/resolved/archived reports

        Returns:
            Matching items, newest report first
        """
        sql = "SELECT * FROM items WHERE 1 = 1"
        params: list[Any] = []
        if not include_inactive:
            sql += " AND status = 'active'"
        if kind is not None:
            sql += " AND kind = ?"
            params.append(ItemKind(kind).value)
        if category:
            sql += " AND lower(category) = lower(?)"
            params.append(category.strip())
        if date_from is not None:
            sql += " AND event_date >= ?"
            params.append(to_iso(_day_bound(date_from, end=False)))
        if date_to is not None:
            sql += " AND event_date <= ?"
            params.append(to_iso(_day_bound(date_to, end=True)))
        sql += " ORDER BY reported_at DESC, id"

        with self._get_connection() as conn:
            items = [self._from_row(row) for row in conn.execute(sql, params)]

        if query:
            needle = query.casefold()
            items = [
                item for item in items
                if needle in item.title.casefold()
                or needle in item.description.casefold()
                or any(needle in tag for tag in item.tags)
            ]
        if location:
            place = location.casefold()
            items = [item for item in items if place in item.location.address.casefold()]

        logger.debug(f"Item search returned {len(items)} result(s)")
        return items

    def get_statistics(self) -> dict[str, Any]:
        """Counts of items by kind and by status."""
        with self._get_connection() as conn:
            by_kind = {
                row["kind"]: row["count"]
                for row in conn.execute("SELECT kind, COUNT(*) AS count FROM items GROUP BY kind")
            }
            by_status = {
                row["status"]: row["count"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS count FROM items GROUP BY status"
                )
            }
        return {
            "total": sum(by_kind.values()),
            "by_kind": by_kind,
            "by_status": by_status,
            "generated_at": now_iso(),
        }


def _day_bound(value: date | datetime, end: bool) -> datetime:
    """Turn a bare date into the start or end of that UTC day."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    bound = time.max if end else time.min
    return datetime.combine(value, bound, tzinfo=timezone.utc)
