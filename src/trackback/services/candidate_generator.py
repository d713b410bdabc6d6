"""Candidate generation for lost/found matching.

Scoring every lost report against every found report is quadratic, so the
generator keeps a bucket index keyed by ``(category, location bucket, time
bucket)`` and only proposes opposite-kind items that share a category, sit in
the same or an adjacent time bucket, and share a location bucket.

Lookup Strategy
===============
1. Probe the item's own location buckets (plus the 8 neighbouring grid cells
   for geo-tagged items) across time buckets t-1, t, t+1.
2. If that yields fewer than ``min_candidates`` items, drop the location
   constraint and take every same-category item in those time buckets.
3. Rank by bucket proximity (time bucket distance, then location hits before
   location-free fallbacks, then item id) and cut at ``cap``.

The cap bounds scoring cost per item. The index is updated only through item
lifecycle events; lookups never mutate it.
"""

from dataclasses import dataclass
from threading import RLock

from loguru import logger

from trackback.database.item_store import ItemStore
from trackback.errors import ItemNotFound
from trackback.models.buckets import BucketScheme
from trackback.models.item import Item, ItemKind

BucketKey = tuple[ItemKind, str, str, int]  # kind, category, location bucket, time bucket
WideKey = tuple[ItemKind, str, int]  # kind, category, time bucket


@dataclass(frozen=True)
class _IndexEntry:
    kind: ItemKind
    category: str
    location_buckets: frozenset[str]
    time_bucket: int


@dataclass(frozen=True)
class Candidate:
    """An opposite-kind item proposed for scoring, with its proximity rank."""

    item_id: str
    time_distance: int
    location_hit: bool

    @property
    def rank(self) -> tuple[int, int, str]:
        return (self.time_distance, 0 if self.location_hit else 1, self.item_id)


class BucketIndex:
    """Thread-safe in-memory index of active items by bucket key."""

    def __init__(self, scheme: BucketScheme | None = None):
        self.scheme = scheme or BucketScheme()
        self._lock = RLock()
        self._entries: dict[str, _IndexEntry] = {}
        self._buckets: dict[BucketKey, set[str]] = {}
        self._wide: dict[WideKey, set[str]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return item_id in self._entries

    def add(self, item: Item) -> None:
        """File (or re-file) an item under its current bucket keys."""
        entry = _IndexEntry(
            kind=item.kind,
            category=self.scheme.category_key(item),
            location_buckets=self.scheme.location_buckets(item),
            time_bucket=self.scheme.time_bucket(item),
        )
        with self._lock:
            self._discard(item.id)
            self._entries[item.id] = entry
            for location in entry.location_buckets:
                key = (entry.kind, entry.category, location, entry.time_bucket)
                self._buckets.setdefault(key, set()).add(item.id)
            wide_key = (entry.kind, entry.category, entry.time_bucket)
            self._wide.setdefault(wide_key, set()).add(item.id)

    def remove(self, item_id: str) -> bool:
        """Drop an item from the index. Returns False if it was not indexed."""
        with self._lock:
            return self._discard(item_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._buckets.clear()
            self._wide.clear()

    def _discard(self, item_id: str) -> bool:
        entry = self._entries.pop(item_id, None)
        if entry is None:
            return False
        for location in entry.location_buckets:
            key = (entry.kind, entry.category, location, entry.time_bucket)
            members = self._buckets.get(key)
            if members is not None:
                members.discard(item_id)
                if not members:
                    del self._buckets[key]
        wide_key = (entry.kind, entry.category, entry.time_bucket)
        members = self._wide.get(wide_key)
        if members is not None:
            members.discard(item_id)
            if not members:
                del self._wide[wide_key]
        return True

    def lookup(self, item: Item, cap: int, min_candidates: int = 0) -> list[Candidate]:
        """Opposite-kind candidates for ``item``, ranked by bucket proximity."""
        target_kind = item.kind.opposite
        category = self.scheme.category_key(item)
        time_bucket = self.scheme.time_bucket(item)
        probes = self.scheme.probe_buckets(item)

        found: dict[str, Candidate] = {}
        with self._lock:
            for offset in (0, -1, 1):
                bucket = time_bucket + offset
                for location in probes:
                    for candidate_id in self._buckets.get((target_kind, category, location, bucket), ()):
                        found.setdefault(candidate_id, Candidate(candidate_id, abs(offset), True))

            if len(found) < min_candidates:
                for offset in (0, -1, 1):
                    bucket = time_bucket + offset
                    for candidate_id in self._wide.get((target_kind, category, bucket), ()):
                        found.setdefault(candidate_id, Candidate(candidate_id, abs(offset), False))

        found.pop(item.id, None)
        ranked = sorted(found.values(), key=lambda c: c.rank)
        return ranked[:cap]


class CandidateGenerator:
    """Proposes opposite-kind items worth scoring against a new or edited item."""

    def __init__(
        self,
        item_store: ItemStore,
        scheme: BucketScheme | None = None,
        cap: int = 200,
        min_candidates: int = 5,
    ):
        """Initialize generator.

        Args:
            item_store: Store used to resolve candidate ids to items
            scheme: Bucketing scheme shared with the index
            cap: Maximum candidates returned per lookup
            min_candidates: Below this many location hits, drop the location constraint
        """
        self.item_store = item_store
        self.index = BucketIndex(scheme)
        self.cap = cap
        self.min_candidates = min_candidates

    # -------------------------------------------------------------------------
    # Index maintenance (driven by item lifecycle events)
    # -------------------------------------------------------------------------

    def on_item_upserted(self, item: Item) -> None:
        """Index an active item; drop it from the index otherwise."""
        if item.is_active:
            self.index.add(item)
        else:
            self.index.remove(item.id)

    def on_item_removed(self, item_id: str) -> None:
        self.index.remove(item_id)

    def warm(self) -> int:
        """Rebuild the index from the store's active items.

        Returns:
            Number of indexed items
        """
        items = self.item_store.list_active_items()
        self.index.clear()
        for item in items:
            self.index.add(item)
        logger.info(f"Candidate index warmed with {len(items)} active item(s)")
        return len(items)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def candidate_ids(self, item: Item) -> list[str]:
        """Ranked candidate ids from the index (no store access)."""
        return [c.item_id for c in self.index.lookup(item, self.cap, self.min_candidates)]

    def generate(self, item: Item) -> list[Item]:
        """Resolve ranked candidates to active opposite-kind items.

        Candidates missing from the store are skipped and logged; the rest of
        the batch continues. Transient store errors propagate to the caller,
        which owns retries.
        """
        candidates: list[Item] = []
        for candidate_id in self.candidate_ids(item):
            try:
                candidate = self.item_store.get_item(candidate_id)
            except ItemNotFound:
                logger.warning(f"Candidate {candidate_id} for {item.id} vanished from store; skipping")
                continue
            if not candidate.is_active or candidate.kind is not item.kind.opposite:
                logger.debug(f"Candidate {candidate_id} no longer eligible ({candidate.status.value})")
                continue
            candidates.append(candidate)

        logger.debug(f"Generated {len(candidates)} candidate(s) for {item.kind.value} item {item.id}")
        return candidates
