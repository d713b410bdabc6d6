"""Item matching engine.

Wires the candidate generator, similarity scorer, and match lifecycle manager
to an item store:

    ItemCreated/ItemUpdated → candidate generator → scorer (parallel) → lifecycle.create
    reviewer decision → lifecycle.confirm / lifecycle.reject

Transient item store failures are retried here, around the candidate
generator, with exponential backoff. Scoring writes nothing, so a per-item
scoring timeout simply abandons that item's batch.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable

from loguru import logger

from trackback.config.settings import Config, get_config
from trackback.database.item_store import ItemStore
from trackback.database.match_repository import MatchRepository
from trackback.errors import ItemNotFound
from trackback.models.buckets import BucketScheme
from trackback.models.events import ItemArchived, ItemCreated, ItemEvent, ItemUpdated
from trackback.models.item import Item, ItemKind
from trackback.models.match import Match, MatchStatus
from trackback.services.assignment import AssignmentSuggestion, suggest_assignments
from trackback.services.candidate_generator import CandidateGenerator
from trackback.services.disclosure_gate import DisclosureGate
from trackback.services.match_lifecycle import MatchLifecycleManager
from trackback.services.retry_strategy import RetryConfig, RetryStrategy
from trackback.services.similarity_scorer import ScoreResult, ScoringConfig, SimilarityScorer

ScoredPair = tuple[Item, Item, ScoreResult]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchingEngine:
    """Facade over candidate generation, scoring, and the match lifecycle."""

    def __init__(
        self,
        item_store: ItemStore,
        match_repository: MatchRepository,
        config: Config | None = None,
        disclosure_gate: DisclosureGate | None = None,
        retry_strategy: RetryStrategy | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initialize engine.

        Args:
            item_store: Source of item reports and lifecycle events
            match_repository: Match persistence
            config: Engine settings (global config when omitted)
            disclosure_gate: Receives contact payloads on confirm
            retry_strategy: Retry policy for item store access
            clock: Source of timestamps for match records
        """
        self.config = config or get_config()
        self.item_store = item_store

        scheme = BucketScheme(
            time_bucket_days=self.config.time_bucket_days,
            geo_cell_degrees=self.config.geo_cell_degrees,
        )
        self.scorer = SimilarityScorer(ScoringConfig.from_config(self.config))
        self.generator = CandidateGenerator(
            item_store,
            scheme=scheme,
            cap=self.config.candidate_cap,
            min_candidates=self.config.min_candidates,
        )
        self.lifecycle = MatchLifecycleManager(
            match_repository,
            item_store,
            scorer=self.scorer,
            disclosure_gate=disclosure_gate,
            generation_threshold=self.config.generation_threshold,
            retain_threshold=self.config.retain_threshold,
            confirmed_item_status=self.config.confirmed_item_status,
            clock=clock,
        )
        self.retry = retry_strategy or RetryStrategy(
            RetryConfig(
                max_retries=self.config.store_max_retries,
                base_delay_seconds=self.config.store_retry_base_delay_seconds,
                max_delay_seconds=self.config.store_retry_max_delay_seconds,
            )
        )

        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = Lock()
        self._unsubscribe: Callable[[], None] | None = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Warm the candidate index and subscribe to item events."""
        self.retry.retry_sync(self.generator.warm)
        if self._unsubscribe is None:
            self._unsubscribe = self.item_store.subscribe(self.handle_event)
        logger.info("Matching engine started")

    def stop(self) -> None:
        """Unsubscribe from item events and release scoring threads."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True, cancel_futures=True)
                self._executor = None
        logger.info("Matching engine stopped")

    def __enter__(self) -> "MatchingEngine":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.scoring_workers,
                    thread_name_prefix="trackback-score",
                )
            return self._executor

    # =========================================================================
    # Item events
    # =========================================================================

    def handle_event(self, event: ItemEvent) -> None:
        """React to an item store event."""
        item = event.item
        if isinstance(event, ItemArchived):
            self.generator.on_item_removed(item.id)
            logger.debug(f"Item {item.id} archived; removed from candidate index")
            return

        self.generator.on_item_upserted(item)

        if isinstance(event, ItemCreated):
            if item.is_active:
                self.process_item(item)
            return

        if isinstance(event, ItemUpdated):
            if event.scoring_changed:
                self.lifecycle.invalidate_on_edit(item.id)
            if item.is_active and (event.scoring_changed or "status" in event.changed_fields):
                self.process_item(item)

    # =========================================================================
    # Matching pipeline
    # =========================================================================

    def process_item(self, item: Item | str) -> list[Match]:
        """Generate, score, and record matches for one item.

        Args:
            item: Item or item id (fetched from the store)

        Returns:
            Newly created pending matches, highest score first
        """
        if isinstance(item, str):
            try:
                item = self.retry.retry_sync(self.item_store.get_item, item)
            except ItemNotFound as e:
                logger.warning(f"Skipping match generation: {e}")
                return []

        if not item.is_active:
            logger.debug(f"Item {item.id} is {item.status.value}; no match generation")
            return []

        candidates = self.retry.retry_sync(self.generator.generate, item)
        if not candidates:
            return []

        scored = self.score_candidates(item, candidates)
        if scored is None:
            return []

        created: list[Match] = []
        for lost, found, result in scored:
            match = self.lifecycle.create(lost, found, result)
            if match is not None:
                created.append(match)

        logger.info(
            f"Processed {item.kind.value} item {item.id}: {len(candidates)} candidate(s), "
            f"{len(created)} new match(es)"
        )
        return created

    def score_candidates(self, item: Item, candidates: list[Item]) -> list[ScoredPair] | None:
        """Score an item against its candidates, in parallel when configured.

        Returns:
            Scored (lost, found, result) triples, highest score first, or None
            when the per-item scoring timeout expired
        """
        pairs = [
            (item, candidate) if item.kind is ItemKind.LOST else (candidate, item)
            for candidate in candidates
        ]

        timeout = self.config.scoring_timeout_seconds
        if self.config.scoring_workers <= 1 or len(pairs) <= 1:
            results = [self.scorer.evaluate(lost, found) for lost, found in pairs]
        else:
            executor = self._get_executor()
            futures = [executor.submit(self.scorer.evaluate, lost, found) for lost, found in pairs]
            try:
                results = [future.result(timeout=timeout) for future in futures]
            except FuturesTimeoutError:
                for future in futures:
                    future.cancel()
                logger.warning(
                    f"Scoring for item {item.id} exceeded {timeout}s; "
                    f"abandoned {len(pairs)} candidate(s)"
                )
                return None

        scored = [(lost, found, result) for (lost, found), result in zip(pairs, results, strict=True)]
        scored.sort(key=lambda triple: (-triple[2].score, triple[0].id, triple[1].id))
        return scored

    def rescan(self) -> dict[str, int]:
        """Rebuild the index and run match generation for every active item.

        Returns:
            Counts of processed items and created matches
        """
        indexed = self.retry.retry_sync(self.generator.warm)
        items = self.retry.retry_sync(self.item_store.list_active_items)
        created = 0
        for item in items:
            created += len(self.process_item(item))
        logger.info(f"Rescan complete: {len(items)} item(s), {created} new match(es)")
        return {"indexed": indexed, "processed": len(items), "created": created}

    # =========================================================================
    # Reviewer operations
    # =========================================================================

    def list_matches(
        self, status: MatchStatus | str | None = None, item_id: str | None = None
    ) -> list[Match]:
        return self.lifecycle.list_matches(status=status, item_id=item_id)

    def get_match(self, match_id: str) -> Match:
        return self.lifecycle.get_match(match_id)

    def confirm_match(self, match_id: str, verifier_id: str) -> Match:
        return self.lifecycle.confirm(match_id, verifier_id)

    def reject_match(self, match_id: str, verifier_id: str) -> Match:
        return self.lifecycle.reject(match_id, verifier_id)

    def suggest_assignments(self, item_id: str | None = None) -> AssignmentSuggestion:
        """Optimal one-to-one pairing over pending matches (advisory)."""
        pending = self.list_matches(status=MatchStatus.PENDING, item_id=item_id)
        return suggest_assignments(pending, min_score=self.config.generation_threshold)

    def get_statistics(self) -> dict[str, Any]:
        """Match counts by status plus item counts when the store provides them."""
        stats: dict[str, Any] = {
            "matches": self.lifecycle.repository.count_by_status(),
            "indexed_items": len(self.generator.index),
        }
        item_stats = getattr(self.item_store, "get_statistics", None)
        if callable(item_stats):
            stats["items"] = item_stats()
        return stats
