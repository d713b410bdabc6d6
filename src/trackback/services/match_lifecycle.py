"""Match lifecycle management.

Owns every write to Match records:

- ``create``: store a pending match for a pair that cleared the generation
  threshold, unless the pair is already covered (silent no-op).
- ``confirm`` / ``reject``: reviewer decisions, valid only from pending. A
  confirm that stopped after the match was stored but before both items were
  updated and contacts released can be retried by the same verifier.
- ``invalidate_on_edit``: rescore the pending matches of an edited item,
  auto-rejecting the ones that fall below the retain threshold.

Writes on one (lost, found) pair are serialized by a per-pair lock and run as
single-writer SQLite transactions, so concurrent creates never produce two
pending matches and a confirm racing a reject has exactly one winner.
"""

from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from trackback.config.constants import SYSTEM_VERIFIER
from trackback.database.item_store import ItemStore
from trackback.database.match_repository import MatchRepository
from trackback.errors import DuplicateMatch, InvalidStateTransition, ItemNotFound
from trackback.models.item import Item, ItemKind, ItemStatus
from trackback.models.match import Match, MatchStatus
from trackback.services.disclosure_gate import DisclosureGate, LoggingDisclosureGate
from trackback.services.pair_locks import PairLockRegistry
from trackback.services.similarity_scorer import ScoreResult, SimilarityScorer


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchLifecycleManager:
    """Creates, deduplicates, and transitions matches."""

    def __init__(
        self,
        repository: MatchRepository,
        item_store: ItemStore,
        scorer: SimilarityScorer | None = None,
        disclosure_gate: DisclosureGate | None = None,
        generation_threshold: int = 60,
        retain_threshold: int = 40,
        confirmed_item_status: ItemStatus | str = ItemStatus.RESOLVED,
        clock: Callable[[], datetime] = _utc_now,
        locks: PairLockRegistry | None = None,
    ):
        """Initialize lifecycle manager.

        Args:
            repository: Match persistence
            item_store: Source of item data and target of status changes on confirm
            scorer: Scorer used when rescoring after edits
            disclosure_gate: Receives contact payloads on confirm
            generation_threshold: Minimum score for a new pending match
            retain_threshold: Rescored pending matches below this are rejected
            confirmed_item_status: Status given to both items on confirm (resolved or matched)
            clock: Source of timestamps
            locks: Per-pair lock registry
        """
        if retain_threshold > generation_threshold:
            raise ValueError("retain_threshold must not exceed generation_threshold")
        confirmed_item_status = ItemStatus(confirmed_item_status)
        if confirmed_item_status not in (ItemStatus.RESOLVED, ItemStatus.MATCHED):
            raise ValueError(f"Unsupported confirmed item status: {confirmed_item_status.value}")

        self.repository = repository
        self.item_store = item_store
        self.scorer = scorer or SimilarityScorer()
        self.disclosure_gate = disclosure_gate or LoggingDisclosureGate()
        self.generation_threshold = generation_threshold
        self.retain_threshold = retain_threshold
        self.confirmed_item_status = confirmed_item_status
        self._clock = clock
        self._locks = locks or PairLockRegistry()

    # =========================================================================
    # Creation
    # =========================================================================

    def create(self, lost: Item, found: Item, result: ScoreResult | None = None) -> Match | None:
        """Create a pending match for a scored pair.

        Args:
            lost: Lost report
            found: Found report
            result: Precomputed score (scored here when omitted)

        Returns:
            The new match, or None when the score is below threshold or the
            pair is already covered
        """
        if lost.kind is not ItemKind.LOST or found.kind is not ItemKind.FOUND:
            raise ValueError(
                f"Match needs one lost and one found item, got {lost.kind.value}/{found.kind.value}"
            )

        if result is None:
            result = self.scorer.evaluate(lost, found)
        if result.score < self.generation_threshold:
            logger.debug(
                f"Pair {lost.id} ↔ {found.id} scored {result.score} "
                f"(< {self.generation_threshold}); no match"
            )
            return None

        with self._locks.hold(lost.id, found.id):
            try:
                match = self.repository.create_if_absent(
                    lost_item_id=lost.id,
                    found_item_id=found.id,
                    score=result.score,
                    created_at=self._clock(),
                    score_breakdown=result.breakdown(),
                    lost_revision=lost.revision,
                    found_revision=found.revision,
                    degraded_signals=result.degraded_signals(),
                )
            except DuplicateMatch as e:
                logger.debug(f"Skipped duplicate match: {e}")
                return None

        logger.info(f"Created pending match {match.id}: {lost.id} ↔ {found.id} (score {match.score})")
        return match

    # =========================================================================
    # Reviewer decisions
    # =========================================================================

    def confirm(self, match_id: str, verifier_id: str) -> Match:
        """Confirm a pending match.

        Marks both items with the confirmed-item status and hands both
        reporters' contact details to the disclosure gate. The match records
        ``disclosed_at`` only once both steps succeed; until then the same
        verifier may call ``confirm`` again to finish the job.

        Raises:
            MatchNotFound: If the match does not exist
            ItemNotFound: If either referenced item is missing
            InvalidStateTransition: If the match is not pending and not
                awaiting completion of this verifier's confirmation
        """
        if not verifier_id:
            raise ValueError("verifier_id is required")
        match = self.repository.get(match_id)
        lost = self.item_store.get_item(match.lost_item_id)
        found = self.item_store.get_item(match.found_item_id)

        with self._locks.hold(lost.id, found.id):
            current = self.repository.get(match_id)
            if current.awaiting_disclosure and current.verified_by == verifier_id:
                logger.info(f"Resuming confirmation of match {match_id} by {verifier_id}")
            else:
                self._transition(current, MatchStatus.CONFIRMED, verifier_id)

            for item in (lost, found):
                self.item_store.set_status(item.id, self.confirmed_item_status)
            self.disclosure_gate.on_match_confirmed(match_id, lost.contact, found.contact)
            return self.repository.mark_disclosed(match_id, self._clock())

    def reject(self, match_id: str, verifier_id: str) -> Match:
        """Reject a pending match. Item statuses are left unchanged.

        Raises:
            MatchNotFound: If the match does not exist
            InvalidStateTransition: If the match is not pending
        """
        if not verifier_id:
            raise ValueError("verifier_id is required")
        match = self.repository.get(match_id)
        with self._locks.hold(match.lost_item_id, match.found_item_id):
            return self._transition(match, MatchStatus.REJECTED, verifier_id)

    def _transition(self, match: Match, target: MatchStatus, verifier_id: str) -> Match:
        """Move a match to ``target``. Callers hold the pair lock."""
        try:
            updated = self.repository.transition(match.id, target, verifier_id, self._clock())
        except InvalidStateTransition as e:
            logger.warning(f"Rejected state change by {verifier_id}: {e}")
            raise
        logger.info(f"Match {match.id} {target.value} by {verifier_id}")
        return updated

    # =========================================================================
    # Edits
    # =========================================================================

    def invalidate_on_edit(self, item_id: str) -> list[Match]:
        """Rescore the pending matches of an edited item.

        Matches whose new score falls below the retain threshold are rejected
        with ``verified_by="system"``; the rest keep their status and take the
        new score. Confirmed and rejected matches are never touched.

        Returns:
            Matches that were rescored or rejected
        """
        changed: list[Match] = []
        for match in self.repository.list_matches(status=MatchStatus.PENDING, item_id=item_id):
            try:
                lost = self.item_store.get_item(match.lost_item_id)
                found = self.item_store.get_item(match.found_item_id)
            except ItemNotFound as e:
                logger.warning(f"Cannot rescore match {match.id}: {e}")
                continue

            result = self.scorer.evaluate(lost, found)
            with self._locks.hold(lost.id, found.id):
                try:
                    if result.score < self.retain_threshold:
                        updated = self.repository.reject_rescored(
                            match.id,
                            result.score,
                            result.breakdown(),
                            lost.revision,
                            found.revision,
                            SYSTEM_VERIFIER,
                            self._clock(),
                            result.degraded_signals(),
                        )
                    else:
                        updated = self.repository.update_score(
                            match.id,
                            result.score,
                            result.breakdown(),
                            lost.revision,
                            found.revision,
                            self._clock(),
                            result.degraded_signals(),
                        )
                except InvalidStateTransition:
                    logger.info(f"Match {match.id} was decided before rescoring; left as is")
                    continue

            if updated.status is MatchStatus.REJECTED:
                logger.info(
                    f"Match {match.id} auto-rejected after edit of {item_id}: "
                    f"score {match.score} → {result.score} (< {self.retain_threshold})"
                )
            else:
                logger.info(f"Match {match.id} rescored after edit of {item_id}: {match.score} → {result.score}")
            changed.append(updated)

        return changed

    # =========================================================================
    # Queries
    # =========================================================================

    def get_match(self, match_id: str) -> Match:
        return self.repository.get(match_id)

    def list_matches(
        self, status: MatchStatus | str | None = None, item_id: str | None = None
    ) -> list[Match]:
        """Matches ordered by descending score, then ascending created_at."""
        return self.repository.list_matches(status=status, item_id=item_id)
