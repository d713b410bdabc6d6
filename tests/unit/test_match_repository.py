"""Unit tests for MatchRepository."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from trackback.errors import DuplicateMatch, InvalidStateTransition, MatchNotFound
from trackback.models.match import MatchStatus

T0 = datetime(2025, 1, 10, 9, tzinfo=timezone.utc)


class TestCreate:
    """Test match creation and pair deduplication."""

    def test_create_pending(self, match_repository):
        """Test a new match starts pending with its breakdown."""
        match = match_repository.create_if_absent(
            "lost-1", "found-1", 80, T0, score_breakdown={"category": 25.0}
        )

        stored = match_repository.get(match.id)
        assert stored == match
        assert stored.status is MatchStatus.PENDING
        assert stored.score_breakdown == {"category": 25.0}

    def test_duplicate_active_pair(self, match_repository):
        """Test a pending match blocks another one for the same pair."""
        match_repository.create_if_absent("lost-1", "found-1", 80, T0)

        with pytest.raises(DuplicateMatch):
            match_repository.create_if_absent("lost-1", "found-1", 85, T0)

    def test_confirmed_pair_blocks_creation(self, match_repository):
        """Test confirmed matches also cover their pair."""
        match = match_repository.create_if_absent("lost-1", "found-1", 80, T0)
        match_repository.transition(match.id, MatchStatus.CONFIRMED, "reviewer", T0)

        with pytest.raises(DuplicateMatch):
            match_repository.create_if_absent("lost-1", "found-1", 80, T0)

    def test_rejected_pair_not_regenerated_without_edit(self, match_repository):
        """Test a rejected pair stays rejected until an item changes."""
        match = match_repository.create_if_absent("lost-1", "found-1", 80, T0)
        match_repository.transition(match.id, MatchStatus.REJECTED, "reviewer", T0)

        with pytest.raises(DuplicateMatch, match="not edited"):
            match_repository.create_if_absent("lost-1", "found-1", 80, T0)

    def test_rejected_pair_regenerated_after_edit(self, match_repository):
        """Test a new revision allows a fresh pending match beside the rejected one."""
        match = match_repository.create_if_absent("lost-1", "found-1", 80, T0)
        match_repository.transition(match.id, MatchStatus.REJECTED, "reviewer", T0)

        fresh = match_repository.create_if_absent(
            "lost-1", "found-1", 70, T0 + timedelta(hours=1), lost_revision=2
        )

        history = match_repository.list_for_pair("lost-1", "found-1")
        assert [m.status for m in history] == [MatchStatus.REJECTED, MatchStatus.PENDING]
        assert history[1].id == fresh.id

    def test_unique_index_backs_invariant(self, match_repository):
        """Test the storage layer refuses a second active row for a pair."""
        match_repository.create_if_absent("lost-1", "found-1", 80, T0)

        conn = sqlite3.connect(match_repository.db_path)
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO matches (id, lost_item_id, found_item_id, score, status, created_at) "
                "VALUES ('x', 'lost-1', 'found-1', 90, 'pending', '2025-01-10T00:00:00.000000+00:00')"
            )
        conn.close()


class TestTransitions:
    """Test atomic state changes."""

    def test_confirm(self, match_repository):
        """Test confirming records the verifier and time."""
        match = match_repository.create_if_absent("lost-1", "found-1", 80, T0)
        later = T0 + timedelta(minutes=10)

        confirmed = match_repository.transition(match.id, MatchStatus.CONFIRMED, "mod-1", later)

        assert confirmed.status is MatchStatus.CONFIRMED
        assert match_repository.get(match.id).verified_by == "mod-1"
        assert match_repository.get(match.id).verified_at == later

    def test_second_transition_fails(self, match_repository):
        """Test a decided match cannot be decided again."""
        match = match_repository.create_if_absent("lost-1", "found-1", 80, T0)
        match_repository.transition(match.id, MatchStatus.REJECTED, "mod-1", T0)

        with pytest.raises(InvalidStateTransition):
            match_repository.transition(match.id, MatchStatus.CONFIRMED, "mod-2", T0)
        assert match_repository.get(match.id).status is MatchStatus.REJECTED

    def test_unknown_match(self, match_repository):
        """Test unknown ids raise MatchNotFound."""
        with pytest.raises(MatchNotFound):
            match_repository.transition("missing", MatchStatus.CONFIRMED, "mod-1", T0)
        with pytest.raises(MatchNotFound):
            match_repository.get("missing")

    def test_update_score(self, match_repository):
        """Test rescoring keeps the match pending."""
        match = match_repository.create_if_absent("lost-1", "found-1", 80, T0)

        updated = match_repository.update_score(match.id, 55, {"category": 0.0}, 2, 1, T0)

        stored = match_repository.get(match.id)
        assert updated.score == stored.score == 55
        assert stored.status is MatchStatus.PENDING
        assert stored.lost_revision == 2

    def test_reject_rescored(self, match_repository):
        """Test the system rejection stores the rejecting score and revisions."""
        match = match_repository.create_if_absent("lost-1", "found-1", 62, T0)

        rejected = match_repository.reject_rescored(match.id, 37, {}, 2, 1, "system", T0)

        assert rejected.status is MatchStatus.REJECTED
        stored = match_repository.get(match.id)
        assert (stored.score, stored.verified_by, stored.lost_revision) == (37, "system", 2)

    def test_rescoring_replaces_degraded_signals(self, match_repository):
        """Test a rescore stores the notes of the new score, not the old one."""
        match = match_repository.create_if_absent(
            "lost-1", "found-1", 80, T0, degraded_signals=["location: used address tokens"]
        )
        assert match_repository.get(match.id).degraded_signals == ["location: used address tokens"]

        match_repository.update_score(match.id, 75, {}, 2, 1, T0, [])

        assert match_repository.get(match.id).degraded_signals == []

    def test_mark_disclosed(self, match_repository):
        """Test a confirmed match records when its contacts were released."""
        match = match_repository.create_if_absent("lost-1", "found-1", 80, T0)
        confirmed = match_repository.transition(match.id, MatchStatus.CONFIRMED, "mod-1", T0)
        assert confirmed.awaiting_disclosure

        later = T0 + timedelta(minutes=1)
        disclosed = match_repository.mark_disclosed(match.id, later)

        stored = match_repository.get(match.id)
        assert disclosed.disclosed_at == stored.disclosed_at == later
        assert not stored.awaiting_disclosure

    def test_mark_disclosed_requires_confirmed(self, match_repository):
        """Test pending matches cannot be marked disclosed."""
        match = match_repository.create_if_absent("lost-1", "found-1", 80, T0)

        with pytest.raises(InvalidStateTransition):
            match_repository.mark_disclosed(match.id, T0)
        assert match_repository.get(match.id).disclosed_at is None


class TestQueries:
    """Test listing and counts."""

    def test_list_order(self, match_repository):
        """Test descending score, then ascending created_at."""
        a = match_repository.create_if_absent("lost-1", "found-1", 70, T0 + timedelta(seconds=2))
        b = match_repository.create_if_absent("lost-1", "found-2", 90, T0 + timedelta(seconds=3))
        c = match_repository.create_if_absent("lost-2", "found-1", 70, T0)

        assert [m.id for m in match_repository.list_matches()] == [b.id, c.id, a.id]

    def test_list_filters(self, match_repository):
        """Test status and item filters."""
        a = match_repository.create_if_absent("lost-1", "found-1", 70, T0)
        b = match_repository.create_if_absent("lost-2", "found-1", 75, T0)
        match_repository.transition(b.id, MatchStatus.REJECTED, "mod-1", T0)

        assert [m.id for m in match_repository.list_matches(status="pending")] == [a.id]
        assert [m.id for m in match_repository.list_matches(item_id="lost-2")] == [b.id]
        assert {m.id for m in match_repository.list_matches(item_id="found-1")} == {a.id, b.id}

    def test_count_by_status(self, match_repository):
        """Test every status is reported."""
        match_repository.create_if_absent("lost-1", "found-1", 70, T0)

        assert match_repository.count_by_status() == {"pending": 1, "confirmed": 0, "rejected": 0}
