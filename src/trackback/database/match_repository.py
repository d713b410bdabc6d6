"""
Match repository.

Persists Match records in the shared TrackBack SQLite database. Matches are
never deleted: confirmed and rejected rows are kept for audit and to stop the
engine from regenerating a pair a reviewer already turned down.

Every check-then-write method runs inside a ``BEGIN IMMEDIATE`` transaction,
and a partial unique index on (lost_item_id, found_item_id) for non-rejected
rows backs the one-active-match-per-pair invariant at the storage layer.
"""

import json
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from trackback.database.connection import (
    from_iso,
    immediate_transaction,
    initialize_database,
    open_connection,
    to_iso,
)
from trackback.errors import DuplicateMatch, InvalidStateTransition, MatchNotFound
from trackback.models.match import Match, MatchStatus

_ORDER_BY = "ORDER BY score DESC, created_at ASC, id ASC"


class MatchRepository:
    """Repository for match persistence and atomic state changes."""

    def __init__(self, db_path: str | Path = "~/.trackback/trackback.db"):
        """Initialize repository with database path.

        Args:
            db_path: Path to SQLite database (created with schema if missing)
        """
        self.db_path = initialize_database(db_path)

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Match:
        return Match(
            id=row["id"],
            lost_item_id=row["lost_item_id"],
            found_item_id=row["found_item_id"],
            score=row["score"],
            status=row["status"],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            verified_by=row["verified_by"],
            verified_at=from_iso(row["verified_at"]),
            score_breakdown=json.loads(row["score_breakdown"]),
            degraded_signals=json.loads(row["degraded_signals"]),
            lost_revision=row["lost_revision"],
            found_revision=row["found_revision"],
            disclosed_at=from_iso(row["disclosed_at"]),
        )

    @staticmethod
    def _select(conn: sqlite3.Connection, match_id: str) -> Match:
        row = conn.execute("SELECT * FROM matches WHERE id = ?", (match_id,)).fetchone()
        if row is None:
            raise MatchNotFound(match_id)
        return MatchRepository._from_row(row)

    # =========================================================================
    # Writes
    # =========================================================================

    def create_if_absent(
        self,
        lost_item_id: str,
        found_item_id: str,
        score: int,
        created_at: datetime,
        score_breakdown: dict[str, float] | None = None,
        lost_revision: int = 1,
        found_revision: int = 1,
        degraded_signals: list[str] | None = None,
    ) -> Match:
        """Insert a pending match unless the pair is already covered.

        A pair is covered when a pending or confirmed match exists for it, or
        when a rejected match exists that was scored against the same item
        revisions (neither item edited since the rejection).

        Returns:
            The new pending match

        Raises:
            DuplicateMatch: If the pair is already covered
        """
        match = Match(
            id=uuid.uuid4().hex,
            lost_item_id=lost_item_id,
            found_item_id=found_item_id,
            score=score,
            status=MatchStatus.PENDING,
            created_at=created_at,
            score_breakdown=score_breakdown or {},
            degraded_signals=list(degraded_signals or []),
            lost_revision=lost_revision,
            found_revision=found_revision,
        )

        with open_connection(self.db_path) as conn:
            try:
                with immediate_transaction(conn):
                    active = conn.execute(
                        """
                        SELECT id FROM matches
                        WHERE lost_item_id = ? AND found_item_id = ? AND status != 'rejected'
                        """,
                        (lost_item_id, found_item_id),
                    ).fetchone()
                    if active:
                        raise DuplicateMatch(lost_item_id, found_item_id, f"match {active['id']}")

                    stale = conn.execute(
                        """
                        SELECT id FROM matches
                        WHERE lost_item_id = ? AND found_item_id = ? AND status = 'rejected'
                          AND lost_revision = ? AND found_revision = ?
                        """,
                        (lost_item_id, found_item_id, lost_revision, found_revision),
                    ).fetchone()
                    if stale:
                        raise DuplicateMatch(
                            lost_item_id, found_item_id,
                            f"rejected as {stale['id']} and not edited since",
                        )

                    conn.execute(
                        """
                        INSERT INTO matches (
                            id, lost_item_id, found_item_id, score, status, created_at,
                            updated_at, verified_by, verified_at, score_breakdown,
                            degraded_signals, lost_revision, found_revision
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            match.id,
                            lost_item_id,
                            found_item_id,
                            score,
                            match.status.value,
                            to_iso(created_at),
                            None,
                            None,
                            None,
                            json.dumps(match.score_breakdown, sort_keys=True),
                            json.dumps(match.degraded_signals),
                            lost_revision,
                            found_revision,
                        ),
                    )
            except sqlite3.IntegrityError as e:
                # Unique index caught a writer outside this process
                raise DuplicateMatch(lost_item_id, found_item_id, str(e)) from e

        logger.debug(f"Inserted match {match.id} ({lost_item_id} ↔ {found_item_id}, score {score})")
        return match

    def transition(
        self, match_id: str, target: MatchStatus, verified_by: str, at: datetime
    ) -> Match:
        """Atomically move a match to a terminal status.

        The current status is re-read inside the write transaction, so of two
        racing transitions exactly one succeeds.

        Raises:
            MatchNotFound: If the match does not exist
            InvalidStateTransition: If the match is not pending
        """
        with open_connection(self.db_path) as conn:
            with immediate_transaction(conn):
                current = self._select(conn, match_id)
                updated = current.transition(target, verified_by, at)
                conn.execute(
                    """
                    UPDATE matches
                    SET status = ?, verified_by = ?, verified_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        updated.status.value,
                        updated.verified_by,
                        to_iso(updated.verified_at),
                        to_iso(updated.updated_at),
                        match_id,
                    ),
                )
        return updated

    def update_score(
        self,
        match_id: str,
        score: int,
        score_breakdown: dict[str, float],
        lost_revision: int,
        found_revision: int,
        at: datetime,
        degraded_signals: list[str] | None = None,
    ) -> Match:
        """Replace the score of a pending match.

        Raises:
            MatchNotFound: If the match does not exist
            InvalidStateTransition: If the match is no longer pending
        """
        with open_connection(self.db_path) as conn:
            with immediate_transaction(conn):
                current = self._select(conn, match_id)
                updated = current.rescored(
                    score, score_breakdown, lost_revision, found_revision, at, degraded_signals
                )
                conn.execute(
                    """
                    UPDATE matches
                    SET score = ?, score_breakdown = ?, degraded_signals = ?,
                        lost_revision = ?, found_revision = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        score,
                        json.dumps(score_breakdown, sort_keys=True),
                        json.dumps(updated.degraded_signals),
                        lost_revision,
                        found_revision,
                        to_iso(at),
                        match_id,
                    ),
                )
        return updated

    def reject_rescored(
        self,
        match_id: str,
        score: int,
        score_breakdown: dict[str, float],
        lost_revision: int,
        found_revision: int,
        verified_by: str,
        at: datetime,
        degraded_signals: list[str] | None = None,
    ) -> Match:
        """Record a new score and reject the match in one transaction.

        The stored revisions are the ones the rejecting score was computed
        against, so the pair is not regenerated until one item is edited again.
        """
        with open_connection(self.db_path) as conn:
            with immediate_transaction(conn):
                current = self._select(conn, match_id)
                rescored = current.rescored(
                    score, score_breakdown, lost_revision, found_revision, at, degraded_signals
                )
                updated = rescored.transition(MatchStatus.REJECTED, verified_by, at)
                conn.execute(
                    """
                    UPDATE matches
                    SET score = ?, score_breakdown = ?, degraded_signals = ?,
                        lost_revision = ?, found_revision = ?,
                        status = ?, verified_by = ?, verified_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        score,
                        json.dumps(score_breakdown, sort_keys=True),
                        json.dumps(updated.degraded_signals),
                        lost_revision,
                        found_revision,
                        updated.status.value,
                        verified_by,
                        to_iso(at),
                        to_iso(at),
                        match_id,
                    ),
                )
        return updated

    def mark_disclosed(self, match_id: str, at: datetime) -> Match:
        """Record that a confirmed match finished its item updates and contact release.

        Raises:
            MatchNotFound: If the match does not exist
            InvalidStateTransition: If the match is not confirmed
        """
        with open_connection(self.db_path) as conn:
            with immediate_transaction(conn):
                current = self._select(conn, match_id)
                if current.status is not MatchStatus.CONFIRMED:
                    raise InvalidStateTransition(match_id, current.status.value, "disclosed")
                updated = current.model_copy(update={"disclosed_at": at})
                conn.execute(
                    "UPDATE matches SET disclosed_at = ? WHERE id = ?",
                    (to_iso(at), match_id),
                )
        return updated


    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, match_id: str) -> Match:
        """Fetch one match.

        Raises:
            MatchNotFound: If the match does not exist
        """
        with open_connection(self.db_path) as conn:
            return self._select(conn, match_id)

    def list_matches(
        self, status: MatchStatus | str | None = None, item_id: str | None = None
    ) -> list[Match]:
        """Matches ordered by descending score, then ascending created_at, then id.

        Args:
            status: Only matches in this status
            item_id: Only matches referencing this item (lost or found side)
        """
        sql = "SELECT * FROM matches WHERE 1 = 1"
        params: list[Any] = []
        if status is not None:
            sql += " AND status = ?"
            params.append(MatchStatus(status).value)
        if item_id is not None:
            sql += " AND (lost_item_id = ? OR found_item_id = ?)"
            params.extend([item_id, item_id])
        sql += f" {_ORDER_BY}"

        with open_connection(self.db_path) as conn:
            return [self._from_row(row) for row in conn.execute(sql, params)]

    def list_for_pair(self, lost_item_id: str, found_item_id: str) -> list[Match]:
        """Every match ever recorded for a pair, oldest first."""
        with open_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM matches
                WHERE lost_item_id = ? AND found_item_id = ?
                ORDER BY created_at ASC, id ASC
                """,
                (lost_item_id, found_item_id),
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        """Number of matches per status (all statuses present, zero if none)."""
        counts = {status.value: 0 for status in MatchStatus}
        with open_connection(self.db_path) as conn:
            for row in conn.execute("SELECT status, COUNT(*) AS count FROM matches GROUP BY status"):
                counts[row["status"]] = row["count"]
        return counts
