"""Match records and their review state machine."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from trackback.errors import InvalidStateTransition


class MatchStatus(str, Enum):
    """Review states. Confirmed and rejected are terminal."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[MatchStatus, frozenset[MatchStatus]] = {
    MatchStatus.PENDING: frozenset({MatchStatus.CONFIRMED, MatchStatus.REJECTED}),
    MatchStatus.CONFIRMED: frozenset(),
    MatchStatus.REJECTED: frozenset(),
}


class Match(BaseModel):
    """A proposed pairing between one lost item and one found item."""

    id: str
    lost_item_id: str
    found_item_id: str
    score: int = Field(ge=0, le=100)
    status: MatchStatus = MatchStatus.PENDING
    created_at: datetime
    updated_at: datetime | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    score_breakdown: dict[str, float] = Field(default_factory=dict)
    degraded_signals: list[str] = Field(default_factory=list)
    lost_revision: int = 1
    found_revision: int = 1
    disclosed_at: datetime | None = None

    @model_validator(mode="after")
    def validate_verification(self) -> "Match":
        if self.status is MatchStatus.PENDING and self.verified_by is not None:
            raise ValueError("verified_by is only set once a match leaves pending")
        if self.status is not MatchStatus.PENDING and not self.verified_by:
            raise ValueError(f"{self.status.value} match requires verified_by")
        if self.disclosed_at is not None and self.status is not MatchStatus.CONFIRMED:
            raise ValueError("only confirmed matches disclose contacts")
        return self

    @property
    def awaiting_disclosure(self) -> bool:
        """Confirmed, but the item updates and contact release have not completed."""
        return self.status is MatchStatus.CONFIRMED and self.disclosed_at is None

    @property
    def pair_key(self) -> tuple[str, str]:
        """Unordered pair identity (sorted ids)."""
        return pair_key(self.lost_item_id, self.found_item_id)

    def transition(self, target: MatchStatus, verified_by: str, at: datetime) -> "Match":
        """Return a copy of this match moved to ``target``.

        Raises:
            InvalidStateTransition: If ``target`` is not reachable from the current status
        """
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateTransition(self.id, self.status.value, target.value)
        return self.model_copy(
            update={
                "status": target,
                "verified_by": verified_by,
                "verified_at": at,
                "updated_at": at,
            }
        )

    def rescored(self, score: int, breakdown: dict[str, float], lost_revision: int,
                 found_revision: int, at: datetime,
                 degraded_signals: list[str] | None = None) -> "Match":
        """Return a pending copy carrying a fresh score."""
        if self.status is not MatchStatus.PENDING:
            raise InvalidStateTransition(self.id, self.status.value, "rescored")
        return self.model_copy(
            update={
                "score": score,
                "score_breakdown": breakdown,
                "degraded_signals": list(degraded_signals or []),
                "lost_revision": lost_revision,
                "found_revision": found_revision,
                "updated_at": at,
            }
        )


def pair_key(first_id: str, second_id: str) -> tuple[str, str]:
    return (first_id, second_id) if first_id <= second_id else (second_id, first_id)


def review_order(match: Match) -> tuple:
    """Sort key: highest score first, then oldest, then id."""
    return (-match.score, match.created_at, match.id)
