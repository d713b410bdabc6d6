"""
REST API Endpoints for Match Review

Provides HTTP API for:
- Health checks
- Listing and inspecting matches
- Reviewer decisions (confirm / reject)
- Advisory assignment suggestions and statistics
"""

from fastapi import APIRouter, HTTPException, Query
from loguru import logger
from pydantic import BaseModel

from trackback.errors import (
    InvalidStateTransition,
    ItemNotFound,
    ItemStoreUnavailable,
    MatchNotFound,
)
from trackback.models.match import Match, MatchStatus
from trackback.services.matching_engine import MatchingEngine
from trackback.version import VERSION


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str = VERSION


class VerifierRequest(BaseModel):
    """Reviewer decision request model."""

    verifier_id: str


class MatchListResponse(BaseModel):
    """Match list response model."""

    matches: list[Match]
    count: int


class SuggestionResponse(BaseModel):
    """Assignment suggestion response model."""

    suggested: list[Match]
    deferred: list[Match]
    total_score: int


def _parse_status(status: str | None) -> MatchStatus | None:
    if status is None:
        return None
    try:
        return MatchStatus(status.strip().lower())
    except ValueError as e:
        allowed = ", ".join(s.value for s in MatchStatus)
        raise HTTPException(status_code=400, detail=f"Unknown status {status!r} (expected {allowed})") from e


def create_api_router(engine: MatchingEngine) -> APIRouter:
    """
    Create FastAPI router with all API endpoints.

    Args:
        engine: Matching engine serving the reviewer operations

    Returns:
        Configured APIRouter instance
    """
    router = APIRouter(prefix="/api")

    # -------------------------------------------------------------------------
    # Health Check
    # -------------------------------------------------------------------------

    @router.get("/health", response_model=HealthResponse)
    def health_check():
        """Health check endpoint."""
        logger.debug("Health check requested")
        return HealthResponse(status="ok")

    @router.get("/statistics")
    def get_statistics():
        """Match counts by status and item counts."""
        return engine.get_statistics()

    # -------------------------------------------------------------------------
    # Match Queries
    # -------------------------------------------------------------------------

    @router.get("/matches", response_model=MatchListResponse)
    def list_matches(status: str | None = Query(default=None), item_id: str | None = Query(default=None)):
        """
        List matches, highest score first.

        Args:
            status: Optional status filter (pending, confirmed, rejected)
            item_id: Optional item filter (either side of the pair)

        Returns:
            Matches in review order
        """
        matches = engine.list_matches(status=_parse_status(status), item_id=item_id)
        logger.debug(f"Retrieved {len(matches)} match(es) via API")
        return MatchListResponse(matches=matches, count=len(matches))

    @router.get("/matches/suggestions", response_model=SuggestionResponse)
    def suggest_assignments(item_id: str | None = Query(default=None)):
        """
        Suggest a one-match-per-item review order over pending matches.

        Advisory only: nothing is confirmed.
        """
        suggestion = engine.suggest_assignments(item_id=item_id)
        return SuggestionResponse(
            suggested=suggestion.suggested,
            deferred=suggestion.deferred,
            total_score=suggestion.total_score,
        )

    @router.get("/matches/{match_id}", response_model=Match)
    def get_match(match_id: str):
        """
        Get a specific match by ID.

        Raises:
            HTTPException: If match not found
        """
        try:
            return engine.get_match(match_id)
        except MatchNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    # -------------------------------------------------------------------------
    # Reviewer Decisions
    # -------------------------------------------------------------------------

    @router.post("/matches/{match_id}/confirm", response_model=Match)
    def confirm_match(match_id: str, request: VerifierRequest):
        """
        Confirm a pending match.

        Both items take the confirmed-item status and the disclosure gate is
        triggered.

        Raises:
            HTTPException: 404 if the match or an item is missing, 409 if the
                match is no longer pending
        """
        try:
            return engine.confirm_match(match_id, request.verifier_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except (MatchNotFound, ItemNotFound) as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except InvalidStateTransition as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except ItemStoreUnavailable as e:
            logger.error(f"Confirm of {match_id} failed: {e}")
            raise HTTPException(status_code=503, detail="Item store unavailable") from e

    @router.post("/matches/{match_id}/reject", response_model=Match)
    def reject_match(match_id: str, request: VerifierRequest):
        """
        Reject a pending match. Items are left unchanged.

        Raises:
            HTTPException: 404 if the match is missing, 409 if the match is no
                longer pending
        """
        try:
            return engine.reject_match(match_id, request.verifier_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except MatchNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except InvalidStateTransition as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

    return router
