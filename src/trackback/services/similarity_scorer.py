"""Lost/found similarity scoring.

Scores one lost report against one found report on a 0-100 scale. The score
is a weighted sum of five independent signals, each computed as a similarity
in [0, 1] and multiplied by its weight:

1. **Category** (25): exact match of known categories. Unknown or empty
   categories never match.
2. **Location** (20): great-circle distance when both reports carry
   coordinates (full credit within 200 m, none beyond the max radius, linear
   in between). Otherwise Dice overlap of normalized address tokens; this
   fallback is recorded as a ``ScoringDegraded`` note.
3. **Temporal** (20): full credit when the event dates are within a day,
   decaying linearly to zero at the max window.
4. **Text** (20): Jaccard similarity of normalized title + description tokens.
5. **Tags** (15): Jaccard similarity of the tag sets.

Scoring is pure: the result depends only on the two items' field values and
the scoring configuration, so it is safe to run from any number of threads.
"""

import math
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from trackback.config.constants import CATEGORY_LOOKUP
from trackback.models.item import Item
from trackback.utils.geo import haversine_m
from trackback.utils.text_normalization import dice, jaccard, token_set

SIGNALS = ("category", "location", "temporal", "text", "tags")

SECONDS_PER_DAY = 86_400.0


@dataclass(frozen=True)
class ScoringConfig:
    """Weights and decay parameters for the scorer."""

    weight_category: float = 25.0
    weight_location: float = 20.0
    weight_temporal: float = 20.0
    weight_text: float = 20.0
    weight_tags: float = 15.0
    full_credit_distance_m: float = 200.0
    max_radius_m: float = 5000.0
    temporal_full_credit_days: float = 1.0
    temporal_max_window_days: float = 14.0

    def __post_init__(self):
        total = sum(self.weights.values())
        if abs(total - 100.0) > 1e-9:
            raise ValueError(f"Signal weights must sum to 100, got {total}")

    @property
    def weights(self) -> dict[str, float]:
        return {
            "category": self.weight_category,
            "location": self.weight_location,
            "temporal": self.weight_temporal,
            "text": self.weight_text,
            "tags": self.weight_tags,
        }

    @classmethod
    def from_config(cls, config: Any) -> "ScoringConfig":
        """Build from application settings."""
        return cls(
            weight_category=float(config.weight_category),
            weight_location=float(config.weight_location),
            weight_temporal=float(config.weight_temporal),
            weight_text=float(config.weight_text),
            weight_tags=float(config.weight_tags),
            full_credit_distance_m=config.full_credit_distance_m,
            max_radius_m=config.max_radius_m,
            temporal_full_credit_days=config.temporal_full_credit_days,
            temporal_max_window_days=config.temporal_max_window_days,
        )


@dataclass(frozen=True)
class ScoringDegraded:
    """Informational note: a signal fell back to a weaker path. Not a failure."""

    signal: str
    reason: str

    def __str__(self) -> str:
        return f"{self.signal}: {self.reason}"


@dataclass(frozen=True)
class ScoreResult:
    """Score for one lost/found pair with its per-signal breakdown.

    Attributes:
        lost_item_id: Lost report id
        found_item_id: Found report id
        score: Rounded weighted total (0-100)
        similarities: Raw per-signal similarity in [0, 1]
        contributions: Per-signal weighted points (similarity * weight)
        degraded: Signals that used a fallback path
    """

    lost_item_id: str
    found_item_id: str
    score: int
    similarities: dict[str, float] = field(default_factory=dict)
    contributions: dict[str, float] = field(default_factory=dict)
    degraded: tuple[ScoringDegraded, ...] = ()

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)

    def breakdown(self) -> dict[str, float]:
        """Weighted contributions rounded for storage and display."""
        return {name: round(self.contributions[name], 2) for name in SIGNALS}

    def degraded_signals(self) -> list[str]:
        return [str(note) for note in self.degraded]

    def __str__(self) -> str:
        parts = ", ".join(f"{name}={self.contributions[name]:.1f}" for name in SIGNALS)
        return f"{self.lost_item_id} ↔ {self.found_item_id}: {self.score} ({parts})"


def _linear_decay(value: float, full_credit: float, zero_credit: float) -> float:
    """1.0 up to ``full_credit``, 0.0 from ``zero_credit``, linear in between."""
    if value <= full_credit:
        return 1.0
    if value >= zero_credit:
        return 0.0
    return (zero_credit - value) / (zero_credit - full_credit)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SimilarityScorer:
    """Computes composite lost/found similarity scores."""

    def __init__(self, config: ScoringConfig | None = None):
        self.config = config or ScoringConfig()

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    @staticmethod
    def category_similarity(lost: Item, found: Item) -> float:
        lost_key = lost.category.casefold()
        if not lost_key or lost_key not in CATEGORY_LOOKUP:
            return 0.0
        return 1.0 if lost_key == found.category.casefold() else 0.0

    def location_similarity(self, lost: Item, found: Item) -> tuple[float, ScoringDegraded | None]:
        lost_point = lost.location.coordinates
        found_point = found.location.coordinates
        if lost_point is not None and found_point is not None:
            distance = haversine_m(
                lost_point.latitude, lost_point.longitude,
                found_point.latitude, found_point.longitude,
            )
            return (
                _linear_decay(distance, self.config.full_credit_distance_m, self.config.max_radius_m),
                None,
            )

        if lost_point is None and found_point is None:
            reason = "no coordinates on either report"
        elif lost_point is None:
            reason = "no coordinates on lost report"
        else:
            reason = "no coordinates on found report"
        similarity = dice(token_set(lost.location.address), token_set(found.location.address))
        return similarity, ScoringDegraded("location", f"{reason}; used address tokens")

    def temporal_similarity(self, lost: Item, found: Item) -> float:
        delta_days = abs((lost.event_date - found.event_date).total_seconds()) / SECONDS_PER_DAY
        return _linear_decay(
            delta_days,
            self.config.temporal_full_credit_days,
            self.config.temporal_max_window_days,
        )

    @staticmethod
    def text_similarity(lost: Item, found: Item) -> float:
        return jaccard(
            token_set(lost.title, lost.description),
            token_set(found.title, found.description),
        )

    @staticmethod
    def tag_similarity(lost: Item, found: Item) -> float:
        return jaccard(lost.tags, found.tags)

    # -------------------------------------------------------------------------
    # Composite
    # -------------------------------------------------------------------------

    def evaluate(self, lost: Item, found: Item) -> ScoreResult:
        """Score a pair and return the full breakdown."""
        location, degraded_location = self.location_similarity(lost, found)
        similarities = {
            "category": self.category_similarity(lost, found),
            "location": location,
            "temporal": self.temporal_similarity(lost, found),
            "text": self.text_similarity(lost, found),
            "tags": self.tag_similarity(lost, found),
        }

        weights = self.config.weights
        contributions = {name: similarities[name] * weights[name] for name in SIGNALS}
        total = 0.0
        for name in SIGNALS:
            total += contributions[name]
        score = max(0, min(100, _round_half_up(total)))

        degraded = (degraded_location,) if degraded_location else ()
        if degraded:
            logger.debug(f"Scoring {lost.id} ↔ {found.id} degraded: {degraded_location}")

        return ScoreResult(
            lost_item_id=lost.id,
            found_item_id=found.id,
            score=score,
            similarities=similarities,
            contributions=contributions,
            degraded=degraded,
        )

    def score(self, lost: Item, found: Item) -> int:
        """Composite similarity score in [0, 100]."""
        return self.evaluate(lost, found).score
