"""Globally optimal one-to-one pairing of pending matches.

A lost item can have several pending matches, and so can a found item.
Reviewers working item by item from the highest score can block a better
overall outcome:

    lost A: found X (85), found Y (80)
    lost B: found X (82)

Greedy review confirms A→X first (85) and leaves B with nothing: total 85.
The optimal assignment is A→Y + B→X (162), which the Hungarian algorithm
(scipy.optimize.linear_sum_assignment) finds directly.

The suggestion is advisory: it orders the review queue, it never confirms.
"""

from dataclasses import dataclass, field

import numpy as np
from loguru import logger
from scipy.optimize import linear_sum_assignment

from trackback.models.match import Match, MatchStatus, review_order


@dataclass
class AssignmentSuggestion:
    """Result of optimal assignment over pending matches.

    Attributes:
        suggested: One match per item at most, maximizing the total score
        deferred: Pending matches left out because a better pairing used one of their items
        total_score: Sum of suggested scores
    """

    suggested: list[Match] = field(default_factory=list)
    deferred: list[Match] = field(default_factory=list)
    total_score: int = 0


def suggest_assignments(matches: list[Match], min_score: int = 0) -> AssignmentSuggestion:
    """Pick the set of pending matches with the highest total score, one per item.

    Args:
        matches: Candidate matches (non-pending ones are ignored)
        min_score: Matches below this score are never suggested

    Returns:
        Suggested and deferred matches, each in review order
    """
    pending = [m for m in matches if m.status is MatchStatus.PENDING and m.score >= min_score]
    if not pending:
        return AssignmentSuggestion()

    lost_ids = sorted({m.lost_item_id for m in pending})
    found_ids = sorted({m.found_item_id for m in pending})
    row_of = {item_id: i for i, item_id in enumerate(lost_ids)}
    col_of = {item_id: j for j, item_id in enumerate(found_ids)}

    # Rows = lost items, columns = found items; absent pairs score 0
    score_matrix = np.zeros((len(lost_ids), len(found_ids)))
    by_cell: dict[tuple[int, int], Match] = {}
    for match in sorted(pending, key=review_order):
        cell = (row_of[match.lost_item_id], col_of[match.found_item_id])
        if cell not in by_cell:
            by_cell[cell] = match
            score_matrix[cell] = match.score

    # Hungarian minimizes, so maximize score via negation
    row_ind, col_ind = linear_sum_assignment(-score_matrix)

    suggested = []
    for i, j in zip(row_ind, col_ind, strict=True):
        match = by_cell.get((int(i), int(j)))
        if match is not None:
            suggested.append(match)

    suggested_ids = {m.id for m in suggested}
    deferred = [m for m in pending if m.id not in suggested_ids]
    suggested.sort(key=review_order)
    deferred.sort(key=review_order)

    total = sum(m.score for m in suggested)
    logger.debug(
        f"Assignment over {len(pending)} pending match(es): "
        f"{len(suggested)} suggested, {len(deferred)} deferred, total {total}"
    )
    return AssignmentSuggestion(suggested=suggested, deferred=deferred, total_score=total)
