"""
Exception types raised by the matching engine.
"""

from trackback.services.retry_strategy import NonRetryableError, RetryableError


class MatchingError(Exception):
    """Base exception for matching engine errors."""
    pass


class InvalidStateTransition(MatchingError):
    """Raised when confirm/reject is attempted on a match that is not pending."""

    def __init__(self, match_id: str, current: str, target: str):
        self.match_id = match_id
        self.current = current
        self.target = target
        super().__init__(f"Match {match_id} cannot move from {current} to {target}")


class DuplicateMatch(MatchingError):
    """Raised by the match store when a non-rejected match already covers a pair.

    The lifecycle manager treats this as a silent no-op.
    """

    def __init__(self, lost_item_id: str, found_item_id: str, reason: str = "active match exists"):
        self.lost_item_id = lost_item_id
        self.found_item_id = found_item_id
        self.reason = reason
        super().__init__(f"Pair ({lost_item_id}, {found_item_id}) already covered: {reason}")


class MatchNotFound(MatchingError):
    """Raised when a match id does not exist."""

    def __init__(self, match_id: str):
        self.match_id = match_id
        super().__init__(f"Match not found: {match_id}")


class ItemNotFound(MatchingError, NonRetryableError):
    """Raised when a referenced item is missing from the item store."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class ItemStoreUnavailable(MatchingError, RetryableError):
    """Raised for transient item store failures (locked database, I/O errors)."""
    pass
