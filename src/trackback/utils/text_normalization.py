"""Lexical normalization and set-overlap measures used by the scorer and indexer."""

import re
from collections.abc import Iterable

from trackback.config.constants import STOP_WORDS

# Letters and digits only; underscores and punctuation split tokens
TOKEN_PATTERN = re.compile(r"[^\W_]+", re.UNICODE)


def tokenize(text: str | None) -> list[str]:
    """Lower-case ``text`` and split it into stop-word-free tokens, preserving order.

    Single letters are dropped; single digits are kept ("iPhone 7" keeps "7").

    Examples:
        >>> tokenize("Black iPhone with Case")
        ['black', 'iphone', 'case']
    """
    if not text:
        return []
    tokens = []
    for token in TOKEN_PATTERN.findall(text.casefold()):
        if token in STOP_WORDS:
            continue
        if len(token) == 1 and not token.isdigit():
            continue
        tokens.append(token)
    return tokens


def token_set(*texts: str | None) -> frozenset[str]:
    """Union of normalized tokens across several text fields."""
    return frozenset(token for text in texts for token in tokenize(text))


def jaccard(first: Iterable[str], second: Iterable[str]) -> float:
    """Intersection over union. Two empty sets are identical and score 1."""
    a, b = set(first), set(second)
    union = a | b
    if not union:
        return 1.0
    return len(a & b) / len(union)


def dice(first: Iterable[str], second: Iterable[str]) -> float:
    """Dice coefficient 2|A∩B| / (|A|+|B|). Two empty sets score 1."""
    a, b = set(first), set(second)
    total = len(a) + len(b)
    if total == 0:
        return 1.0
    return 2 * len(a & b) / total
