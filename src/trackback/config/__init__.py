"""Configuration module for TrackBack."""

from trackback.config.constants import (
    CATEGORY_LOOKUP,
    ITEM_CATEGORIES,
    SCORING_FIELDS,
    STOP_WORDS,
    SYSTEM_VERIFIER,
)
from trackback.config.settings import Config, get_config

__all__ = [
    "Config",
    "get_config",
    "CATEGORY_LOOKUP",
    "ITEM_CATEGORIES",
    "SCORING_FIELDS",
    "STOP_WORDS",
    "SYSTEM_VERIFIER",
]
