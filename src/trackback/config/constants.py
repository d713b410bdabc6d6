"""Constants for item categories, statuses, and text normalization."""


# Fixed category set offered by the report forms
ITEM_CATEGORIES: list[str] = [
    "Electronics",
    "Documents",
    "Accessories",
    "Bags",
    "Keys",
    "Jewelry",
    "Clothing",
    "Books",
    "Sports Equipment",
    "Other",
]

# Lower-cased lookup used to canonicalize user input ("electronics" -> "Electronics")
CATEGORY_LOOKUP: dict[str, str] = {name.casefold(): name for name in ITEM_CATEGORIES}

# Verifier recorded when the engine itself rejects a match after an edit
SYSTEM_VERIFIER = "system"

# Fields whose edits change a similarity score and bump Item.revision
SCORING_FIELDS: frozenset[str] = frozenset(
    {"category", "location", "event_date", "title", "description", "tags"}
)

# Stop words stripped from titles, descriptions, and addresses before comparison.
# "lost" and "found" appear in almost every report and carry no signal.
STOP_WORDS: frozenset[str] = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "been", "by", "for", "from",
        "has", "have", "he", "her", "his", "i", "in", "is", "it", "its", "my",
        "near", "of", "on", "or", "our", "she", "that", "the", "their", "them",
        "there", "this", "to", "was", "were", "with", "without", "your",
        "lost", "found", "item", "left", "someone",
    }
)
