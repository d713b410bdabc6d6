"""Item lifecycle events published by the item store."""

from dataclasses import dataclass, field

from trackback.config.constants import SCORING_FIELDS
from trackback.models.item import Item


@dataclass(frozen=True)
class ItemCreated:
    item: Item


@dataclass(frozen=True)
class ItemUpdated:
    """An item changed. ``changed_fields`` lists every field that differs."""

    item: Item
    changed_fields: frozenset[str] = field(default_factory=frozenset)

    @property
    def scoring_changed(self) -> bool:
        return bool(self.changed_fields & SCORING_FIELDS)


@dataclass(frozen=True)
class ItemArchived:
    item: Item


ItemEvent = ItemCreated | ItemUpdated | ItemArchived
