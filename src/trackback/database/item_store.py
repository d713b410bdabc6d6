"""
Item store interface consumed by the matching engine.

The item store is the source of truth for lost/found reports. The engine
reads items through this interface and reacts to the lifecycle events the
store publishes after each committed write.
"""

from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable

from loguru import logger

from trackback.models.events import ItemEvent
from trackback.models.item import Item, ItemKind, ItemStatus

ItemEventHandler = Callable[[ItemEvent], None]


class ItemStore(ABC):
    """Abstract item store with event subscription."""

    def __init__(self):
        self._subscribers: list[ItemEventHandler] = []
        self._subscribers_lock = Lock()

    def subscribe(self, handler: ItemEventHandler) -> Callable[[], None]:
        """Register a handler for ItemCreated/ItemUpdated/ItemArchived events.

        Returns:
            Function that removes the subscription
        """
        with self._subscribers_lock:
            self._subscribers.append(handler)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)

        return unsubscribe

    def _publish(self, event: ItemEvent) -> None:
        """Deliver an event to every subscriber.

        The write that produced the event is already committed, so a failing
        subscriber is logged and the remaining subscribers still run.
        """
        with self._subscribers_lock:
            handlers = list(self._subscribers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    f"Item event handler failed for {type(event).__name__} ({event.item.id})"
                )

    @abstractmethod
    def get_item(self, item_id: str) -> Item:
        """Fetch one item.

        Raises:
            ItemNotFound: If no item has this id
            ItemStoreUnavailable: On transient store failures
        """

    @abstractmethod
    def get_active_items_by_bucket(
        self, category: str, location_bucket: str, time_bucket: int
    ) -> list[Item]:
        """Active items filed under one (category, location bucket, time bucket) key.

        The in-process engine keeps its own BucketIndex, warmed from
        ``list_active_items`` and resolved item by item with ``get_item``.
        This lookup serves callers without that index, such as another process
        reading the same store.
        """

    @abstractmethod
    def list_active_items(self, kind: ItemKind | None = None) -> list[Item]:
        """All active items, optionally of one kind, ordered by id."""

    @abstractmethod
    def set_status(self, item_id: str, status: ItemStatus) -> Item:
        """Change an item's status and publish the matching event."""
