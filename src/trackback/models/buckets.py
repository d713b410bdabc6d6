"""Coarse bucketing of items for candidate lookup."""

import math
from dataclasses import dataclass

from trackback.models.item import GeoPoint, Item
from trackback.utils.text_normalization import tokenize

NO_LOCATION_BUCKET = "none"


@dataclass(frozen=True)
class BucketScheme:
    """Maps an item to ``(category, location bucket, time bucket)`` keys.

    Attributes:
        time_bucket_days: Width of a time bucket over ``event_date``
        geo_cell_degrees: Side of a lat/lon grid cell for items with coordinates
    """

    time_bucket_days: int = 14
    geo_cell_degrees: float = 0.05

    @staticmethod
    def category_key(item: Item) -> str:
        return item.category.casefold()

    def time_bucket(self, item: Item) -> int:
        return item.event_date.date().toordinal() // self.time_bucket_days

    def geo_cell(self, point: GeoPoint) -> tuple[int, int]:
        return (
            math.floor(point.latitude / self.geo_cell_degrees),
            math.floor(point.longitude / self.geo_cell_degrees),
        )

    def location_buckets(self, item: Item) -> frozenset[str]:
        """Buckets an item is filed under.

        An item with coordinates is filed under its grid cell; an item with an
        address is also filed under the first significant address token, so
        geo-tagged and text-only reports of the same place can still meet.
        """
        buckets = set()
        if item.location.coordinates is not None:
            row, col = self.geo_cell(item.location.coordinates)
            buckets.add(f"geo:{row}:{col}")
        address_tokens = tokenize(item.location.address)
        if address_tokens:
            buckets.add(f"addr:{address_tokens[0]}")
        return frozenset(buckets) or frozenset({NO_LOCATION_BUCKET})

    def probe_buckets(self, item: Item) -> frozenset[str]:
        """Buckets to search for an item: its own plus the 8 neighbouring grid cells."""
        buckets = set(self.location_buckets(item))
        if item.location.coordinates is not None:
            row, col = self.geo_cell(item.location.coordinates)
            for d_row in (-1, 0, 1):
                for d_col in (-1, 0, 1):
                    buckets.add(f"geo:{row + d_row}:{col + d_col}")
        return frozenset(buckets)
