"""Data models for lost and found item reports."""

from datetime import date, datetime, time, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from trackback.config.constants import CATEGORY_LOOKUP, SCORING_FIELDS


class ItemKind(str, Enum):
    """Which side of a match a report sits on."""

    LOST = "lost"
    FOUND = "found"

    @property
    def opposite(self) -> "ItemKind":
        return ItemKind.FOUND if self is ItemKind.LOST else ItemKind.LOST


class ItemStatus(str, Enum):
    """Report status. Only active items take part in candidate generation."""

    ACTIVE = "active"
    MATCHED = "matched"
    RESOLVED = "resolved"
    ARCHIVED = "archived"


def _as_utc(value: datetime | date) -> datetime:
    """Coerce dates and naive datetimes to timezone-aware UTC datetimes."""
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GeoPoint(BaseModel):
    """WGS84 coordinates."""

    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class Location(BaseModel):
    """Free-text address with optional coordinates."""

    address: str = ""
    coordinates: GeoPoint | None = None

    @field_validator("address")
    @classmethod
    def strip_address(cls, v: str) -> str:
        return v.strip()


class ContactInfo(BaseModel):
    """Reporter contact payload, released only through the disclosure gate."""

    email: str | None = None
    phone: str | None = None
    preferred_contact: str = Field(default="email", pattern="^(email|phone)$")


class Item(BaseModel):
    """A lost or found report.

    ``revision`` increases every time a field in ``SCORING_FIELDS`` changes, so
    a match can tell whether the items it was scored against have been edited.
    """

    id: str = Field(min_length=1)
    kind: ItemKind
    reporter_id: str
    title: str
    description: str = ""
    category: str = ""
    location: Location = Field(default_factory=Location)
    event_date: datetime
    reported_at: datetime = Field(default_factory=utc_now)
    tags: frozenset[str] = Field(default_factory=frozenset)
    status: ItemStatus = ItemStatus.ACTIVE

    # Carried through from the report form; never scored
    contact: ContactInfo = Field(default_factory=ContactInfo)
    reward: float | None = Field(default=None, ge=0.0)
    organization_id: str | None = None
    images: list[str] = Field(default_factory=list)

    revision: int = Field(default=1, ge=1)
    updated_at: datetime | None = None

    @field_validator("event_date", "reported_at", mode="before")
    @classmethod
    def coerce_datetime(cls, v):
        if isinstance(v, str):
            v = datetime.fromisoformat(v)
        if isinstance(v, (datetime, date)):
            return _as_utc(v)
        return v

    @field_validator("updated_at", mode="before")
    @classmethod
    def coerce_optional_datetime(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = datetime.fromisoformat(v)
        return _as_utc(v)

    @field_validator("category")
    @classmethod
    def canonicalize_category(cls, v: str) -> str:
        """Map known categories to their canonical spelling; keep unknown values as-is."""
        v = v.strip()
        return CATEGORY_LOOKUP.get(v.casefold(), v)

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v):
        if v is None:
            return frozenset()
        normalized = (" ".join(str(tag).lower().split()) for tag in v)
        return frozenset(tag for tag in normalized if tag)

    @model_validator(mode="after")
    def validate_dates(self) -> "Item":
        if self.event_date > self.reported_at:
            raise ValueError(
                f"event_date ({self.event_date.isoformat()}) is after "
                f"reported_at ({self.reported_at.isoformat()})"
            )
        return self

    @property
    def is_active(self) -> bool:
        return self.status is ItemStatus.ACTIVE

    def scoring_fields_changed(self, other: "Item") -> set[str]:
        """Return the scoring-relevant fields that differ between two versions."""
        return {name for name in SCORING_FIELDS if getattr(self, name) != getattr(other, name)}
