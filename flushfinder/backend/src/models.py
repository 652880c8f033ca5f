"""Data models for the FlushFinder backend."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Optional, Tuple


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(frozen=True)
class PlaceSelection:
    """What the places autocomplete widget emits when the user picks a result."""

    formatted_address: str
    place_id: str
    lat: float
    lng: float

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


@dataclass(frozen=True)
class Listing:
    id: str
    name: str
    address: str
    rating: int
    coordinates: Optional[Coordinates] = None  # absent on listings created before coordinate capture
    amenities: Tuple[str, ...] = ()
    images: Tuple[str, ...] = ()
    created_at: str = ""
    description: str = ""
    place_id: Optional[str] = None
    user_id: Optional[str] = None
    user_display_name: Optional[str] = None
    user_photo_url: Optional[str] = None
    # client-only, never persisted
    is_new: bool = False


@dataclass(frozen=True)
class RankedListing(Listing):
    distance: float = math.inf  # km

    @classmethod
    def from_listing(cls, listing: Listing, distance: float) -> "RankedListing":
        values = {f.name: getattr(listing, f.name) for f in fields(Listing)}
        return cls(distance=distance, **values)


@dataclass(frozen=True)
class User:
    uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None
    created_at: str = ""


@dataclass(frozen=True)
class Report:
    washroom_id: str
    reporter_id: str = "anonymous"
    created_at: str = field(default_factory=utc_now_iso)
    status: str = "pending"
    reason: Optional[str] = None


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class ListingDraft:
    """Validated form contents ready to be persisted."""

    name: str
    place: PlaceSelection
    rating: int
    images: list[ImageUpload] = field(default_factory=list)
    amenities: list[str] = field(default_factory=list)
    description: str = ""
