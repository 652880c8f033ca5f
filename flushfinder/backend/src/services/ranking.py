from __future__ import annotations

import math
from enum import Enum
from typing import List, Optional, Sequence, TypeVar

from errors import ValidationError
from models import Coordinates, Listing, RankedListing
from utils import haversine_km


L = TypeVar("L", bound=Listing)


class SortMode(str, Enum):
    DISTANCE = "distance"
    RATING = "rating"

    @classmethod
    def parse(cls, value: Optional[str], default: Optional["SortMode"] = None) -> "SortMode":
        if value is None or not str(value).strip():
            return default or cls.DISTANCE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError({"sort": f"Sort must be one of: {allowed}"})


def rank_by_distance(listings: Sequence[Listing], origin: Coordinates) -> List[RankedListing]:
    """Attach a distance to every listing and sort nearest first.

    Listings without coordinates cannot be ranked; they get an infinite
    distance and keep their relative order at the end.
    """
    ranked: list[RankedListing] = []
    for listing in listings:
        coords = listing.coordinates
        if coords is None:
            dist_km = math.inf
        else:
            dist_km = haversine_km(origin.lat, origin.lng, coords.lat, coords.lng)
        ranked.append(RankedListing.from_listing(listing, dist_km))
    # list.sort is stable, so equal distances keep input order
    ranked.sort(key=lambda r: r.distance)
    return ranked


def rank_by_rating(listings: Sequence[L]) -> List[L]:
    return sorted(listings, key=lambda l: -l.rating)


def filter_listings(listings: Sequence[L], query: Optional[str]) -> Sequence[L]:
    """Keep listings where every query term appears in the name or the address."""
    if not query or not query.strip():
        return listings

    terms = [t for t in query.lower().split() if t]
    matches: list[L] = []
    for listing in listings:
        name = (listing.name or "").lower()
        address = (listing.address or "").lower()
        if all(term in name or term in address for term in terms):
            matches.append(listing)
    return matches


def select_and_filter(
    listings: Sequence[Listing],
    location: Optional[Coordinates],
    mode: SortMode,
    query: Optional[str] = None,
) -> tuple[Sequence[Listing], bool]:
    """Run the whole pipeline. Returns (results, location_fallback)."""
    fallback = False
    ordered: Sequence[Listing]
    if mode is SortMode.RATING:
        ordered = rank_by_rating(listings)
    elif location is not None:
        ordered = rank_by_distance(listings, location)
    else:
        ordered = list(listings)
        fallback = True
    return filter_listings(ordered, query), fallback


class SortSelector:
    """Holds the inputs of the listing view and keeps the result in sync.

    Every setter recomputes immediately, so ``results`` never mixes old and new
    inputs.
    """

    def __init__(
        self,
        listings: Sequence[Listing] = (),
        *,
        location: Optional[Coordinates] = None,
        mode: SortMode = SortMode.DISTANCE,
        query: str = "",
    ) -> None:
        self._listings: tuple[Listing, ...] = tuple(listings)
        self._location = location
        self._mode = mode
        self._query = query
        self.results: Sequence[Listing] = ()
        self.location_fallback = False
        self._recompute()

    @property
    def listings(self) -> tuple[Listing, ...]:
        return self._listings

    @property
    def location(self) -> Optional[Coordinates]:
        return self._location

    @property
    def mode(self) -> SortMode:
        return self._mode

    @property
    def query(self) -> str:
        return self._query

    def set_listings(self, listings: Sequence[Listing]) -> None:
        self._listings = tuple(listings)
        self._recompute()

    def set_location(self, location: Optional[Coordinates]) -> None:
        self._location = location
        self._recompute()

    def set_mode(self, mode: SortMode | str) -> None:
        self._mode = mode if isinstance(mode, SortMode) else SortMode.parse(mode)
        self._recompute()

    def set_query(self, query: str) -> None:
        self._query = query or ""
        self._recompute()

    def _recompute(self) -> None:
        self.results, self.location_fallback = select_and_filter(
            self._listings, self._location, self._mode, self._query
        )
