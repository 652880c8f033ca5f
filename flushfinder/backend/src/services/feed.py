"""Client-side state of the nearby-washrooms view."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from config import Configuration
from errors import ExternalServiceError
from models import Coordinates, Listing
from services.backends import LocationProvider
from services.ranking import SortMode, SortSelector
from services.washrooms import WashroomService


class NewListingTracker:
    """One cancellable timer per listing id for the "new" highlight."""

    def __init__(self, delay_sec: float = 10.0) -> None:
        self.delay_sec = delay_sec
        self._handles: Dict[str, asyncio.TimerHandle] = {}

    def schedule(self, listing_id: str, on_expire: Callable[[str], None]) -> None:
        self.cancel(listing_id)
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._handles.pop(listing_id, None)
            on_expire(listing_id)

        self._handles[listing_id] = loop.call_later(self.delay_sec, fire)

    def cancel(self, listing_id: str) -> None:
        handle = self._handles.pop(listing_id, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for listing_id in list(self._handles):
            self.cancel(listing_id)

    def pending(self, listing_id: str) -> bool:
        return listing_id in self._handles


class DirectoryFeed:
    """Listings, device location, sort mode and search query of one client."""

    def __init__(
        self,
        cfg: Configuration,
        washrooms: WashroomService,
        location: LocationProvider,
        *,
        mode: Optional[SortMode] = None,
    ) -> None:
        self.cfg = cfg
        self.washrooms = washrooms
        self.location_provider = location
        self.tracker = NewListingTracker(cfg.new_flag_seconds)
        self.selector = SortSelector(mode=mode or SortMode.parse(cfg.default_sort))
        self.loading = False
        self.errors: Dict[str, ExternalServiceError] = {}

    @property
    def listings(self) -> Sequence[Listing]:
        return self.selector.listings

    @property
    def visible(self) -> Sequence[Listing]:
        return self.selector.results

    @property
    def location_fallback(self) -> bool:
        return self.selector.location_fallback

    def get(self, listing_id: str) -> Optional[Listing]:
        return next((l for l in self.selector.listings if l.id == listing_id), None)

    async def refresh(self) -> None:
        """Re-acquire the location and reload listings side by side."""
        self.loading = True
        self.errors = {}
        try:
            await asyncio.gather(self.update_location(), self.reload_listings())
        finally:
            self.loading = False

    async def update_location(self) -> None:
        try:
            position = await asyncio.wait_for(
                self.location_provider.get_current_position(),
                timeout=self.cfg.location_timeout_sec,
            )
        except asyncio.TimeoutError as exc:
            err = ExternalServiceError("geolocation", f"timed out after {self.cfg.location_timeout_sec}s", cause=exc)
            logger.warning("error getting location: {}", err)
            self.errors["location"] = err
            return
        except Exception as exc:
            err = exc if isinstance(exc, ExternalServiceError) else ExternalServiceError("geolocation", cause=exc)
            logger.warning("error getting location: {}", err)
            self.errors["location"] = err
            return
        self.selector.set_location(position)

    async def reload_listings(self) -> None:
        try:
            fresh = await self.washrooms.list_washrooms()
        except Exception as exc:
            err = exc if isinstance(exc, ExternalServiceError) else ExternalServiceError("store", cause=exc)
            logger.warning("error loading washrooms: {}", err)
            self.errors["listings"] = err
            return
        # keep the highlight on listings whose timer is still running
        merged = [
            dataclasses.replace(l, is_new=True) if self.tracker.pending(l.id) else l
            for l in fresh
        ]
        self.selector.set_listings(merged)

    def set_location(self, location: Optional[Coordinates]) -> None:
        self.selector.set_location(location)

    def set_mode(self, mode: SortMode | str) -> None:
        self.selector.set_mode(mode)

    def set_query(self, query: str) -> None:
        self.selector.set_query(query)

    def add_local(self, listing: Listing) -> Listing:
        """Put a just-created listing on top, highlighted for a while."""
        flagged = dataclasses.replace(listing, is_new=True)
        others = [l for l in self.selector.listings if l.id != listing.id]
        self.selector.set_listings([flagged, *others])
        self.tracker.schedule(listing.id, self._clear_new)
        return flagged

    def remove(self, listing_id: str) -> None:
        self.tracker.cancel(listing_id)
        remaining = [l for l in self.selector.listings if l.id != listing_id]
        self.selector.set_listings(remaining)

    def close(self) -> None:
        self.tracker.cancel_all()

    def _clear_new(self, listing_id: str) -> None:
        listings: List[Listing] = list(self.selector.listings)
        for idx, listing in enumerate(listings):
            if listing.id == listing_id:
                listings[idx] = dataclasses.replace(listing, is_new=False)
                self.selector.set_listings(listings)
                return
        # removed before the timer fired
