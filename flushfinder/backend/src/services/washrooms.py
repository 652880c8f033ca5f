from __future__ import annotations

import asyncio
import re
import time
import uuid
from typing import Any, Callable, List, Optional, TypeVar

from loguru import logger

from config import Configuration
from errors import (
    AuthRequiredError,
    ExternalServiceError,
    FlushFinderError,
    NotFoundError,
    PermissionDeniedError,
)
from models import ImageUpload, Listing, ListingDraft, Report, User, utc_now_iso
from services.backends import DocumentStore, ObjectStore, PlacesLookup
from services.records import (
    listing_from_record,
    listing_to_record,
    listings_from_records,
    report_to_record,
)

T = TypeVar("T")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", (name or "").strip()).strip("._")
    return cleaned or "image"


class WashroomService:
    """Listing reads and writes against the hosted store and object store."""

    def __init__(
        self,
        cfg: Configuration,
        store: DocumentStore,
        objects: ObjectStore,
        places: Optional[PlacesLookup] = None,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.objects = objects
        self.places = places

    async def _call(self, service: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except FlushFinderError:
            raise
        except Exception as exc:
            logger.warning("{} call {} failed: {}", service, getattr(fn, "__name__", fn), exc)
            raise ExternalServiceError(service, cause=exc)

    async def list_washrooms(self) -> List[Listing]:
        """All listings, newest first."""
        records = await self._call("store", self.store.query_all, self.cfg.washroom_collection, "createdAt", "desc")
        return listings_from_records(records)

    async def list_for_user(self, uid: str) -> List[Listing]:
        records = await self._call("store", self.store.query_where, self.cfg.washroom_collection, "userId", uid)
        return listings_from_records(records)

    async def upload_images(self, images: List[ImageUpload]) -> List[str]:
        """Upload one at a time; the first failure aborts the rest."""
        urls: list[str] = []
        for image in images:
            stamp = int(time.time() * 1000)
            path = f"{self.cfg.image_path_prefix}/{stamp}-{uuid.uuid4().hex[:6]}-{_safe_filename(image.filename)}"
            handle = await self._call("storage", self.objects.upload, path, image.data, image.content_type)
            urls.append(await self._call("storage", self.objects.get_public_url, handle))
        return urls

    async def add_washroom(self, draft: ListingDraft, user: Optional[User]) -> Listing:
        if user is None:
            raise AuthRequiredError("You must be signed in to add a washroom")

        place = draft.place
        if self.cfg.verify_places and self.places is not None:
            place = await self._call("places", self.places.resolve, draft.place.place_id)

        image_urls = await self.upload_images(draft.images)

        listing = Listing(
            id="pending",
            name=draft.name,
            address=place.formatted_address,
            rating=draft.rating,
            coordinates=place.coordinates,
            amenities=tuple(dict.fromkeys(draft.amenities)),
            images=tuple(image_urls),
            created_at=utc_now_iso(),
            description=draft.description,
            place_id=place.place_id,
            user_id=user.uid,
            user_display_name=user.display_name,
            user_photo_url=user.photo_url,
        )
        created = await self._call("store", self.store.create, self.cfg.washroom_collection, listing_to_record(listing))
        result = listing_from_record(created)
        logger.info("washroom created id={} uid={} images={}", result.id, user.uid, len(image_urls))
        return result

    async def delete_washroom(self, washroom_id: str, user: Optional[User]) -> None:
        """Delete a listing the user owns. An already-missing listing counts as deleted."""
        if user is None:
            raise AuthRequiredError()

        record = await self._call("store", self.store.get, self.cfg.washroom_collection, washroom_id)
        if record is None:
            logger.info("washroom {} already gone, nothing to delete", washroom_id)
            return
        if record.get("userId") != user.uid:
            raise PermissionDeniedError("Only the author can delete this washroom")

        try:
            await self._call("store", self.store.delete, self.cfg.washroom_collection, washroom_id)
        except NotFoundError:
            logger.info("washroom {} deleted concurrently", washroom_id)
            return
        logger.info("washroom deleted id={} uid={}", washroom_id, user.uid)

    async def report_washroom(
        self,
        washroom_id: str,
        reporter_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Report:
        report = Report(
            washroom_id=washroom_id,
            reporter_id=reporter_id or "anonymous",
            reason=(reason or "").strip() or None,
        )
        await self._call("store", self.store.create, self.cfg.report_collection, report_to_record(report))
        logger.info("washroom {} reported by {}", washroom_id, report.reporter_id)
        return report
