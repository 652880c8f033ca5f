"""Mapping between document-store records and typed models.

Records come back from the store as loose dicts. Anything a listing cannot
live without is checked here; optional fields fall back to defaults.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from errors import RecordError
from models import Coordinates, Listing, Report, User


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _number(value: Any) -> Optional[float]:
    # bool is an int subclass; a stored True is not a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _coordinates(raw: Any) -> Optional[Coordinates]:
    if not isinstance(raw, dict):
        return None
    lat = _number(raw.get("lat"))
    lng = _number(raw.get("lng"))
    if lat is None or lng is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return Coordinates(lat=lat, lng=lng)


def _str_tuple(raw: Any, *, dedupe: bool = False) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    items = [s.strip() for s in raw if isinstance(s, str) and s.strip()]
    if dedupe:
        items = list(dict.fromkeys(items))
    return tuple(items)


def listing_from_record(record: Dict[str, Any]) -> Listing:
    record_id = _text(record.get("id"))
    name = _text(record.get("name"))
    address = _text(record.get("address"))
    rating = record.get("rating")

    if not record_id:
        raise RecordError("listing record has no id")
    if not name or not address:
        raise RecordError(f"listing {record_id} is missing name or address")
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise RecordError(f"listing {record_id} has invalid rating {rating!r}")

    location = record.get("location")
    place_id = location.get("placeId") if isinstance(location, dict) else None

    return Listing(
        id=record_id,
        name=name,
        address=address,
        rating=rating,
        coordinates=_coordinates(location),
        amenities=_str_tuple(record.get("amenities"), dedupe=True),
        images=_str_tuple(record.get("images")),
        created_at=_text(record.get("createdAt")),
        description=_text(record.get("description")),
        place_id=_optional_text(place_id),
        user_id=_optional_text(record.get("userId")),
        user_display_name=_optional_text(record.get("userDisplayName")),
        user_photo_url=_optional_text(record.get("userPhotoURL")),
    )


def listings_from_records(records: Iterable[Dict[str, Any]]) -> List[Listing]:
    """Convert a query result, skipping records that fail validation."""
    out: list[Listing] = []
    for record in records:
        try:
            out.append(listing_from_record(record))
        except RecordError as exc:
            logger.warning("skipping malformed listing record: {}", exc)
    return out


def listing_to_record(listing: Listing) -> Dict[str, Any]:
    """Persisted shape of a listing. ``id`` and ``is_new`` are not stored."""
    location: Optional[Dict[str, Any]] = None
    if listing.coordinates is not None:
        location = {
            "lat": listing.coordinates.lat,
            "lng": listing.coordinates.lng,
            "placeId": listing.place_id,
            "formattedAddress": listing.address,
        }
    return {
        "name": listing.name,
        "address": listing.address,
        "rating": listing.rating,
        "amenities": list(listing.amenities),
        "description": listing.description,
        "images": list(listing.images),
        "createdAt": listing.created_at,
        "location": location,
        "userId": listing.user_id,
        "userDisplayName": listing.user_display_name,
        "userPhotoURL": listing.user_photo_url,
    }


def user_from_record(record: Dict[str, Any]) -> User:
    uid = _text(record.get("id")) or _text(record.get("uid"))
    if not uid:
        raise RecordError("user record has no uid")
    return User(
        uid=uid,
        display_name=_optional_text(record.get("displayName")),
        email=_optional_text(record.get("email")),
        photo_url=_optional_text(record.get("photoURL")),
        created_at=_text(record.get("createdAt")),
    )


def user_to_record(user: User) -> Dict[str, Any]:
    return {
        "displayName": user.display_name,
        "email": user.email,
        "photoURL": user.photo_url,
        "createdAt": user.created_at,
    }


def report_to_record(report: Report) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "washroomId": report.washroom_id,
        "reporterId": report.reporter_id,
        "createdAt": report.created_at,
        "status": report.status,
    }
    if report.reason:
        record["reason"] = report.reason
    return record
