from __future__ import annotations

import pytest

from errors import RecordError
from models import Coordinates, Listing, Report, User
from services.records import (
    listing_from_record,
    listing_to_record,
    listings_from_records,
    report_to_record,
    user_from_record,
)


def _record(**overrides) -> dict:
    record = {
        "id": "w1",
        "name": "Central Mall",
        "address": "123 Main St",
        "rating": 4,
        "amenities": ["Clean", "Free", "Clean"],
        "images": ["https://img/1.jpg"],
        "createdAt": "2024-05-01T10:00:00+00:00",
        "location": {"lat": 43.65, "lng": -79.38, "placeId": "ChIJ123"},
        "userId": "u1",
    }
    record.update(overrides)
    return record


def test_full_record_maps_to_listing() -> None:
    listing = listing_from_record(_record())
    assert listing.coordinates == Coordinates(lat=43.65, lng=-79.38)
    assert listing.place_id == "ChIJ123"
    assert listing.amenities == ("Clean", "Free")
    assert listing.images == ("https://img/1.jpg",)
    assert listing.is_new is False


def test_missing_location_is_none_not_origin() -> None:
    listing = listing_from_record(_record(location=None))
    assert listing.coordinates is None

    listing = listing_from_record(_record(location={"lat": "43.6", "lng": None}))
    assert listing.coordinates is None


def test_optional_fields_default() -> None:
    record = _record()
    for key in ("amenities", "images", "createdAt", "userId", "location"):
        record.pop(key)
    listing = listing_from_record(record)
    assert listing.amenities == ()
    assert listing.images == ()
    assert listing.user_id is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "  "},
        {"address": None},
        {"rating": 0},
        {"rating": 6},
        {"rating": "5"},
        {"rating": True},
        {"id": ""},
    ],
)
def test_malformed_records_rejected(overrides: dict) -> None:
    with pytest.raises(RecordError):
        listing_from_record(_record(**overrides))


def test_collection_load_skips_malformed(log_messages: list) -> None:
    listings = listings_from_records([_record(id="ok"), _record(id="bad", rating=9), _record(id="ok2")])
    assert [l.id for l in listings] == ["ok", "ok2"]
    assert any("bad" in m and "malformed" in m for m in log_messages)


def test_listing_record_shape() -> None:
    listing = Listing(
        id="ignored",
        name="Library",
        address="1 Yonge St",
        rating=5,
        coordinates=Coordinates(lat=1.0, lng=2.0),
        place_id="p1",
        is_new=True,
    )
    record = listing_to_record(listing)
    assert "id" not in record
    assert "isNew" not in record and "is_new" not in record
    assert record["location"] == {"lat": 1.0, "lng": 2.0, "placeId": "p1", "formattedAddress": "1 Yonge St"}


def test_user_and_report_records() -> None:
    user = user_from_record({"id": "u1", "displayName": "Sam", "email": "sam@example.com"})
    assert user == User(uid="u1", display_name="Sam", email="sam@example.com")
    with pytest.raises(RecordError):
        user_from_record({"displayName": "nobody"})

    record = report_to_record(Report(washroom_id="w1", created_at="t"))
    assert record == {"washroomId": "w1", "reporterId": "anonymous", "createdAt": "t", "status": "pending"}
