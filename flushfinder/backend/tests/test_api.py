from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from config import Configuration
from main import AppServices, create_app
from models import User
from services.backends import InMemoryDocumentStore, InMemoryIdentityProvider, InMemoryObjectStore

ALICE = User(uid="alice", display_name="Alice", email="alice@example.com")
BOB = User(uid="bob", display_name="Bob")

AUTH_ALICE = {"Authorization": "Bearer token-alice"}
AUTH_BOB = {"Authorization": "Bearer token-bob"}

VALID_FORM = {
    "name": "Central Mall",
    "address": "123 Main St, Toronto, ON",
    "place_id": "ChIJ123",
    "formatted_address": "123 Main St, Toronto, ON",
    "lat": "43.651",
    "lng": "-79.38",
    "rating": "4",
    "amenities": ["Clean", "Free"],
}


@pytest.fixture()
def services() -> AppServices:
    identity = InMemoryIdentityProvider()
    identity.register("token-alice", ALICE)
    identity.register("token-bob", BOB)
    identity.sign_in("token-alice")
    identity.sign_in("token-bob")
    return AppServices(
        cfg=Configuration(),
        identity=identity,
        store=InMemoryDocumentStore(),
        objects=InMemoryObjectStore(),
    )


@pytest.fixture()
def client(services: AppServices) -> TestClient:
    return TestClient(create_app(services))


def _seed(services: AppServices) -> None:
    store = services.store
    store.set("washrooms", "far", {
        "name": "Union Station", "address": "65 Front St W", "rating": 3, "createdAt": "2024-03-01",
        "location": {"lat": 43.90, "lng": -79.38},
    })
    store.set("washrooms", "legacy", {
        "name": "Old Library", "address": "789 Yonge St", "rating": 5, "createdAt": "2023-01-01",
    })
    store.set("washrooms", "near", {
        "name": "Eaton Centre", "address": "220 Yonge St", "rating": 4, "createdAt": "2024-02-01",
        "location": {"lat": 43.654, "lng": -79.38},
    })


def _photo(name: str = "stall.jpg"):
    return ("images", (name, b"\xff\xd8jpeg", "image/jpeg"))


def test_healthz(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_list_by_distance(client: TestClient, services: AppServices) -> None:
    _seed(services)
    body = client.get("/washrooms", params={"lat": 43.65, "lng": -79.38}).json()

    assert [l["id"] for l in body["listings"]] == ["near", "far", "legacy"]
    assert body["location_fallback"] is False
    assert body["listings"][0]["distance_label"] == "445m"
    assert body["listings"][2]["distance_km"] is None
    assert body["listings"][2]["distance_label"] == ""


def test_list_without_location_falls_back(client: TestClient, services: AppServices) -> None:
    _seed(services)
    body = client.get("/washrooms").json()
    assert [l["id"] for l in body["listings"]] == ["far", "near", "legacy"]
    assert body["sort"] == "distance"
    assert body["location_fallback"] is True


def test_list_by_rating_with_search(client: TestClient, services: AppServices) -> None:
    _seed(services)
    body = client.get("/washrooms", params={"sort": "rating", "q": "YONGE"}).json()
    assert [l["id"] for l in body["listings"]] == ["legacy", "near"]
    assert body["total"] == 2


def test_list_rejects_bad_params(client: TestClient) -> None:
    resp = client.get("/washrooms", params={"sort": "popular"})
    assert resp.status_code == 422
    assert "sort" in resp.json()["errors"]

    resp = client.get("/washrooms", params={"lat": 43.6})
    assert resp.status_code == 422
    assert "location" in resp.json()["errors"]


def test_add_requires_sign_in(client: TestClient) -> None:
    resp = client.post("/washrooms", data=VALID_FORM, files=[_photo()])
    assert resp.status_code == 401
    assert resp.json()["action"] == "sign_in"


def test_add_reports_every_field_error(client: TestClient, services: AppServices) -> None:
    resp = client.post(
        "/washrooms",
        data={"name": " ", "address": "typed but not selected", "rating": "0"},
        headers=AUTH_ALICE,
    )
    assert resp.status_code == 422
    assert set(resp.json()["errors"]) == {"name", "address", "images", "rating"}
    assert services.store.query_all("washrooms", "createdAt") == []


def test_add_and_list_and_delete(client: TestClient, services: AppServices) -> None:
    resp = client.post("/washrooms", data=VALID_FORM, files=[_photo("a.jpg"), _photo("b.jpg")], headers=AUTH_ALICE)
    assert resp.status_code == 201
    created = resp.json()
    assert created["user_id"] == "alice"
    assert created["amenities"] == ["Clean", "Free"]
    assert len(created["images"]) == 2
    assert created["lat"] == pytest.approx(43.651)

    mine = client.get("/me/washrooms", headers=AUTH_ALICE).json()["listings"]
    assert [l["id"] for l in mine] == [created["id"]]

    assert client.delete(f"/washrooms/{created['id']}", headers=AUTH_BOB).status_code == 403
    assert client.delete(f"/washrooms/{created['id']}", headers=AUTH_ALICE).status_code == 204
    # already gone: still a success
    assert client.delete(f"/washrooms/{created['id']}", headers=AUTH_ALICE).status_code == 204
    assert client.get("/washrooms").json()["listings"] == []


def test_unknown_amenity_is_field_error(client: TestClient) -> None:
    data = dict(VALID_FORM, amenities=["Hot tub"])
    resp = client.post("/washrooms", data=data, files=[_photo()], headers=AUTH_ALICE)
    assert resp.status_code == 422
    assert "amenities" in resp.json()["errors"]


def test_unknown_amenity_does_not_hide_other_errors(client: TestClient) -> None:
    data = dict(VALID_FORM, name=" ", rating="9", amenities=["Hot tub", "Clean"])
    resp = client.post("/washrooms", data=data, files=[_photo()], headers=AUTH_ALICE)
    assert resp.status_code == 422
    assert set(resp.json()["errors"]) == {"name", "rating", "amenities"}


def test_repeated_amenity_is_kept_once(client: TestClient) -> None:
    data = dict(VALID_FORM, amenities=["Clean", "Clean", "Free", "Clean"])
    resp = client.post("/washrooms", data=data, files=[_photo()], headers=AUTH_ALICE)
    assert resp.status_code == 201
    assert resp.json()["amenities"] == ["Clean", "Free"]


@pytest.mark.parametrize("lat,lng", [("500", "-79.38"), ("43.65", "-200")])
def test_coordinates_off_the_globe_are_rejected(client: TestClient, services: AppServices, lat, lng) -> None:
    data = dict(VALID_FORM, lat=lat, lng=lng)
    resp = client.post("/washrooms", data=data, files=[_photo()], headers=AUTH_ALICE)
    assert resp.status_code == 422
    assert "address" in resp.json()["errors"]
    assert services.store.query_all("washrooms", "createdAt") == []


def test_report_anonymous_and_signed_in(client: TestClient, services: AppServices) -> None:
    resp = client.post("/washrooms/w1/report")
    assert resp.status_code == 201
    assert resp.json()["reporter_id"] == "anonymous"

    resp = client.post("/washrooms/w1/report", json={"reason": "closed"}, headers=AUTH_BOB)
    assert resp.json()["reporter_id"] == "bob"
    assert len(services.store.query_where("reports", "washroomId", "w1")) == 2


def test_sign_in_creates_profile_and_me(client: TestClient, services: AppServices) -> None:
    resp = client.post("/auth/sign-in", json={"credential": "token-alice"})
    assert resp.status_code == 200
    assert resp.json()["uid"] == "alice"
    assert services.store.get("users", "alice")["email"] == "alice@example.com"

    assert client.get("/me", headers=AUTH_ALICE).json()["display_name"] == "Alice"
    assert client.get("/me").status_code == 401
    assert client.post("/auth/sign-out", headers=AUTH_ALICE).status_code == 204


def test_token_stops_working_after_sign_out(client: TestClient) -> None:
    assert client.get("/me", headers=AUTH_BOB).status_code == 200
    assert client.post("/auth/sign-out", headers=AUTH_BOB).status_code == 204

    resp = client.get("/me", headers=AUTH_BOB)
    assert resp.status_code == 401
    assert resp.json()["action"] == "sign_in"
    assert client.post("/washrooms", data=VALID_FORM, files=[_photo()], headers=AUTH_BOB).status_code == 401

    # signing in again revives the token
    client.post("/auth/sign-in", json={"credential": "token-bob"})
    assert client.get("/me", headers=AUTH_BOB).json()["uid"] == "bob"


def test_sign_in_failure_hides_detail(client: TestClient) -> None:
    resp = client.post("/auth/sign-in", json={"credential": "forged"})
    assert resp.status_code == 502
    assert resp.json() == {"detail": "Something went wrong. Please try again."}


def test_amenity_options(client: TestClient) -> None:
    assert "Accessible" in client.get("/amenities").json()["amenities"]
