from __future__ import annotations

import math
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

import requests
from loguru import logger

from config import Configuration
from errors import ExternalServiceError
from models import PlaceSelection


def parse_widget_selection(payload: Optional[Dict[str, Any]]) -> Optional[PlaceSelection]:
    """Turn an autocomplete widget event into a selection.

    While the user is typing the widget emits the raw text with no place id and
    no geometry; that is "no selection" and yields None.
    """
    if not payload:
        return None
    place_id = payload.get("place_id") or payload.get("placeId")
    address = payload.get("formatted_address") or payload.get("formattedAddress")
    geometry = payload.get("geometry") or {}
    location = geometry.get("location") if isinstance(geometry, dict) else None
    if location is None:
        location = payload
    lat = location.get("lat") if isinstance(location, dict) else None
    lng = location.get("lng") if isinstance(location, dict) else None

    if not place_id or not isinstance(address, str) or not address.strip():
        return None
    if isinstance(lat, bool) or isinstance(lng, bool):
        return None
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    # a coordinate that cannot be placed on the globe is not a resolvable selection
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return PlaceSelection(formatted_address=address.strip(), place_id=str(place_id), lat=float(lat), lng=float(lng))


class GooglePlacesClient:
    """Resolves place ids through the Place Details endpoint."""

    FIELDS = "place_id,formatted_address,geometry"

    def __init__(self, cfg: Configuration, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.base = cfg.google_places_base_url.rstrip("/")
        self.session = session or requests.Session()
        self._cache_ttl = 60 * 30  # 30 minutes
        self._cache_max = 128
        self._cache: OrderedDict[str, Tuple[float, PlaceSelection]] = OrderedDict()

    def _cache_get(self, key: str) -> Optional[PlaceSelection]:
        entry = self._cache.get(key)
        if not entry:
            return None
        ts, value = entry
        if time.time() - ts > self._cache_ttl:
            self._cache.pop(key, None)
            return None
        self._cache.move_to_end(key)
        return value

    def _cache_set(self, key: str, value: PlaceSelection) -> None:
        if len(self._cache) >= self._cache_max:
            self._cache.popitem(last=False)
        self._cache[key] = (time.time(), value)

    def _get(self, path: str, params: dict) -> dict:
        url = f"{self.base}{path}"
        params = {**params, "key": self.cfg.google_maps_api_key}
        try:
            resp = self.session.get(
                url,
                headers={"Accept": "application/json"},
                params=params,
                timeout=self.cfg.places_timeout,
            )
        except requests.RequestException as exc:
            raise ExternalServiceError("places", "request error", cause=exc)

        if not resp.ok:
            raise ExternalServiceError("places", f"upstream {resp.status_code}: {resp.text[:300]}")
        try:
            return resp.json()
        except ValueError:
            raise ExternalServiceError("places", "invalid json response")

    def resolve(self, place_id: str) -> PlaceSelection:
        cached = self._cache_get(place_id)
        if cached is not None:
            return cached

        self.cfg.require_places()
        payload = self._get("/details/json", {"place_id": place_id, "fields": self.FIELDS})
        status = payload.get("status")
        if status != "OK":
            raise ExternalServiceError("places", f"details status {status}")

        selection = parse_widget_selection(payload.get("result") or {})
        if selection is None:
            raise ExternalServiceError("places", f"place {place_id} has no usable geometry")
        logger.debug("resolved place {} -> {}", place_id, selection.formatted_address)
        self._cache_set(place_id, selection)
        return selection
