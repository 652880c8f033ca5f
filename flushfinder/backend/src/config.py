from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from utils import mask_secret, parse_bool


class Configuration(BaseModel):
    # Google Places
    google_maps_api_key: Optional[str] = Field(default=None)
    google_places_base_url: str = Field(default="https://maps.googleapis.com/maps/api/place")
    places_timeout: int = Field(default=10)
    places_country: str = Field(default="CA")
    verify_places: bool = Field(default=False)

    # Client behaviour
    location_timeout_sec: float = Field(default=5.0)
    new_flag_seconds: float = Field(default=10.0)
    default_sort: str = Field(default="distance")

    # Storage layout
    image_path_prefix: str = Field(default="washroom-images")
    washroom_collection: str = Field(default="washrooms")
    user_collection: str = Field(default="users")
    report_collection: str = Field(default="reports")

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "google_maps_api_key": os.getenv("GOOGLE_MAPS_API_KEY"),
            "google_places_base_url": os.getenv("GOOGLE_PLACES_BASE_URL"),
            "places_timeout": os.getenv("PLACES_TIMEOUT"),
            "places_country": os.getenv("PLACES_COUNTRY"),
            "verify_places": os.getenv("VERIFY_PLACES"),
            "location_timeout_sec": os.getenv("LOCATION_TIMEOUT_SEC"),
            "new_flag_seconds": os.getenv("NEW_FLAG_SECONDS"),
            "default_sort": os.getenv("DEFAULT_SORT"),
            "image_path_prefix": os.getenv("IMAGE_PATH_PREFIX"),
            "washroom_collection": os.getenv("WASHROOM_COLLECTION"),
            "user_collection": os.getenv("USER_COLLECTION"),
            "report_collection": os.getenv("REPORT_COLLECTION"),
        }

        bool_fields = {"verify_places"}

        for k, v in env_map.items():
            if v is None:
                continue
            if k in bool_fields:
                raw[k] = parse_bool(v)
            else:
                raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def require_places(self) -> None:
        if not self.google_maps_api_key:
            raise ValueError("GOOGLE_MAPS_API_KEY is required")

    def log_summary(self) -> str:
        return (
            "places=%s verify=%s country=%s timeout=%s location_timeout=%.1fs new_flag=%.1fs sort=%s api_key=%s"
            % (
                bool(self.google_maps_api_key),
                self.verify_places,
                self.places_country,
                self.places_timeout,
                self.location_timeout_sec,
                self.new_flag_seconds,
                self.default_sort,
                mask_secret(self.google_maps_api_key),
            )
        )
