"""State machine behind the "add a washroom" form."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Dict, List, Optional, Tuple

from errors import ValidationError
from models import ImageUpload, ListingDraft, PlaceSelection


AMENITY_OPTIONS: Tuple[str, ...] = (
    "Accessible",
    "Baby changing",
    "24/7",
    "Clean",
    "Private",
    "Well-maintained",
    "Free",
    "Quiet",
    "Well-stocked",
    "Hand dryer",
    "Paper towels",
    "Soap dispenser",
)

MSG_NAME = "Please enter a washroom name"
MSG_ADDRESS_REQUIRED = "Address is required"
MSG_ADDRESS_SELECT = "Please select a valid address from the suggestions"
MSG_IMAGES = "Please add at least one photo"
MSG_RATING = "Please select a rating"


class FormState(str, Enum):
    PRISTINE = "pristine"
    EDITING = "editing"
    VALIDATING = "validating"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


class SubmissionForm:
    """Tracks field values and field-scoped errors of one submission.

    Nothing is validated until the first ``submit()``. From then on every edit
    re-validates the whole form so errors disappear as soon as they are fixed.
    """

    def __init__(self) -> None:
        self.state = FormState.PRISTINE
        self.name = ""
        self.address_text = ""
        self.place: Optional[PlaceSelection] = None
        self.rating = 0
        self.amenities: List[str] = []
        self.description = ""
        self._images: Dict[str, ImageUpload] = {}
        self.errors: Dict[str, str] = {}
        self.show_validation = False

    @property
    def images(self) -> List[ImageUpload]:
        return list(self._images.values())

    # edits

    def set_name(self, name: str) -> None:
        self.name = name or ""
        self._edited()

    def set_address_text(self, text: str) -> None:
        """Free typing in the address box; drops any previous selection."""
        self.address_text = text or ""
        if self.place is not None and self.address_text != self.place.formatted_address:
            self.place = None
        self._edited()

    def select_place(self, selection: Optional[PlaceSelection]) -> None:
        self.place = selection
        if selection is not None:
            self.address_text = selection.formatted_address
        self._edited()

    def add_image(self, image: ImageUpload) -> str:
        image_id = uuid.uuid4().hex[:9]
        self._images[image_id] = image
        self._edited()
        return image_id

    def remove_image(self, image_id: str) -> None:
        self._images.pop(image_id, None)
        self._edited()

    def set_rating(self, rating: int) -> None:
        self.rating = rating
        self._edited()

    def toggle_amenity(self, amenity: str) -> None:
        if amenity in self.amenities:
            self.amenities.remove(amenity)
        else:
            self.amenities.append(amenity)
        self._edited()

    def set_amenities(self, amenities: List[str]) -> None:
        """Replace the whole selection; repeats collapse to one entry."""
        self.amenities = list(dict.fromkeys(amenities))
        self._edited()

    def set_description(self, description: str) -> None:
        self.description = description or ""
        self._edited()

    def _edited(self) -> None:
        if self.state in (FormState.PRISTINE, FormState.SUBMITTED, FormState.FAILED):
            self.state = FormState.EDITING
        if self.show_validation:
            self.errors = self.validate()

    # validation and submission

    def validate(self) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        if not self.name.strip():
            errors["name"] = MSG_NAME

        place = self.place
        if place is None or not place.place_id:
            errors["address"] = MSG_ADDRESS_SELECT if self.address_text.strip() else MSG_ADDRESS_REQUIRED

        if not self._images:
            errors["images"] = MSG_IMAGES

        rating = self.rating
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            errors["rating"] = MSG_RATING

        unknown = [a for a in self.amenities if a not in AMENITY_OPTIONS]
        if unknown:
            errors["amenities"] = f"Unknown amenity: {', '.join(unknown)}"
        return errors

    def submit(self) -> ListingDraft:
        """Validate and hand back a draft. Raises ValidationError on any field error."""
        if self.state is FormState.SUBMITTING:
            raise ValidationError({"form": "Submission already in progress"})

        self.show_validation = True
        self.state = FormState.VALIDATING
        self.errors = self.validate()
        place = self.place
        if self.errors or place is None:
            self.state = FormState.EDITING
            raise ValidationError(self.errors or {"address": MSG_ADDRESS_REQUIRED})

        self.state = FormState.SUBMITTING
        return ListingDraft(
            name=self.name.strip(),
            place=place,
            rating=int(self.rating),
            images=self.images,
            amenities=list(self.amenities),
            description=self.description.strip(),
        )

    def mark_submitted(self) -> None:
        self.state = FormState.SUBMITTED

    def mark_failed(self) -> None:
        self.state = FormState.FAILED
