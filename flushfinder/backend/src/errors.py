"""Error taxonomy shared by services and the HTTP layer."""

from __future__ import annotations

from typing import Dict, Optional


GENERIC_RETRY_MESSAGE = "Something went wrong. Please try again."


class FlushFinderError(Exception):
    pass


class ValidationError(FlushFinderError):
    """Field-scoped local validation failure. ``errors`` maps field -> message."""

    def __init__(self, errors: Dict[str, str]) -> None:
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(f"invalid fields: {fields}")


class AuthRequiredError(FlushFinderError):
    def __init__(self, message: str = "Sign in to continue") -> None:
        super().__init__(message)


class PermissionDeniedError(FlushFinderError):
    pass


class NotFoundError(FlushFinderError):
    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection}/{record_id} not found")


class RecordError(FlushFinderError):
    """A stored document does not have the expected shape."""


class ExternalServiceError(FlushFinderError):
    """An identity/store/upload/geolocation/places call failed.

    ``str(exc)`` carries the internal detail for logs; ``public_message`` is the
    only text that may reach a user.
    """

    public_message = GENERIC_RETRY_MESSAGE

    def __init__(self, service: str, detail: str = "", cause: Optional[BaseException] = None) -> None:
        self.service = service
        self.cause = cause
        super().__init__(f"{service} failed: {detail or cause!r}")
