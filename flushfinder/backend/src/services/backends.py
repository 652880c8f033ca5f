"""Interfaces of the hosted services FlushFinder talks to, plus in-memory stand-ins.

The in-memory implementations back local runs and the test-suite. Production
deployments pass their own objects satisfying the same protocols.
"""

from __future__ import annotations

import asyncio
import copy
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from errors import ExternalServiceError, NotFoundError
from models import Coordinates, PlaceSelection, User


class IdentityProvider(Protocol):
    def sign_in(self, credential: str) -> User:
        ...

    def sign_out(self, uid: str) -> None:
        ...

    def verify(self, credential: str) -> Optional[User]:
        """Return the user a credential belongs to, or None if it is not valid."""
        ...


class DocumentStore(Protocol):
    def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, collection: str, record_id: str, record: Dict[str, Any]) -> None:
        ...

    def query_all(self, collection: str, order_by: str, direction: str = "desc") -> List[Dict[str, Any]]:
        ...

    def query_where(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        ...

    def delete(self, collection: str, record_id: str) -> None:
        ...


class ObjectStore(Protocol):
    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        ...

    def get_public_url(self, handle: str) -> str:
        ...


class LocationProvider(Protocol):
    async def get_current_position(self) -> Coordinates:
        ...


class PlacesLookup(Protocol):
    def resolve(self, place_id: str) -> PlaceSelection:
        ...


class InMemoryDocumentStore:
    """Dict-of-dicts document store. Records are copied in and out."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        record_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._collections.setdefault(collection, {})[record_id] = copy.deepcopy(record)
        return {"id": record_id, **copy.deepcopy(record)}

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
            if record is None:
                return None
            return {"id": record_id, **copy.deepcopy(record)}

    def set(self, collection: str, record_id: str, record: Dict[str, Any]) -> None:
        with self._lock:
            self._collections.setdefault(collection, {})[record_id] = copy.deepcopy(record)

    def query_all(self, collection: str, order_by: str, direction: str = "desc") -> List[Dict[str, Any]]:
        with self._lock:
            items = [{"id": rid, **copy.deepcopy(rec)} for rid, rec in self._collections.get(collection, {}).items()]
        # records missing the order field go last regardless of direction
        present = [r for r in items if r.get(order_by) is not None]
        missing = [r for r in items if r.get(order_by) is None]
        present.sort(key=lambda r: r[order_by], reverse=direction.lower() == "desc")
        return present + missing

    def query_where(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {"id": rid, **copy.deepcopy(rec)}
                for rid, rec in self._collections.get(collection, {}).items()
                if rec.get(field) == value
            ]

    def delete(self, collection: str, record_id: str) -> None:
        with self._lock:
            records = self._collections.get(collection, {})
            if record_id not in records:
                raise NotFoundError(collection, record_id)
            del records[record_id]


class InMemoryObjectStore:
    def __init__(self, base_url: str = "memory://objects") -> None:
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        with self._lock:
            self.objects[path] = bytes(data)
        return path

    def get_public_url(self, handle: str) -> str:
        if handle not in self.objects:
            raise ExternalServiceError("storage", f"unknown object {handle}")
        return f"{self.base_url}/{handle}"


class InMemoryIdentityProvider:
    """Maps opaque credentials to users; useful for local runs and tests."""

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._signed_in: set[str] = set()
        self._lock = threading.Lock()

    def register(self, credential: str, user: User) -> None:
        with self._lock:
            self._users[credential] = user

    def sign_in(self, credential: str) -> User:
        with self._lock:
            user = self._users.get(credential)
            if user is None:
                raise ExternalServiceError("identity", "unknown credential")
            self._signed_in.add(user.uid)
            return user

    def sign_out(self, uid: str) -> None:
        with self._lock:
            self._signed_in.discard(uid)

    def verify(self, credential: str) -> Optional[User]:
        """A credential is only valid while its user is signed in."""
        with self._lock:
            user = self._users.get(credential)
            if user is None or user.uid not in self._signed_in:
                return None
            return user


@dataclass
class StaticLocationProvider:
    """Returns a fixed position, optionally after a delay."""

    position: Optional[Coordinates]
    delay_sec: float = 0.0

    async def get_current_position(self) -> Coordinates:
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        if self.position is None:
            raise ExternalServiceError("geolocation", "position unavailable")
        return self.position
