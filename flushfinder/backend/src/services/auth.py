from __future__ import annotations

import threading
from typing import Callable, Dict, Optional

from loguru import logger

from config import Configuration
from errors import AuthRequiredError, ExternalServiceError, FlushFinderError
from models import User, utc_now_iso
from services.backends import DocumentStore, IdentityProvider
from services.records import user_to_record

AuthCallback = Callable[[Optional[User]], None]
Unsubscribe = Callable[[], None]


class AuthChannel:
    """Publishes auth-state changes to subscribers until they unsubscribe."""

    def __init__(self) -> None:
        self._subscribers: Dict[int, AuthCallback] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    def subscribe(self, callback: AuthCallback) -> Unsubscribe:
        with self._lock:
            token = self._next_id
            self._next_id += 1
            self._subscribers[token] = callback

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, user: Optional[User]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.values())
        for callback in callbacks:
            try:
                callback(user)
            except Exception as exc:
                logger.exception("auth subscriber failed: {}", exc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


class AuthSession:
    """The signed-in user of one client, backed by an identity provider."""

    def __init__(
        self,
        provider: IdentityProvider,
        store: DocumentStore,
        cfg: Configuration,
        user: Optional[User] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.cfg = cfg
        self.channel = AuthChannel()
        self._current: Optional[User] = user

    @property
    def current_user(self) -> Optional[User]:
        return self._current

    def on_auth_change(self, callback: AuthCallback) -> Unsubscribe:
        """Subscribe and immediately receive the current state."""
        unsubscribe = self.channel.subscribe(callback)
        callback(self._current)
        return unsubscribe

    def sign_in(self, credential: str) -> User:
        try:
            user = self.provider.sign_in(credential)
        except FlushFinderError:
            raise
        except Exception as exc:
            raise ExternalServiceError("identity", "sign-in failed", cause=exc)

        ensure_user_record(self.store, self.cfg, user)
        self._current = user
        logger.info("signed in uid={}", user.uid)
        self.channel.publish(user)
        return user

    def sign_out(self) -> None:
        user = self._current
        if user is None:
            return
        try:
            self.provider.sign_out(user.uid)
        except FlushFinderError:
            raise
        except Exception as exc:
            raise ExternalServiceError("identity", "sign-out failed", cause=exc)
        self._current = None
        logger.info("signed out uid={}", user.uid)
        self.channel.publish(None)

    def require_user(self) -> User:
        if self._current is None:
            raise AuthRequiredError()
        return self._current


def ensure_user_record(store: DocumentStore, cfg: Configuration, user: User) -> None:
    """Create the profile document the first time a user signs in."""
    try:
        if store.get(cfg.user_collection, user.uid) is None:
            created = User(
                uid=user.uid,
                display_name=user.display_name,
                email=user.email,
                photo_url=user.photo_url,
                created_at=user.created_at or utc_now_iso(),
            )
            store.set(cfg.user_collection, user.uid, user_to_record(created))
    except FlushFinderError:
        raise
    except Exception as exc:
        raise ExternalServiceError("store", "user profile write failed", cause=exc)
