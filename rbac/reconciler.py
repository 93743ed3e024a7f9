"""
rbac/reconciler.py -- Re-read a principal's admin flag and role before each decision.

Session and token contents are never trusted for authorization: a user who
is demoted, or whose role changes, mid-session must be judged by the new
values on the very next check. IdentityReconciler.refresh() therefore reads
is_admin / role_id from the user store and overwrites the principal with
them every time.

An optional short-lived cache (ttl_seconds > 0) saves that read on busy
paths. It stays correct only because the user store calls invalidate()
synchronously after every write that can change is_admin / role_id (see
api/main.py where the listener is registered). ttl_seconds=0 disables it.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional, Protocol

from rbac.errors import AuthenticationRequired, AuthorizationUnavailable
from rbac.identity import Identity
from rbac.models import Principal

logger = logging.getLogger("itam.rbac.reconciler")


class IdentityRecord(Protocol):
    id: Optional[int]
    is_admin: Any
    role_id: Optional[int]
    is_active: bool


class IdentitySource(Protocol):
    """The slice of the user store the authorization core depends on."""

    def get_by_id(self, user_id: int) -> Optional[IdentityRecord]: ...

    def list_users(self) -> list: ...


class IdentityReconciler:
    def __init__(self, users: IdentitySource, ttl_seconds: float = 0.0, clock=time.monotonic) -> None:
        self._users = users
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[int, tuple[float, Identity]] = {}
        # Bumped by invalidate/clear. A read that started before a bump is not cached.
        self._generation: dict[int, int] = {}
        self._epoch = 0

    def invalidate(self, user_id: int) -> None:
        with self._lock:
            self._cache.pop(user_id, None)
            self._generation[user_id] = self._generation.get(user_id, 0) + 1

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._epoch += 1

    def _cached(self, user_id: int) -> Identity | None:
        if self._ttl <= 0:
            return None
        with self._lock:
            entry = self._cache.get(user_id)
            if entry is None:
                return None
            stored_at, identity = entry
            if self._clock() - stored_at > self._ttl:
                del self._cache[user_id]
                return None
            return identity

    def load(self, user_id: int) -> Identity:
        """Return the canonical identity for user_id.

        Raises AuthenticationRequired if the user no longer exists or is
        inactive, AuthorizationUnavailable if the store read fails.
        """
        identity = self._cached(user_id)
        if identity is not None:
            return identity
        with self._lock:
            stamp = (self._epoch, self._generation.get(user_id, 0))
        try:
            record = self._users.get_by_id(user_id)
        except Exception as exc:
            logger.exception("User store read failed while reconciling user %s", user_id)
            raise AuthorizationUnavailable("Permission check failed.") from exc
        if record is None or not record.is_active:
            raise AuthenticationRequired("User not found.")
        identity = Identity(record.is_admin, record.role_id)
        if self._ttl > 0:
            with self._lock:
                if stamp == (self._epoch, self._generation.get(user_id, 0)):
                    self._cache[user_id] = (self._clock(), identity)
        return identity

    def refresh(self, principal: Principal) -> Principal:
        """Overwrite principal.is_admin / role_id with the stored values."""
        identity = self.load(principal.user_id)
        if (principal.is_admin, principal.role_id) != tuple(identity):
            logger.info(
                "Identity of user %s changed since authentication (admin=%s role=%s -> admin=%s role=%s)",
                principal.user_id,
                principal.is_admin,
                principal.role_id,
                identity.is_admin,
                identity.role_id,
            )
        principal.is_admin = identity.is_admin
        principal.role_id = identity.role_id
        return principal
