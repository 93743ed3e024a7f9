"""
auth/tokens.py -- Password hashing, access tokens and the auth cookie.

Tokens are HS256 JWTs signed with SECRET_KEY. Their claims are user_id,
username and exp, and nothing about privileges: the admin flag and role are
read from the user store on every check (rbac/reconciler.py), so a demotion
applies to tokens already issued. decode_access_token() returns None on
failure and the dependency layer answers 401.

Passwords are hashed with bcrypt. authenticate_user() compares against
_DUMMY_HASH when the username is unknown.

Imports come from core/ and auth/ only.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("itam.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """bcrypt-hash a new or changed password (users routes, CLI). Salt is per call."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Check a login attempt against a stored hash. A corrupt stored hash counts as a mismatch."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Hash compared against when the username does not exist, built at import.
_DUMMY_HASH: str = hash_password("itam_timing_dummy")


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, username: str, expire_seconds: int = 0) -> str:
    """Issue a signed token naming the user. No admin flag or role goes in it.

    expire_seconds <= 0 means Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": username,
        "user_id": user_id,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Return the verified claims, or None for a bad signature, expiry, or missing user_id."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload.get("user_id"), int):
        return None
    return payload


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Exactly one bcrypt check runs on every path (the dummy hash stands in for
    a missing account), so timing does not reveal which usernames exist.
    Inactive accounts fail like a wrong password. Returns the User or None.
    """
    user = store.get_by_username(username)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Store the token in the access_token cookie (httpOnly, SameSite=Lax).

    Secure is controlled by SECURE_COOKIES. max_age equals the token lifetime.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
