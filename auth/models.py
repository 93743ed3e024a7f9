"""
auth/models.py -- Domain dataclass for user accounts.

Pattern: Data class (pure data container, zero logic). Mirrors rbac/models.py
-- dataclasses own domain shape; stores and routes do the work.

Layer rule: no imports from api/ or activity/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An account that can sign in to the ITAM backend.

    is_admin and role_id form the user's authorization identity. They are
    mutually exclusive (an admin has no role; assigning a role revokes admin)
    and are only ever written through rbac.identity.resolve_identity(), which
    UserStore applies on every create and update.

    role_id may point at a role that has since been deleted; the resolver
    treats that the same as no role (default permissions).
    """

    username: str
    id: int | None = None
    hashed_password: str | None = None
    email: str | None = None
    is_admin: bool = False
    role_id: int | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None
