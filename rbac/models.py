"""
rbac/models.py -- Domain dataclasses for the authorization core.

Pure data containers, same approach as auth/models.py: the dataclasses own
the shape, the catalog / resolver / aggregator do the work.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

# The seed Administrator role. Admin users are counted here by the
# membership aggregator regardless of what the role is currently named.
ADMINISTRATOR_ROLE_ID = 1


@dataclass
class Role:
    """A named permission matrix.

    permissions is typed loosely on purpose: records loaded from older data
    may hold a non-mapping value, which the catalog repairs on read.
    user_count is derived by the membership aggregator and never authoritative.
    """

    id: int
    name: str
    description: str
    permissions: Any
    user_count: int = 0


@dataclass
class Principal:
    """The authenticated actor of one request.

    is_admin and role_id are overwritten by the identity reconciler before
    every decision. permissions is None until a decision allows the request,
    then holds the matrix that decision used.
    """

    user_id: int
    username: str
    is_admin: Any = False  # bool, or legacy integer 1/0
    role_id: Optional[int] = None
    permissions: Optional[dict[str, dict[str, bool]]] = None


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of one (principal, resource, action) evaluation."""

    allowed: bool
    reason: str
    resource: str
    action: str
    permissions: Optional[dict[str, dict[str, bool]]] = None
