"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Authentication (who is calling) checks two token carriers in priority order:
  1. JWT cookie ("access_token") -- set by POST /auth/login.
  2. Authorization: Bearer <token> header -- API clients.

Authorization (may they do this) is delegated to the resolver stored on
app.state. The guards exposed to route modules are:

  get_current_principal()              -- requireAuthenticated (401 if anonymous)
  require_admin()                      -- admin-only gate (403 "Admin privileges required.")
  check_permission(resource, action)   -- full matrix check; returns a dependency

All three raise rbac.errors types; api/main.py renders them into the shared
error envelope. On success the principal, with the matrix that allowed the
request attached, is returned and also stored on request.state.principal so
handlers can echo permissions back to the client.

Layer rule: no imports from api/ or activity/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.models import User
from auth.tokens import decode_access_token
from rbac.errors import AuthenticationRequired
from rbac.models import Principal
from rbac.permissions import ACTIONS, RESOURCES
from rbac.resolver import AuthorizationResolver


def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request via cookie or Bearer token.

    Returns the authenticated User on success, None on any failure.
    Never raises -- callers that need a hard 401 use get_current_principal().
    """
    user_store = request.app.state.user_store

    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None
    user = user_store.get_by_id(payload["user_id"])
    if user is None or not user.is_active:
        return None
    return user


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises AuthenticationRequired (401) if anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise AuthenticationRequired("Authentication required.")
    principal = Principal(user_id=user.id, username=user.username, is_admin=user.is_admin, role_id=user.role_id)
    request.state.principal = principal
    return principal


def require_admin(request: Request) -> Principal:
    """Require an admin. 401 if unauthenticated, 403 if the (freshly reloaded) user is not admin."""
    resolver: AuthorizationResolver = request.app.state.resolver
    return resolver.require_admin(get_current_principal(request))


def check_permission(resource: str, action: str) -> Callable[[Request], Principal]:
    """Build a dependency that allows the request only if principal may `action` on `resource`.

    Use as a FastAPI dependency:
        @router.post("/roles")
        async def route(principal: Principal = Depends(check_permission("admin", "add"))): ...

    Raises ValueError at import time for an unknown resource or action, so a
    typo in a route declaration fails loudly instead of denying forever.
    """
    if resource not in RESOURCES:
        raise ValueError(f"Unknown resource {resource!r}")
    if action not in ACTIONS:
        raise ValueError(f"Unknown action {action!r}")

    def _dependency(request: Request) -> Principal:
        resolver: AuthorizationResolver = request.app.state.resolver
        principal = get_current_principal(request)
        return resolver.authorize(principal, resource, action)

    _dependency.__name__ = f"check_permission_{resource}_{action}"
    return _dependency
