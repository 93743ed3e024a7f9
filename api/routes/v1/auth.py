"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login              -- password login; sets JWT cookie
  POST /api/v1/auth/logout             -- clears cookie; 200
  GET  /api/v1/auth/me                 -- current identity and effective permissions (requires auth)

Login is limited per client IP by LOGIN_RATE_LIMIT and its responses are
never cached.

The token identifies the user only. /auth/me re-reads is_admin and role_id
through the resolver, so its answer reflects the store, not the token.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MeResponse
from auth.dependencies import get_current_principal
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, set_auth_cookie
from core.config import get_settings
from rbac.catalog import RoleCatalog
from rbac.models import Principal
from rbac.resolver import AuthorizationResolver

logger = logging.getLogger("itam.api.auth")

_settings = get_settings()

router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange username and password for a token, returned in the body and as a cookie.

    Unknown user, wrong password and inactive account all produce the same
    401 bad_credentials. Credential checks go through authenticate_user().
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        logger.info("Failed login for %r from %s", body.username, request.client.host if request.client else "unknown")
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    user_store.update_last_login(user.id)
    token = create_access_token(user.id, user.username)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            username=user.username,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie and end the session."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> MeResponse:
    """Return the caller's current identity and the matrix the UI should render."""
    resolver: AuthorizationResolver = request.app.state.resolver
    catalog: RoleCatalog = request.app.state.role_catalog

    permissions = resolver.effective_permissions(principal)
    role = catalog.get_role(principal.role_id) if principal.role_id is not None else None
    return MeResponse(
        user_id=principal.user_id,
        username=principal.username,
        is_admin=bool(principal.is_admin),
        role_id=principal.role_id,
        role_name=role.name if role is not None else None,
        permissions=permissions,
    )
