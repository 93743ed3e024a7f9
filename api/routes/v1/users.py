"""
api/routes/v1/users.py -- User account management REST endpoints.

Routes:
  GET    /api/v1/users              -- list all users (users.view)
  GET    /api/v1/users/{id}         -- one user (users.view)
  POST   /api/v1/users              -- create a user (users.add)
  PATCH  /api/v1/users/{id}         -- update profile, identity or active flag (users.edit)
  DELETE /api/v1/users/{id}         -- delete a user (users.delete)

Identity rules:
  Every create and update goes through UserStore, which applies
  rbac.identity.resolve_identity(): is_admin=true clears role_id, and a role
  assignment without is_admin=true revokes admin. The store's write listeners
  then invalidate the identity cache and publish a role-membership event.

Guards (checked here, not in the store):
  - Granting admin requires the caller to be an admin; users.add / users.edit
    alone cannot mint administrators. Assigning the Administrator role, or any
    role with an admin.* grant, counts as granting admin.
  - role_id must name an existing role (422 otherwise).
  - A user cannot deactivate or delete their own account.
  - The last active admin cannot be demoted, deactivated or deleted.
  - User 1 (the bootstrap administrator) cannot be deleted.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from activity.store import ActivityStore
from api.models import UserCreate, UserPatch, UserResponse
from auth.dependencies import check_permission
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from rbac.catalog import RoleCatalog
from rbac.errors import PermissionDenied, RoleValidationError
from rbac.identity import UNSET, is_admin_flag, resolve_identity
from rbac.models import ADMINISTRATOR_ROLE_ID, Principal
from rbac.permissions import ACTIONS

logger = logging.getLogger("itam.api.users")

_PROTECTED_USER_ID = 1

# Auth policy:
# - GET    /api/v1/users:        check_permission("users", "view")
# - GET    /api/v1/users/{id}:   check_permission("users", "view")
# - POST   /api/v1/users:        check_permission("users", "add")
# - PATCH  /api/v1/users/{id}:   check_permission("users", "edit")
# - DELETE /api/v1/users/{id}:   check_permission("users", "delete")
router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    principal: Principal = Depends(check_permission("users", "view")),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(check_permission("users", "view")),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    return _user_to_response(_get_or_404(user_store, user_id))


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: Request,
    body: UserCreate,
    principal: Principal = Depends(check_permission("users", "add")),
) -> UserResponse:
    """Create a user account with a local password."""
    user_store: UserStore = request.app.state.user_store
    activities: ActivityStore = request.app.state.activity_store

    if body.is_admin:
        _require_admin_caller(principal)
    elif body.role_id is not None:
        _require_existing_role(request, body.role_id)
        if _role_grants_admin(request, body.role_id):
            _require_admin_caller(principal)

    new_user = User(
        username=body.username,
        hashed_password=hash_password(body.password),
        email=body.email,
        is_admin=body.is_admin,
        role_id=body.role_id,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username already exists."},
        ) from exc

    activities.log_activity("create", "user", user_id, principal.user_id, f'User "{body.username}" created')
    return _user_to_response(user_store.get_by_id(user_id))


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    principal: Principal = Depends(check_permission("users", "edit")),
) -> UserResponse:
    """Update a user. Omitted fields are left alone; role_id=null clears the role."""
    user_store: UserStore = request.app.state.user_store
    activities: ActivityStore = request.app.state.activity_store

    target = _get_or_404(user_store, user_id)
    sent = body.model_fields_set

    is_admin = body.is_admin if "is_admin" in sent and body.is_admin is not None else UNSET
    role_id = body.role_id if "role_id" in sent else UNSET

    if is_admin is True and not target.is_admin:
        _require_admin_caller(principal)
    if role_id is not UNSET and role_id is not None:
        _require_existing_role(request, role_id)
        if role_id != target.role_id and _role_grants_admin(request, role_id):
            _require_admin_caller(principal)

    # Demotion check runs on the identity the store is about to write.
    next_identity = resolve_identity(is_admin, role_id, target)
    if target.is_admin and target.is_active and not next_identity.is_admin:
        _require_not_last_admin(user_store, "Cannot remove admin rights from the last active admin account.")

    fields: dict = {}
    if body.username is not None:
        fields["username"] = body.username
    if body.password is not None:
        fields["hashed_password"] = hash_password(body.password)
    if "email" in sent:
        fields["email"] = body.email
    if body.is_active is not None:
        if not body.is_active and target.is_active:
            if target.id == principal.user_id:
                raise HTTPException(
                    status_code=400,
                    detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
                )
            if target.is_admin:
                _require_not_last_admin(user_store, "Cannot deactivate the last active admin account.")
        fields["is_active"] = body.is_active

    if not fields and is_admin is UNSET and role_id is UNSET:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    try:
        updated = user_store.update_user(user_id, is_admin=is_admin, role_id=role_id, **fields)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username already exists."},
        ) from exc
    if updated is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})

    activities.log_activity("update", "user", user_id, principal.user_id, f'User "{updated.username}" updated')
    return _user_to_response(updated)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(check_permission("users", "delete")),
) -> Response:
    user_store: UserStore = request.app.state.user_store
    activities: ActivityStore = request.app.state.activity_store

    target = _get_or_404(user_store, user_id)
    if target.id == _PROTECTED_USER_ID:
        raise HTTPException(
            status_code=400,
            detail={"code": "protected_account", "message": "The initial administrator account cannot be deleted."},
        )
    if target.id == principal.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    if target.is_admin and target.is_active:
        _require_not_last_admin(user_store, "Cannot delete the last active admin account.")

    if not user_store.delete_user(user_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    activities.log_activity("delete", "user", user_id, principal.user_id, f'User "{target.username}" deleted')
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_or_404(user_store: UserStore, user_id: int) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return user


def _require_admin_caller(principal: Principal) -> None:
    # principal was reconciled by check_permission, so is_admin is current.
    if not is_admin_flag(principal.is_admin):
        logger.info("User %s tried to grant admin without being admin", principal.user_id)
        raise PermissionDenied("Admin privileges required.")


def _require_existing_role(request: Request, role_id: int) -> None:
    catalog: RoleCatalog = request.app.state.role_catalog
    if catalog.get_role(role_id) is None:
        raise RoleValidationError(f"Role {role_id} does not exist.")


def _role_grants_admin(request: Request, role_id: int) -> bool:
    """True for the Administrator role and any role allowed an admin.* action."""
    if role_id == ADMINISTRATOR_ROLE_ID:
        return True
    catalog: RoleCatalog = request.app.state.role_catalog
    grant = catalog.permissions_for(role_id).get("admin", {})
    return any(grant.get(action) is True for action in ACTIONS)


def _require_not_last_admin(user_store: UserStore, message: str) -> None:
    if user_store.count_active_admins() <= 1:
        raise HTTPException(status_code=400, detail={"code": "last_admin", "message": message})


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        is_admin=user.is_admin,
        role_id=user.role_id,
        is_active=user.is_active,
        created_at=user.created_at or "",
        last_login=user.last_login,
    )
