"""
api/routes/v1/roles.py -- Role catalog REST endpoints.

Routes:
  GET    /api/v1/roles              -- list roles with fresh user counts (requires auth)
  GET    /api/v1/roles/{id}         -- one role; 404 if absent (requires auth)
  POST   /api/v1/roles              -- create a role (admin.add)
  PATCH  /api/v1/roles/{id}         -- rename / redescribe / replace matrix (admin.edit)
  DELETE /api/v1/roles/{id}         -- remove a role (admin.delete)

Deleting a role does not touch the users that reference it. They fall back to
the default matrix on their next request; the handler logs how many were
affected so an operator can reassign them.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response

from activity.store import ActivityStore
from api.models import RoleCreate, RolePatch, RoleResponse
from auth.dependencies import check_permission, get_current_principal
from rbac.catalog import RoleCatalog
from rbac.errors import RoleNotFound
from rbac.membership import RoleMembershipAggregator
from rbac.models import Principal, Role

logger = logging.getLogger("itam.api.roles")

# Auth policy:
# - GET    /api/v1/roles:        requires auth (get_current_principal)
# - GET    /api/v1/roles/{id}:   requires auth (get_current_principal)
# - POST   /api/v1/roles:        check_permission("admin", "add")
# - PATCH  /api/v1/roles/{id}:   check_permission("admin", "edit")
# - DELETE /api/v1/roles/{id}:   check_permission("admin", "delete")
router = APIRouter()


@router.get("/roles", response_model=list[RoleResponse])
async def list_roles(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> list[RoleResponse]:
    """Return every role ordered by id.

    Counts are recomputed before the read so the list is current even if the
    background consumer is behind. A failed recompute is logged and the last
    known counts are returned.
    """
    catalog: RoleCatalog = request.app.state.role_catalog
    membership: RoleMembershipAggregator = request.app.state.membership
    try:
        membership.recompute_user_counts()
    except Exception:
        logger.exception("Could not refresh role user counts for GET /roles")
    return [_role_to_response(role) for role in catalog.get_roles()]


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    request: Request,
    role_id: int,
    principal: Principal = Depends(get_current_principal),
) -> RoleResponse:
    catalog: RoleCatalog = request.app.state.role_catalog
    role = catalog.get_role(role_id)
    if role is None:
        raise RoleNotFound(role_id)
    return _role_to_response(role)


@router.post("/roles", response_model=RoleResponse, status_code=201)
async def create_role(
    request: Request,
    body: RoleCreate,
    principal: Principal = Depends(check_permission("admin", "add")),
) -> RoleResponse:
    """Create a role. Resources missing from the body take the default grants."""
    catalog: RoleCatalog = request.app.state.role_catalog
    activities: ActivityStore = request.app.state.activity_store

    role = catalog.create_role(body.name, body.description, body.permissions_dict())
    activities.log_activity("create", "role", role.id, principal.user_id, f'Role "{role.name}" created')
    return _role_to_response(role)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    request: Request,
    role_id: int,
    body: RolePatch,
    principal: Principal = Depends(check_permission("admin", "edit")),
) -> RoleResponse:
    """Update a role. A permissions value must list every resource and replaces the stored matrix."""
    catalog: RoleCatalog = request.app.state.role_catalog
    activities: ActivityStore = request.app.state.activity_store

    role = catalog.update_role(role_id, **body.updates())
    if role is None:
        raise RoleNotFound(role_id)
    activities.log_activity("update", "role", role.id, principal.user_id, f'Role "{role.name}" updated')
    return _role_to_response(role)


@router.delete("/roles/{role_id}", status_code=204)
async def delete_role(
    request: Request,
    role_id: int,
    principal: Principal = Depends(check_permission("admin", "delete")),
) -> Response:
    catalog: RoleCatalog = request.app.state.role_catalog
    activities: ActivityStore = request.app.state.activity_store
    user_store = request.app.state.user_store

    role = catalog.get_role(role_id)
    if role is None or not catalog.delete_role(role_id):
        raise RoleNotFound(role_id)

    orphaned = [u.id for u in user_store.list_users() if u.role_id == role_id]
    if orphaned:
        logger.warning(
            "Role %d (%s) deleted while assigned to %d user(s) %s; they now get default permissions",
            role_id,
            role.name,
            len(orphaned),
            orphaned,
        )
    activities.log_activity("delete", "role", role_id, principal.user_id, f'Role "{role.name}" deleted')
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _role_to_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        permissions=role.permissions,
        user_count=role.user_count,
    )
