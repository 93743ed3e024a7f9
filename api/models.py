"""
API request and response models for the ITAM access REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in rbac/models.py,
auth/models.py and activity/models.py, which own the internal domain
representation. Route handlers map between the two.

Role payloads are validated twice: here (shape and types, 422 before the
handler runs) and again by the catalog (rbac.permissions.validate_matrix), so
the catalog stays safe for callers that do not come through HTTP.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator

from rbac.permissions import RESOURCES

# Closed set of resource keys, mirrored from rbac.permissions.RESOURCES.
ResourceName = Literal[
    "assets",
    "users",
    "licenses",
    "components",
    "accessories",
    "consumables",
    "reports",
    "admin",
    "vmMonitoring",
    "networkDiscovery",
    "bitlockerKeys",
]


# ---------------------------------------------------------------------------
# Permission matrix
# ---------------------------------------------------------------------------


class ActionGrant(BaseModel):
    """Wire shape of one resource entry. delete may be omitted (False)."""

    model_config = ConfigDict(extra="forbid")

    view: StrictBool
    edit: StrictBool
    add: StrictBool
    delete: StrictBool = False


def _matrix_to_dict(matrix: Optional[dict[str, ActionGrant]]) -> Optional[dict[str, dict[str, bool]]]:
    if matrix is None:
        return None
    return {resource: grant.model_dump() for resource, grant in matrix.items()}


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles.

    permissions may name any subset of resources; the rest take the default
    grants.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    permissions: dict[ResourceName, ActionGrant] = Field(default_factory=dict)

    def permissions_dict(self) -> dict[str, dict[str, bool]]:
        return _matrix_to_dict(self.permissions) or {}


class RolePatch(BaseModel):
    """Request body for PATCH /api/v1/roles/{role_id}.

    permissions, when present, replaces the stored matrix whole and must
    therefore list every resource.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    permissions: Optional[dict[ResourceName, ActionGrant]] = None

    @field_validator("permissions")
    @classmethod
    def require_complete_matrix(cls, value: Optional[dict]) -> Optional[dict]:
        if value is None:
            return value
        missing = [resource for resource in RESOURCES if resource not in value]
        if missing:
            raise ValueError("permissions replaces the whole matrix; missing: " + ", ".join(missing))
        return value

    def updates(self) -> dict:
        """Only the fields the client actually sent, ready for RoleCatalog.update_role()."""
        data = {}
        for field_name in self.model_fields_set:
            value = getattr(self, field_name)
            if value is None:
                continue
            data[field_name] = _matrix_to_dict(value) if field_name == "permissions" else value
        return data


class RoleResponse(BaseModel):
    """One role. user_count is refreshed before list responses."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    permissions: dict[str, dict[str, bool]]
    user_count: int = 0


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    """Response body for a successful login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    username: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- identity plus the effective matrix."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    is_admin: bool
    role_id: Optional[int]
    role_name: Optional[str] = None
    permissions: dict[str, dict[str, bool]]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users.

    is_admin and role_id are mutually exclusive after the write: is_admin=True
    wins and clears role_id.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    is_admin: bool = False
    role_id: Optional[int] = Field(default=None, ge=1)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id}.

    Omitted fields are left alone. role_id=null clears the role; omitting
    role_id keeps it (unless is_admin=true, which always clears it).
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    is_admin: Optional[bool] = None
    role_id: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: Optional[str]
    is_admin: bool
    role_id: Optional[int]
    is_active: bool
    created_at: str
    last_login: Optional[str] = None


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


class ActivityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    action: str
    item_type: str
    item_id: int
    user_id: Optional[int]
    timestamp: str
    notes: str


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
