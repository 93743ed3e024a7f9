"""
rbac/catalog.py -- Guarded in-memory role table.

RoleCatalog owns the Role records, their permission matrices and the
monotonically increasing id counter. It is shared mutable state, so:

  - every write (create / update / delete / apply_user_counts) runs under a
    single lock, which also serializes the id counter;
  - every read returns deep copies taken under the same lock, so callers
    always see a consistent snapshot and never hold a reference into the
    table.

Validation happens on the way in (rbac.permissions.validate_matrix). Reads
still repair a stored matrix that is not a mapping of mappings -- that can
only be data seeded from an older format, never something create/update
accepted.

Usage:
    catalog = RoleCatalog()                 # four seed roles, next id 5
    role = catalog.create_role("Auditor", "Reports only", {"reports": {"view": True, "edit": False, "add": False}})
    catalog.permissions_for(role.id)["reports"]["view"]   # True
    catalog.delete_role(role.id)
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterable, Mapping

from rbac.errors import RoleValidationError
from rbac.models import Role
from rbac.permissions import (
    PermissionMatrix,
    default_permissions,
    full_permissions,
    grant,
    is_matrix_shaped,
    merge_over_defaults,
    validate_matrix,
)

logger = logging.getLogger("itam.rbac.catalog")

_UPDATABLE_FIELDS = frozenset({"name", "description", "permissions"})


def _asset_manager_permissions() -> PermissionMatrix:
    return {
        "assets": grant(view=True, edit=True, add=True),
        "users": grant(view=True),
        "licenses": grant(view=True, edit=True, add=True),
        "components": grant(view=True, edit=True, add=True),
        "accessories": grant(view=True, edit=True, add=True),
        "consumables": grant(view=True, edit=True, add=True),
        "reports": grant(view=True, edit=True),
        "admin": grant(),
        "vmMonitoring": grant(view=True, edit=True),
        "networkDiscovery": grant(view=True),
        "bitlockerKeys": grant(),
    }


def _user_manager_permissions() -> PermissionMatrix:
    matrix = default_permissions()
    matrix["users"] = grant(view=True, edit=True, add=True)
    return matrix


def _read_only_permissions() -> PermissionMatrix:
    matrix = default_permissions()
    matrix["users"] = grant(view=True)
    return matrix


def seed_roles() -> list[Role]:
    """Return fresh copies of the four roles present at process start."""
    return [
        Role(1, "Administrator", "Full system access with all permissions", full_permissions()),
        Role(2, "Asset Manager", "Can manage all assets and related items", _asset_manager_permissions()),
        Role(3, "User Manager", "Can manage users and basic asset operations", _user_manager_permissions()),
        Role(4, "Read Only", "View-only access to most resources", _read_only_permissions()),
    ]


def _clean_name(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise RoleValidationError("Role name must be a non-empty string.")
    return value.strip()


def _clean_description(value: object) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise RoleValidationError("Role description must be a string.")
    return value.strip()


class RoleCatalog:
    """Thread-safe CRUD over Role records.

    roles: initial contents. Defaults to seed_roles(). Records passed here are
        taken as-is (no validation) so that legacy data can be loaded; the
        read path repairs malformed matrices.
    """

    def __init__(self, roles: Iterable[Role] | None = None) -> None:
        self._lock = threading.RLock()
        initial = list(roles) if roles is not None else seed_roles()
        self._roles: dict[int, Role] = {role.id: copy.deepcopy(role) for role in initial}
        self._next_id = max(self._roles, default=0) + 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _snapshot(self, role: Role) -> Role:
        snapshot = copy.deepcopy(role)
        if not is_matrix_shaped(snapshot.permissions):
            logger.warning("Role %d has a malformed permission matrix; substituting defaults", role.id)
            snapshot.permissions = default_permissions()
        return snapshot

    def get_roles(self) -> list[Role]:
        """Return every role ordered by id."""
        with self._lock:
            return [self._snapshot(self._roles[role_id]) for role_id in sorted(self._roles)]

    def get_role(self, role_id: int) -> Role | None:
        with self._lock:
            role = self._roles.get(role_id)
            return self._snapshot(role) if role is not None else None

    def permissions_for(self, role_id: int | None) -> PermissionMatrix:
        """Return the matrix for role_id, or the default matrix.

        None and ids that do not resolve (e.g. a deleted role still referenced
        by a user) both fall back to default_permissions(); this never raises
        for a missing role.
        """
        if role_id is None:
            return default_permissions()
        role = self.get_role(role_id)
        if role is None:
            logger.debug("Role %s does not resolve; using default permissions", role_id)
            return default_permissions()
        return role.permissions

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_role(
        self,
        name: str,
        description: str = "",
        permissions: Mapping[str, Mapping[str, bool]] | None = None,
    ) -> Role:
        """Validate, assign the next id, and store a new role.

        permissions may be partial; it is laid over the default matrix so the
        stored role always carries every resource key.
        """
        role_name = _clean_name(name)
        role_description = _clean_description(description)
        matrix = merge_over_defaults(permissions)
        with self._lock:
            role = Role(id=self._next_id, name=role_name, description=role_description, permissions=matrix)
            self._next_id += 1
            self._roles[role.id] = role
            logger.info("Created role %d (%s)", role.id, role.name)
            return copy.deepcopy(role)

    def update_role(self, role_id: int, **updates) -> Role | None:
        """Shallow-merge name / description / permissions into an existing role.

        A permissions value replaces the stored matrix whole; it is not merged
        per resource. It must therefore name every resource -- omitting one is
        rejected rather than silently clearing that resource's grants.

        Returns the updated role, or None if role_id does not exist.
        """
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise RoleValidationError(f"Cannot update role field(s): {', '.join(sorted(unknown))}.")
        changes: dict = {}
        if "name" in updates:
            changes["name"] = _clean_name(updates["name"])
        if "description" in updates:
            changes["description"] = _clean_description(updates["description"])
        if "permissions" in updates:
            changes["permissions"] = validate_matrix(updates["permissions"], require_all=True)
        with self._lock:
            role = self._roles.get(role_id)
            if role is None:
                return None
            for field_name, value in changes.items():
                setattr(role, field_name, value)
            logger.info("Updated role %d (%s): %s", role.id, role.name, ", ".join(sorted(changes)) or "no changes")
            return self._snapshot(role)

    def delete_role(self, role_id: int) -> bool:
        """Remove a role. Returns True if a role was removed.

        No cascade: users still referencing role_id resolve to the default
        matrix on their next check.
        """
        with self._lock:
            removed = self._roles.pop(role_id, None)
        if removed is not None:
            logger.info("Deleted role %d (%s)", removed.id, removed.name)
        return removed is not None

    def apply_user_counts(self, counts: Mapping[int, int]) -> None:
        """Overwrite every role's user_count in one step. Missing ids get 0."""
        with self._lock:
            for role_id, role in self._roles.items():
                role.user_count = counts.get(role_id, 0)
