"""
rbac/permissions.py -- Resource/action vocabulary and permission matrices.

A permission matrix maps every resource in the closed RESOURCES set to an
action grant {"view", "edit", "add", "delete"} of booleans. Two matrices are
fixed by the system:

  default_permissions() -- the fallback grant table for principals with no
      resolvable role: view-only on ordinary business resources, nothing on
      sensitive ones.
  full_permissions()    -- every action on every resource (Administrator).

Both return fresh copies. Callers may mutate what they get back.

Validation happens at two boundaries:
  validate_matrix()     -- write time. Rejects anything that is not a mapping
      of known resources to well-formed grants (RoleValidationError).
  is_matrix_shaped()    -- read time. A last-resort check for records written
      before validation existed; the catalog substitutes the default matrix
      when it fails.
"""

from __future__ import annotations

from collections.abc import Mapping

from rbac.errors import RoleValidationError

RESOURCES: tuple[str, ...] = (
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
)

ACTIONS: tuple[str, ...] = ("view", "edit", "add", "delete")

# view/edit/add must be supplied on input; delete defaults to False.
_REQUIRED_ACTIONS = ("view", "edit", "add")

# Resources a principal without a role may still browse.
_VIEWABLE_BY_DEFAULT = frozenset({"assets", "licenses", "components", "accessories", "consumables", "reports"})

PermissionMatrix = dict[str, dict[str, bool]]


def grant(view: bool = False, edit: bool = False, add: bool = False, delete: bool = False) -> dict[str, bool]:
    """Build a single normalized action grant."""
    return {"view": view, "edit": edit, "add": add, "delete": delete}


def default_permissions() -> PermissionMatrix:
    return {resource: grant(view=resource in _VIEWABLE_BY_DEFAULT) for resource in RESOURCES}


def full_permissions() -> PermissionMatrix:
    return {resource: grant(True, True, True, True) for resource in RESOURCES}


def is_matrix_shaped(value: object) -> bool:
    """Return True if value is a mapping whose entries are all mappings.

    This is deliberately weaker than validate_matrix(): a stored matrix with
    a missing resource key is still shaped, and the resolver denies that
    resource. Only structurally unusable values (lists, strings, None, a
    mapping of scalars) fail.
    """
    if not isinstance(value, Mapping):
        return False
    return all(isinstance(entry, Mapping) for entry in value.values())


def _validate_grant(resource: str, entry: object) -> dict[str, bool]:
    if not isinstance(entry, Mapping):
        raise RoleValidationError(f"Permissions for '{resource}' must be an object of action flags.")
    unknown = set(entry) - set(ACTIONS)
    if unknown:
        raise RoleValidationError(f"Unknown action(s) for '{resource}': {', '.join(sorted(map(str, unknown)))}.")
    missing = [action for action in _REQUIRED_ACTIONS if action not in entry]
    if missing:
        raise RoleValidationError(f"Permissions for '{resource}' are missing: {', '.join(missing)}.")
    flags: dict[str, bool] = {}
    for action in ACTIONS:
        value = entry.get(action, False)
        if not isinstance(value, bool):
            raise RoleValidationError(f"'{resource}.{action}' must be a boolean.")
        flags[action] = value
    return flags


def validate_matrix(value: object, *, require_all: bool = False) -> PermissionMatrix:
    """Validate and normalize a (possibly partial) permission matrix.

    Returns a new matrix containing only the supplied resources, each with all
    four action keys. With require_all=True every resource in RESOURCES must
    be supplied -- used for updates, which replace the stored matrix whole.

    Raises RoleValidationError on any structural problem.
    """
    if not isinstance(value, Mapping):
        raise RoleValidationError("Permissions must be an object keyed by resource name.")
    unknown = set(value) - set(RESOURCES)
    if unknown:
        raise RoleValidationError(f"Unknown resource(s): {', '.join(sorted(map(str, unknown)))}.")
    if require_all:
        missing = [resource for resource in RESOURCES if resource not in value]
        if missing:
            raise RoleValidationError(
                "A permissions update replaces the whole matrix; missing resource(s): " + ", ".join(missing) + "."
            )
    return {resource: _validate_grant(resource, value[resource]) for resource in RESOURCES if resource in value}


def merge_over_defaults(partial: Mapping[str, Mapping[str, bool]] | None) -> PermissionMatrix:
    """Validate partial and lay it over default_permissions().

    Per-resource replacement: a supplied resource entry replaces the default
    entry for that resource; unsupplied resources keep the default.
    """
    matrix = default_permissions()
    if partial:
        matrix.update(validate_matrix(partial))
    return matrix
