"""
rbac/identity.py -- The admin / role mutual-exclusivity rule.

A user's authorization identity is always in exactly one of three states:

    Admin               is_admin=True,  role_id=None
    RoleAssigned(id)    is_admin=False, role_id=id
    Unassigned          is_admin=False, role_id=None

resolve_identity() is the single function that computes the next state from
a write's inputs. Every path that creates or updates a user must pass its
is_admin / role_id inputs through it (auth/store.py does so on every
create_user and update_user); nothing else re-derives the precedence.

UNSET marks an input that the write did not mention, as opposed to an
explicit None ("clear the role").
"""

from __future__ import annotations

from typing import Any, NamedTuple, Optional


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


class Identity(NamedTuple):
    is_admin: bool
    role_id: Optional[int]


_TRUE_STRINGS = frozenset({"true", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "no", ""})


def as_admin_flag(value: object) -> bool:
    """Coerce an is_admin input to bool.

    Accepts booleans and the legacy encodings still found in older records
    and form posts: integers 1/0 and the strings "true"/"false".
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValueError(f"Cannot interpret {value!r} as an admin flag")


def is_admin_flag(value: object) -> bool:
    """Read-side admin test: boolean True or the legacy integer 1, nothing else."""
    return value is True or (type(value) is int and value == 1)


def resolve_identity(is_admin: Any = UNSET, role_id: Any = UNSET, existing: Any = None) -> Identity:
    """Return the (is_admin, role_id) a write must store.

    Args:
        is_admin: requested admin flag, or UNSET if the write does not touch it.
        role_id:  requested role id (None clears it), or UNSET.
        existing: the current record (anything with is_admin / role_id
                  attributes), or None for a new user.

    Precedence:
        is_admin true                 -> Admin, role cleared
        is_admin false, role given    -> RoleAssigned(role) / Unassigned
        is_admin false, role omitted  -> keeps the existing role
        role given, is_admin omitted  -> assigning a role revokes admin
        both omitted                  -> existing identity, re-normalized
    """
    existing_admin = as_admin_flag(existing.is_admin) if existing is not None else False
    existing_role = existing.role_id if existing is not None else None

    if is_admin is not UNSET:
        if as_admin_flag(is_admin):
            return Identity(True, None)
        return Identity(False, existing_role if role_id is UNSET else role_id)

    if role_id is not UNSET:
        return Identity(False, role_id)

    if existing_admin:
        return Identity(True, None)
    return Identity(False, existing_role)
