#!/usr/bin/env python3
"""
ITAM access -- management CLI for user identities and roles.

Works directly against the user store (USER_DB_URL, or auth/itam_users.db).
Roles are the catalog's seed roles: custom roles created through the API live
in the server process and are not visible here.

Usage:
  python main.py create-user alice --admin
  python main.py create-user bob --role-id 4 --password 'correct horse battery'
  python main.py set-identity bob --role-id 2
  python main.py set-identity bob --admin
  python main.py set-identity bob --no-admin --clear-role
  python main.py roles
  python main.py check bob assets edit
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from rbac.catalog import RoleCatalog
from rbac.errors import AccessControlError
from rbac.identity import UNSET
from rbac.membership import RoleMembershipAggregator
from rbac.models import Principal
from rbac.permissions import ACTIONS, RESOURCES
from rbac.reconciler import IdentityReconciler
from rbac.resolver import AuthorizationResolver


def _read_password(given: Optional[str]) -> Optional[str]:
    if given:
        return given
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return None
    return first


def _require_user(store: UserStore, username: str) -> Optional[User]:
    user = store.get_by_username(username)
    if user is None:
        print(f"  [!] No user named '{username}'.")
    return user


def _cmd_create_user(args, store: UserStore, catalog: RoleCatalog) -> int:
    if args.role_id is not None and catalog.get_role(args.role_id) is None:
        print(f"  [!] Role {args.role_id} does not exist. Run 'python main.py roles' to list roles.")
        return 1
    password = _read_password(args.password)
    if password is None:
        return 1
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    user = User(
        username=args.username,
        hashed_password=hash_password(password),
        email=args.email,
        is_admin=args.admin,
        role_id=args.role_id,
    )
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user named '{args.username}' already exists.")
        return 1
    created = store.get_by_id(user_id)
    print(f"  Created user {created.id} '{created.username}' (admin={created.is_admin}, role={created.role_id})")
    return 0


def _cmd_set_identity(args, store: UserStore, catalog: RoleCatalog) -> int:
    user = _require_user(store, args.username)
    if user is None:
        return 1
    role_id = UNSET
    if args.clear_role:
        role_id = None
    elif args.role_id is not None:
        if catalog.get_role(args.role_id) is None:
            print(f"  [!] Role {args.role_id} does not exist.")
            return 1
        role_id = args.role_id
    is_admin = UNSET if args.admin is None else args.admin
    if is_admin is UNSET and role_id is UNSET:
        print("  [!] Nothing to change. Pass --admin, --no-admin, --role-id or --clear-role.")
        return 1
    updated = store.update_user(user.id, is_admin=is_admin, role_id=role_id)
    print(f"  {updated.username}: admin={user.is_admin} role={user.role_id} -> admin={updated.is_admin} role={updated.role_id}")
    return 0


def _cmd_roles(args, store: UserStore, catalog: RoleCatalog) -> int:
    RoleMembershipAggregator(catalog, store).recompute_user_counts()
    print(f"\n  {'ID':>3}  {'Name':<20} {'Users':>5}  Description")
    print("  " + "─" * 60)
    for role in catalog.get_roles():
        print(f"  {role.id:>3}  {role.name:<20} {role.user_count:>5}  {role.description}")
    print()
    return 0


def _cmd_check(args, store: UserStore, catalog: RoleCatalog) -> int:
    user = _require_user(store, args.username)
    if user is None:
        return 1
    resolver = AuthorizationResolver(catalog, IdentityReconciler(store))
    principal = Principal(user_id=user.id, username=user.username)
    try:
        decision = resolver.decide(principal, args.resource, args.action)
    except AccessControlError as exc:
        print(f"  DENY  {exc.message}")
        return 2
    if decision.allowed:
        source = "admin" if decision.reason == "admin" else f"role {principal.role_id}"
        if decision.reason != "admin" and catalog.get_role(principal.role_id) is None:
            source = "default permissions"
        print(f"  ALLOW {args.username} may {args.action} {args.resource} ({source})")
        return 0
    print(f"  DENY  {decision.reason}")
    return 2


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="itam-access",
        description="Manage ITAM users, their admin flag / role, and inspect access decisions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice --admin
  python main.py set-identity bob --role-id 2
  python main.py check bob assets edit
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a user with a local password")
    create.add_argument("username")
    create.add_argument("--password", help="Password (prompted for if omitted)")
    create.add_argument("--email", default=None)
    create.add_argument("--admin", action="store_true", help="Make the user an administrator (clears any role)")
    create.add_argument("--role-id", type=int, default=None, metavar="ID", help="Assign a role")
    create.set_defaults(handler=_cmd_create_user)

    ident = sub.add_parser("set-identity", help="Change a user's admin flag and/or role")
    ident.add_argument("username")
    ident.add_argument("--admin", dest="admin", action="store_true", default=None, help="Grant admin (clears role)")
    ident.add_argument("--no-admin", dest="admin", action="store_false", help="Revoke admin")
    role_group = ident.add_mutually_exclusive_group()
    role_group.add_argument("--role-id", type=int, default=None, metavar="ID", help="Assign a role (revokes admin)")
    role_group.add_argument("--clear-role", action="store_true", help="Remove the role")
    ident.set_defaults(handler=_cmd_set_identity)

    roles = sub.add_parser("roles", help="List roles with user counts")
    roles.set_defaults(handler=_cmd_roles)

    check = sub.add_parser("check", help="Explain whether a user may perform an action")
    check.add_argument("username")
    check.add_argument("resource", choices=RESOURCES)
    check.add_argument("action", choices=ACTIONS)
    check.set_defaults(handler=_cmd_check)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    store = UserStore(get_settings().user_db_url)
    try:
        return args.handler(args, store, RoleCatalog())
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
