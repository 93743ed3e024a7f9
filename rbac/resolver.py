"""
rbac/resolver.py -- The per-request access decision.

AuthorizationResolver.decide() evaluates (principal, resource, action) in a
fixed order:

  1. No principal                     -> AuthenticationRequired
  2. Reconcile is_admin / role_id from the user store (never the session)
  3. Admin (True, or legacy 1)        -> allow; matrix checks are skipped
  4. Resolve the role matrix          -> default matrix if no role resolves
  5. Resource missing from the matrix -> deny
  6. matrix[resource][action] is not True -> deny
  7. Allow, and attach the matrix to the principal

Any failure reading the store or the catalog denies the request with
AuthorizationUnavailable. There is no path that allows on error.

authorize() is the raising form used by the API dependencies: it returns the
principal on allow and raises PermissionDenied on deny.
"""

from __future__ import annotations

import logging
from typing import Optional

from rbac.catalog import RoleCatalog
from rbac.errors import AuthenticationRequired, AuthorizationUnavailable, PermissionDenied
from rbac.identity import is_admin_flag
from rbac.models import AccessDecision, Principal
from rbac.permissions import PermissionMatrix, full_permissions
from rbac.reconciler import IdentityReconciler

logger = logging.getLogger("itam.rbac.resolver")


class AuthorizationResolver:
    def __init__(self, catalog: RoleCatalog, reconciler: IdentityReconciler) -> None:
        self._catalog = catalog
        self._reconciler = reconciler

    def _role_matrix(self, role_id: Optional[int]) -> PermissionMatrix:
        try:
            return self._catalog.permissions_for(role_id)
        except Exception as exc:
            logger.exception("Role catalog lookup failed for role %s", role_id)
            raise AuthorizationUnavailable("Permission check failed.") from exc

    def decide(self, principal: Optional[Principal], resource: str, action: str) -> AccessDecision:
        if principal is None:
            raise AuthenticationRequired("Authentication required.")

        self._reconciler.refresh(principal)

        if is_admin_flag(principal.is_admin):
            logger.debug("Allow %s.%s for user %s: admin", resource, action, principal.user_id)
            principal.permissions = full_permissions()
            return AccessDecision(True, "admin", resource, action, principal.permissions)

        matrix = self._role_matrix(principal.role_id)

        entry = matrix.get(resource)
        if not entry:
            return AccessDecision(
                False, f"Access denied. You don't have permission to access {resource}.", resource, action
            )

        if entry.get(action) is not True:
            return AccessDecision(
                False, f"Access denied. You don't have permission to {action} {resource}.", resource, action
            )

        principal.permissions = matrix
        logger.debug("Allow %s.%s for user %s: role %s", resource, action, principal.user_id, principal.role_id)
        return AccessDecision(True, "role", resource, action, matrix)

    def authorize(self, principal: Optional[Principal], resource: str, action: str) -> Principal:
        decision = self.decide(principal, resource, action)
        if not decision.allowed:
            logger.info(
                "Deny %s.%s for user %s (role %s)",
                resource,
                action,
                principal.user_id,
                principal.role_id,
            )
            raise PermissionDenied(decision.reason, resource=resource, action=action)
        return principal

    def require_admin(self, principal: Optional[Principal]) -> Principal:
        """Admin-only gate. Reconciles first, so a demotion takes effect immediately."""
        if principal is None:
            raise AuthenticationRequired("Authentication required.")
        self._reconciler.refresh(principal)
        if not is_admin_flag(principal.is_admin):
            logger.info("Deny admin-only operation for user %s", principal.user_id)
            raise PermissionDenied("Admin privileges required.")
        principal.permissions = full_permissions()
        return principal

    def effective_permissions(self, principal: Principal) -> PermissionMatrix:
        """Return the matrix a handler should echo back to a client for principal."""
        self._reconciler.refresh(principal)
        if is_admin_flag(principal.is_admin):
            principal.permissions = full_permissions()
        else:
            principal.permissions = self._role_matrix(principal.role_id)
        return principal.permissions
