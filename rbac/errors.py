"""
rbac/errors.py -- Typed failures raised by the authorization core.

Every class carries the HTTP status and machine-readable code the API layer
puts into its error envelope, so the transport never has to pattern-match on
messages. The core itself never imports a web framework.

  AuthenticationRequired   -- no principal, or the principal no longer exists.
  PermissionDenied         -- admin gate failed or the matrix denied the action.
  RoleNotFound             -- direct role lookups only; the resolver falls back
                              to the default matrix instead of raising this.
  AuthorizationUnavailable -- a store read failed mid-decision. The request is
                              denied; the core never fails open.
  RoleValidationError      -- malformed role payload, rejected before any write.
"""

from __future__ import annotations


class AccessControlError(Exception):
    status_code: int = 500
    code: str = "access_control_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationRequired(AccessControlError):
    status_code = 401
    code = "unauthorized"


class PermissionDenied(AccessControlError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str, resource: str | None = None, action: str | None = None) -> None:
        super().__init__(message)
        self.resource = resource
        self.action = action


class RoleNotFound(AccessControlError):
    status_code = 404
    code = "not_found"

    def __init__(self, role_id: int) -> None:
        super().__init__("Role not found.")
        self.role_id = role_id


class AuthorizationUnavailable(AccessControlError):
    status_code = 503
    code = "authorization_unavailable"


class RoleValidationError(AccessControlError, ValueError):
    status_code = 422
    code = "validation_error"
