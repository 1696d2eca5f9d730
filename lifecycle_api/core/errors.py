"""
Domain error taxonomy.

Every error carries an HTTP-equivalent status code and a human readable message;
the API layer turns them into the standard error envelope. None of these errors
is retried internally.
"""
from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    """Base class for errors surfaced to callers as structured failures."""

    status_code: int = 400
    error_type: str = "domain_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthenticated(DomainError):
    status_code = 401
    error_type = "unauthenticated"


class PermissionDenied(DomainError):
    """Raised when the caller's policies do not grant a capability."""

    status_code = 403
    error_type = "permission_denied"

    def __init__(self, capability: str) -> None:
        super().__init__(f"Access denied: missing permission for {capability}")
        self.capability = capability


class TenantNotConfigured(DomainError):
    status_code = 400
    error_type = "tenant_not_configured"

    def __init__(self, message: str = "Tenant is not set") -> None:
        super().__init__(message)


class TenantMismatch(DomainError):
    status_code = 403
    error_type = "tenant_mismatch"

    def __init__(self, tenant_id: object) -> None:
        super().__init__(f"Tenant {tenant_id} does not match the caller's organisation")
        self.tenant_id = tenant_id


class UnknownEntityKind(DomainError):
    status_code = 400
    error_type = "unknown_entity_kind"

    def __init__(self, kind: str, reason: Optional[str] = None) -> None:
        super().__init__(reason or f"Entity kind '{kind}' not supported")
        self.kind = kind


class NotFound(DomainError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, kind: str, entity_id: object = None) -> None:
        if entity_id is None:
            message = f"{kind} not found"
        else:
            message = f"{kind} with ID {entity_id} not found"
        super().__init__(message)
        self.kind = kind
        self.entity_id = entity_id


class ActionNotPermitted(DomainError):
    status_code = 403
    error_type = "action_not_permitted"

    def __init__(self, kind: str, action: str) -> None:
        super().__init__(
            f"Action '{action}' is not permitted for '{kind}' by current user policies"
        )
        self.kind = kind
        self.action = action


class IllegalTransition(DomainError):
    """Raised by an entity when an action is not legal from its current status."""

    status_code = 409
    error_type = "illegal_transition"

    def __init__(self, kind: str, action: str, status: Optional[str]) -> None:
        super().__init__(f"Action '{action}' is not allowed for {kind} in status '{status}'")
        self.kind = kind
        self.action = action
        self.status = status


class AttachmentRejected(DomainError):
    status_code = 422
    error_type = "attachment_rejected"

    def __init__(self, filename: str, reason: str) -> None:
        super().__init__(f"Attachment '{filename}' rejected: {reason}")
        self.filename = filename
        self.reason = reason


class UnresolvedSortPath(DomainError):
    status_code = 400
    error_type = "unresolved_sort_path"

    def __init__(self, path: str) -> None:
        super().__init__(f"Cannot resolve sort path '{path}'")
        self.path = path


class InvalidRequest(DomainError):
    """Raised when required input is missing or inconsistent."""

    status_code = 400
    error_type = "invalid_request"


class InvalidQuery(InvalidRequest):
    """Raised for filters, attributes or groupings the query builder cannot translate."""

    error_type = "invalid_query"


class HookFailure(DomainError):
    """Wraps any error raised by an entity hook; the original is kept as __cause__."""

    status_code = 500
    error_type = "hook_failure"

    def __init__(self, kind: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} hook for {kind} failed: {cause}")
        self.kind = kind
        self.stage = stage
        self.cause = cause
