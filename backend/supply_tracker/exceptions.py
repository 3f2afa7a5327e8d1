"""
Supply Tracker Backend: Custom Exception Hierarchy
====================================================

What:  Application-specific exceptions for every failure the API reports.
How:   Each exception carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with the right HTTP status.
Who:   Raised by services and the access guard; caught by global handlers.

Exception Hierarchy:
    SupplyTrackerError (base)
    ├── ValidationError          → 400 Bad Request (client can fix)
    ├── UnauthenticatedError     → 401 Unauthorized (no credential)
    ├── InvalidCredentialError   → 401 Unauthorized (credential rejected)
    ├── ForbiddenError           → 403 Forbidden (role or facility scope)
    ├── NotFoundError            → 404 Not Found
    ├── DependencyBlockedError   → 409 Conflict (carries blocking_count)
    ├── ConflictRetry            → never leaves the usage ledger
    ├── DatabaseError            → 500 Internal Server Error (store fault)
    └── RateLimitExceededError   → 429 Too Many Requests
"""

from typing import Any, Dict, Optional


class SupplyTrackerError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    # Machine-readable kind returned as the "error" field
    kind = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(SupplyTrackerError):
    """
    Raised when client input fails validation.

    When:    Out-of-range day, negative quantity, malformed month, blank name,
             duplicate unique value (email, facility name, supply code, patient).
    HTTP:    400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "dayOfMonth must be between 1 and 31",
            "details": {"field": "dayOfMonth"}
        }
    """

    kind = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnauthenticatedError(SupplyTrackerError):
    """No credential was presented. HTTP 401."""

    kind = "unauthenticated"

    def __init__(
        self,
        message: str = "Access token required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InvalidCredentialError(SupplyTrackerError):
    """
    A credential was presented but could not be verified.

    When:    Bad signature, expired token, unknown or unapproved user,
             wrong password at login.
    HTTP:    401 Unauthorized
    """

    kind = "invalid_credential"

    def __init__(
        self,
        message: str = "Invalid credentials",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(SupplyTrackerError):
    """
    The identity is known but may not perform this operation.

    When:    Non-admin calls an admin-only operation, or touches data whose
             facility differs from its home facility.
    HTTP:    403 Forbidden
    """

    kind = "forbidden"

    def __init__(
        self,
        message: str = "Access denied",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(SupplyTrackerError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing rows; services convert that None into
    this exception.
    HTTP:    404 Not Found
    """

    kind = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id is not None:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id is not None:
            ctx["resource_id"] = str(resource_id)
        super().__init__(message=message, context=ctx)


class DependencyBlockedError(SupplyTrackerError):
    """
    A delete was refused because other records still reference the target.

    When:    Deleting a facility that patients reference, or a supply with usage
             records under the `block` delete policy.
    HTTP:    409 Conflict

    Attributes:
        blocking_count:  Number of referencing records the caller must resolve
    """

    kind = "dependency_blocked"

    def __init__(
        self,
        resource: str,
        dependent: str,
        blocking_count: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Cannot delete {resource}: {blocking_count} {dependent} still reference it"
        )
        ctx = context or {}
        ctx["blocking_count"] = blocking_count
        ctx["dependent"] = dependent
        super().__init__(message=message, context=ctx)
        self.blocking_count = blocking_count


class ConflictRetry(SupplyTrackerError):
    """
    Internal signal: a usage upsert hit a uniqueness violation.

    The ledger retries the write as an update. No exception handler is
    registered for it; it never reaches a client.
    """

    kind = "conflict_retry"

    def __init__(
        self,
        message: str = "Usage record key conflict",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(SupplyTrackerError):
    """
    The backing store failed (StoreFault).

    HTTP:    500 Internal Server Error

    The message returned to the client is always generic. `context["detail"]`
    holds the driver error text; it is included in the response only outside
    production.
    """

    kind = "server_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(SupplyTrackerError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests, with a Retry-After header.
    """

    kind = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
