"""
CardSync Pro Backend — Custom Exception Hierarchy
==================================================

What:  Application-specific exceptions for every failure the API reports.
Why:   Custom exceptions enable targeted error handling with appropriate HTTP
       status codes and user-friendly messages, without leaking internals.
How:   Each exception carries a user-facing message and an optional context
       dict. Global handlers (registered in main.py) turn them into
       structured JSON error responses.
Who:   Raised by services and dependencies; caught by global handlers.

Exception Hierarchy:
    CardSyncError (base)
    ├── ValidationError            → 400 Bad Request (client can fix)
    ├── AuthenticationError        → 401 Unauthorized (sign in again)
    ├── QuotaExceededError         → 403 Forbidden (upgrade plan)
    ├── NotFoundError              → 404 Not Found
    ├── RateLimitExceededError     → 429 Too Many Requests
    ├── ExternalServiceError       → 503 Service Unavailable (retry later)
    │   ├── LLMServiceError
    │   ├── BillingServiceError
    │   └── CircuitBreakerOpenError
    ├── DatabaseError              → 500 Internal Server Error
    ├── FileStorageError           → 500 Internal Server Error
    └── AttachmentUploadError      → never surfaced (logged by ContactService)

Quota and authentication errors are raised before anything is written, so
callers never need to clean up after them.
"""

from typing import Any, Dict, Optional


class CardSyncError(Exception):
    """
    Base exception for all CardSync application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for 5xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(CardSyncError):
    """
    Raised when client input fails a business rule.

    When:    Unsupported attachment type, oversized upload, unknown plan,
             bad webhook signature, malformed JSON form field.
    HTTP:    400 Bad Request
    """

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


class AuthenticationError(CardSyncError):
    """
    Raised when a credential is missing, malformed, expired, or forged.

    HTTP:    401 Unauthorized, with WWW-Authenticate: Bearer
    The underlying reason goes into context for the logs only.
    """

    def __init__(
        self,
        message: str = "Authentication failed. Please sign in again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class QuotaExceededError(CardSyncError):
    """
    Raised when a contact create would exceed the owner's plan limit.

    When:    The guarded counter increment in ContactService matched no row.
    HTTP:    403 Forbidden

    Nothing has been written when this is raised: the atomic unit that
    detected it is rolled back.
    """

    def __init__(
        self,
        plan: str,
        limit: int,
        contact_count: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"You have reached the {limit} contact limit of the {plan} plan. "
            f"Please upgrade your plan to add more contacts."
        )
        ctx = context or {}
        ctx.update({"plan": plan, "limit": limit, "contact_count": contact_count})
        super().__init__(message=message, context=ctx)
        self.plan = plan
        self.limit = limit
        self.contact_count = contact_count


class NotFoundError(CardSyncError):
    """
    Raised when a requested resource does not exist (or is not the caller's).

    When:    Unknown contact id, missing profile, unconfigured plan price id.
    HTTP:    404 Not Found

    Contacts owned by somebody else are reported as not found so ids cannot
    be probed.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class RateLimitExceededError(CardSyncError):
    """
    Raised when a client exceeds the request rate limit.

    HTTP:    429 Too Many Requests, with Retry-After header
    """

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


class ExternalServiceError(CardSyncError):
    """
    Raised when a hosted dependency (AI backend, payment provider) fails.

    HTTP:    503 Service Unavailable. The client should retry later.
    """

    def __init__(
        self,
        message: str = "An external service is temporarily unavailable. Please try again later.",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class LLMServiceError(ExternalServiceError):
    """Raised when Gemini fails after all retries."""

    def __init__(
        self,
        message: str = "AI contact extraction is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, retry_after=retry_after, context=context)


class BillingServiceError(ExternalServiceError):
    """Raised when a Stripe API call fails."""

    def __init__(
        self,
        message: str = "The billing service is temporarily unavailable. Please try again later.",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, retry_after=retry_after, context=context)


class CircuitBreakerOpenError(ExternalServiceError):
    """
    Raised when a provider's circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for recovery_time seconds)
        → After recovery_time → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED; if it fails → OPEN again
    """

    def __init__(
        self,
        service: str = "external",
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"The {service} service is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx.update({"service": service, "recovery_time": recovery_time})
        super().__init__(message=message, retry_after=recovery_time, context=ctx)
        self.service = service
        self.recovery_time = recovery_time


class DatabaseError(CardSyncError):
    """
    Raised when database operations fail unexpectedly.

    HTTP:    500 Internal Server Error. The message returned to the client is
    always generic; SQL details are logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(CardSyncError):
    """
    Raised when the blob store cannot read, write, or delete an object.

    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AttachmentUploadError(CardSyncError):
    """
    A contact was saved but one of its attachments could not be stored.

    Never reaches a handler: ContactService logs it and reports the save as
    successful with the attachment field left empty.
    """

    def __init__(
        self,
        contact_id: str,
        attachment: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"contact_id": contact_id, "attachment": attachment})
        super().__init__(
            message=f"Contact {contact_id} saved without its {attachment}",
            context=ctx,
        )
        self.contact_id = contact_id
        self.attachment = attachment
