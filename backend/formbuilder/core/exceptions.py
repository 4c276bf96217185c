"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No sensitive data leaks in error messages (OWASP A04)
5. Easier debugging with detailed context

IMPORTANT: NEVER use base Exception class. Always use custom exceptions.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: Filter out sensitive fields to prevent data leaks
        sensitive_fields = {"password", "token", "secret", "key", "api_key"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions (OWASP A07)
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class TokenExpiredError(AuthenticationError):
    """
    Raised when JWT token has expired.

    WHY: Specific exception for expired tokens allows frontends to trigger
    automatic token refresh without logging out the user.
    """

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when JWT token is malformed or has invalid signature."""

    default_message = "Token is invalid"


# ============================================================================
# Validation & Input Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    WHY: Validation errors should return 400 Bad Request with details
    about which fields failed validation, helping users correct their input.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    WHY: 422 Unprocessable Entity indicates the request was well-formed
    but semantically incorrect.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when an invalid state transition is attempted.

    WHY: Subscriptions move through a small state machine (trialing,
    active, pending cancellation). Attempting a transition that doesn't
    apply (e.g., resuming a subscription that isn't cancelling) should
    fail with a clear error message.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


# ============================================================================
# External Service Exceptions (OWASP A08: Software Integrity)
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    WHY: External API failures should return 502 Bad Gateway, indicating
    the problem is with an upstream service, not our application.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class StripeError(ExternalServiceError):
    """
    Raised when Stripe API calls fail.

    WHY: Separate exception for Stripe allows catching and handling
    payment failures specifically.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Payment processing error"


# ============================================================================
# Billing Exceptions
# ============================================================================


class CatalogConfigurationError(AppException):
    """
    Raised when the plan catalog is misconfigured.

    WHY: Two plan/interval pairs sharing one Stripe price ID would make
    reverse price lookups ambiguous, so the catalog refuses to load.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Billing plans are misconfigured"


class UnknownPlanOrIntervalError(ValidationError):
    """
    Raised when a plan/interval pair has no configured price.

    WHY: Rejected before any Stripe call is made.
    """

    default_message = "Invalid plan or interval"


class NoChangeRequestedError(ValidationError):
    """Raised when a change request matches the current plan and nothing is pending."""

    default_message = "No change needed. Your subscription is already on the requested plan."


class NoActiveSubscriptionError(AppException):
    """
    Raised when the customer has no live subscription to modify.

    WHY: User-correctable ("nothing to change"). We fail closed and never
    create a subscription as a side effect of a change request.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "No active subscription found"


class NotPendingCancellationError(InvalidStateTransitionError):
    """Raised when resuming a subscription that isn't scheduled to cancel."""

    default_message = "Subscription is not pending cancellation"


class SchedulingFailedError(StripeError):
    """
    Raised when a subscription schedule can't be created or updated.

    WHY: Recovered locally by recording the deferred change in metadata
    only; never surfaced to the client.
    """

    default_message = "Failed to schedule subscription change"


class BillingPlatformUnavailableError(StripeError):
    """
    Raised when Stripe is unreachable, rate limiting, or failing internally.

    WHY: Callers must treat this as retryable and assume no state changed.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "Billing service temporarily unavailable. Please try again."
    retryable = True
