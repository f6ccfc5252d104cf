"""
Test Buddy - Error Taxonomy
Structured errors for every backing-store, auth and network failure.

Adapters translate their SDK exceptions into ``StoreError`` exactly once, at
the boundary. Everything downstream branches on ``StoreError.kind``.
"""
import asyncio
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Every failure the services can surface."""
    # Authentication
    AUTH_USER_NOT_FOUND = "auth/user-not-found"
    AUTH_WRONG_PASSWORD = "auth/wrong-password"
    AUTH_EMAIL_ALREADY_IN_USE = "auth/email-already-in-use"
    AUTH_WEAK_PASSWORD = "auth/weak-password"
    AUTH_INVALID_EMAIL = "auth/invalid-email"
    AUTH_USER_DISABLED = "auth/user-disabled"
    AUTH_TOO_MANY_REQUESTS = "auth/too-many-requests"

    # Document store
    PERMISSION_DENIED = "permission-denied"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not-found"
    ALREADY_EXISTS = "already-exists"
    RESOURCE_EXHAUSTED = "resource-exhausted"
    FAILED_PRECONDITION = "failed-precondition"
    ABORTED = "aborted"
    OUT_OF_RANGE = "out-of-range"
    UNIMPLEMENTED = "unimplemented"
    INTERNAL = "internal"
    DATA_LOSS = "data-loss"
    UNAUTHENTICATED = "unauthenticated"

    # Transport
    NETWORK = "network-error"
    TIMEOUT = "timeout-error"

    VALIDATION = "validation-error"
    UNKNOWN = "unknown-error"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


RETRYABLE_KINDS = frozenset({
    ErrorKind.UNAVAILABLE,
    ErrorKind.RESOURCE_EXHAUSTED,
    ErrorKind.ABORTED,
    ErrorKind.INTERNAL,
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.AUTH_TOO_MANY_REQUESTS,
})


USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.AUTH_USER_NOT_FOUND: "No account found with this email address.",
    ErrorKind.AUTH_WRONG_PASSWORD: "Incorrect password. Please try again.",
    ErrorKind.AUTH_EMAIL_ALREADY_IN_USE: "An account with this email already exists.",
    ErrorKind.AUTH_WEAK_PASSWORD: "Password is too weak. Please choose a stronger password.",
    ErrorKind.AUTH_INVALID_EMAIL: "Please enter a valid email address.",
    ErrorKind.AUTH_USER_DISABLED: "This account has been disabled. Please contact support.",
    ErrorKind.AUTH_TOO_MANY_REQUESTS: "Too many failed attempts. Please try again later.",
    ErrorKind.PERMISSION_DENIED: "You don't have permission to perform this action.",
    ErrorKind.UNAVAILABLE: "Service temporarily unavailable. Please try again.",
    ErrorKind.NOT_FOUND: "The requested data was not found.",
    ErrorKind.ALREADY_EXISTS: "This item already exists.",
    ErrorKind.UNAUTHENTICATED: "Please sign in to continue.",
    ErrorKind.NETWORK: "Network error. Please check your connection and try again.",
    ErrorKind.TIMEOUT: "Operation timed out. Please try again.",
    ErrorKind.VALIDATION: "Invalid data provided. Please check your input.",
}

DEFAULT_USER_MESSAGE = "An unexpected error occurred. Please try again."


class StoreError(Exception):
    """
    Error raised by every store-facing operation.

    Attributes:
        kind: Closed error kind
        message: Developer-facing message
        cause: Original exception, if any
        context: Diagnostic details (operation label, attempt, ...)
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.kind, DEFAULT_USER_MESSAGE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.kind.value,
            "message": self.user_message,
            "detail": self.message,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"<StoreError {self.kind.value}: {self.message}>"

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> "StoreError":
        """
        Classify an arbitrary exception.

        Errors already in the taxonomy are returned unchanged so callers can
        re-raise the very same object.
        """
        if isinstance(error, StoreError):
            return error
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            kind = ErrorKind.TIMEOUT
        elif isinstance(error, ConnectionError):
            kind = ErrorKind.NETWORK
        else:
            kind = ErrorKind.UNKNOWN
        message = str(error) or type(error).__name__
        return cls(kind, message, cause=error, context=context)


class ValidationError(StoreError):
    """Payload rejected before reaching the store. Never retried."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            ErrorKind.VALIDATION,
            message,
            context={"field": field} if field else None,
        )
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class FeatureNotAvailableError(Exception):
    """The user's plan does not include the requested feature."""

    def __init__(self, feature: str, message: str):
        self.feature = feature
        super().__init__(message)
