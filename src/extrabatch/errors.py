"""Error taxonomy for the mutation pipeline.

Remote failures surface from the transport as exceptions and are converted
into an ErrorDetail by map_remote_error(). Policy failures are raised as
PolicyViolation before any network call is made.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from extrabatch.transport import (
    APIError,
    AuthenticationError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    TransportError,
)

RATE_LIMIT_THROTTLE_MS = 60_000
QUOTA_RETRY_AFTER_MS = 3_600_000


class ErrorCode(Enum):
    """Stable error codes reported in ErrorDetail."""

    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SPREADSHEET_NOT_FOUND = "SPREADSHEET_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    AUTH_ERROR = "AUTH_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    UNAVAILABLE = "UNAVAILABLE"
    NETWORK_ERROR = "NETWORK_ERROR"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    EFFECT_SCOPE_EXCEEDED = "EFFECT_SCOPE_EXCEEDED"
    EXPLICIT_RANGE_REQUIRED = "EXPLICIT_RANGE_REQUIRED"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    SNAPSHOT_CREATION_FAILED = "SNAPSHOT_CREATION_FAILED"
    BATCH_SKIPPED = "BATCH_SKIPPED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class ErrorDetail:
    """Structured description of a failed batch."""

    code: ErrorCode
    message: str
    retryable: bool = False
    retry_after_ms: int | None = None
    suggested_fix: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase shape used in tool responses."""
        result: dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.retry_after_ms is not None:
            result["retryAfterMs"] = self.retry_after_ms
        if self.suggested_fix:
            result["suggestedFix"] = self.suggested_fix
        if self.details:
            result["details"] = dict(self.details)
        return result


class PolicyViolation(Exception):
    """Raised when a batch breaks the configured safety policy.

    Always caller-scope and never retryable.
    """

    def __init__(self, detail: ErrorDetail) -> None:
        self.detail = detail
        super().__init__(detail.message)

    @property
    def code(self) -> ErrorCode:
        return self.detail.code


def policy_violation(
    code: ErrorCode,
    message: str,
    suggested_fix: str,
    **details: Any,
) -> PolicyViolation:
    """Build a non-retryable PolicyViolation."""
    return PolicyViolation(
        ErrorDetail(
            code=code,
            message=message,
            retryable=False,
            suggested_fix=suggested_fix,
            details=details,
        )
    )


def map_remote_error(error: BaseException) -> ErrorDetail:
    """Convert an exception raised during a remote call into an ErrorDetail.

    Rate limiting (429) and quota exhaustion are retryable, as are server
    errors and network failures. Other client errors are not.
    """
    if isinstance(error, RateLimitError):
        return ErrorDetail(
            code=ErrorCode.RATE_LIMITED,
            message=(
                "API rate limit exceeded. Rate limiter automatically throttled "
                "for 60 seconds."
            ),
            retryable=True,
            retry_after_ms=RATE_LIMIT_THROTTLE_MS,
            suggested_fix=(
                "Wait a minute and try again. Rate limits have been temporarily "
                "reduced."
            ),
        )

    if isinstance(error, APIError) and _mentions_quota(str(error)):
        return ErrorDetail(
            code=ErrorCode.QUOTA_EXCEEDED,
            message="API quota exceeded",
            retryable=True,
            retry_after_ms=QUOTA_RETRY_AFTER_MS,
            suggested_fix="Wait an hour or request a quota increase",
            details={"status": error.status_code},
        )

    if isinstance(error, PermissionDeniedError):
        return ErrorDetail(
            code=ErrorCode.PERMISSION_DENIED,
            message="Permission denied",
            suggested_fix="Check that you have edit access to the spreadsheet",
        )

    if isinstance(error, AuthenticationError):
        return ErrorDetail(
            code=ErrorCode.AUTH_ERROR,
            message=str(error),
            suggested_fix="Refresh the access token and try again",
        )

    if isinstance(error, NotFoundError):
        return ErrorDetail(
            code=ErrorCode.SPREADSHEET_NOT_FOUND,
            message="Spreadsheet not found",
            suggested_fix="Check the spreadsheet ID",
        )

    if isinstance(error, APIError):
        if error.status_code >= 500:
            return ErrorDetail(
                code=ErrorCode.UNAVAILABLE,
                message=str(error),
                retryable=True,
                suggested_fix="Retry with exponential backoff",
                details={"status": error.status_code},
            )
        return ErrorDetail(
            code=ErrorCode.INVALID_REQUEST,
            message=str(error),
            retryable=False,
            suggested_fix="Fix the request payload; it was rejected by the API",
            details={"status": error.status_code, "body": error.body},
        )

    if isinstance(error, NetworkError):
        return ErrorDetail(
            code=ErrorCode.NETWORK_ERROR,
            message=str(error),
            retryable=True,
            suggested_fix="Check connectivity and retry",
        )

    if isinstance(error, TransportError):
        return ErrorDetail(code=ErrorCode.UNKNOWN_ERROR, message=str(error))

    return ErrorDetail(
        code=ErrorCode.UNKNOWN_ERROR,
        message=str(error) or type(error).__name__,
    )


def _mentions_quota(message: str) -> bool:
    return "quota" in message.lower()
