"""Error taxonomy shared by the analysis pipeline and the editor overlay.

Every error carries a machine-readable ``error_code``, a log-friendly
``message`` and a short user-facing string produced by :meth:`user_message`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes surfaced to callers and telemetry."""

    # Input errors
    EMPTY_CONTENT = "empty_content"
    CONTENT_TOO_LONG = "content_too_long"
    NO_ANALYSIS_KIND = "no_analysis_kind"

    # Quota errors
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"

    # Backend errors
    BACKEND_FAILURE = "backend_failure"

    # Response errors
    PARSE_FAILURE = "parse_failure"

    # Overlay errors
    ANCHOR_LOST = "anchor_lost"

    # Storage errors
    STORAGE_UNAVAILABLE = "storage_unavailable"


class BackendCategory:
    """Failure categories reported by analysis backends."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    BAD_REQUEST = "bad_request"
    SERVER = "server"
    UNKNOWN = "unknown"

    RETRYABLE: ClassVar[frozenset[str]] = frozenset({"timeout", "network", "server"})


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass(eq=False)
class QuillmarkError(Exception):
    """Base exception for every failure the subsystem reports.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Developer-facing description, safe to log.
        details: Additional structured context.
        retry_after: Seconds the caller should wait before retrying, when known.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    retry_after: int | None = None

    default_user_message: ClassVar[str] = "Something went wrong while checking your writing."

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def user_message(self) -> str:
        """Return a short message suitable for display in the editor."""

        return self.default_user_message

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Concrete Errors
# -----------------------------------------------------------------------------

@dataclass(eq=False)
class ValidationError(QuillmarkError):
    """Input rejected before any work was scheduled."""

    error_code: str = field(default=ErrorCode.EMPTY_CONTENT)
    message: str = field(default="Content is required for analysis")

    def user_message(self) -> str:
        return self.message


@dataclass(eq=False)
class QuotaExceeded(QuillmarkError):
    """The identity has used up its allowance for the current window."""

    error_code: str = field(default=ErrorCode.RATE_LIMIT_EXCEEDED)
    message: str = field(default="Rate limit exceeded")

    def user_message(self) -> str:
        if self.retry_after:
            return f"Too many requests. Please wait {self.retry_after} seconds before trying again."
        return "Too many requests. Please wait a moment before trying again."


@dataclass(eq=False)
class BackendError(QuillmarkError):
    """The analysis backend failed to produce a response."""

    error_code: str = field(default=ErrorCode.BACKEND_FAILURE)
    message: str = field(default="Analysis backend failed")
    category: str = field(default=BackendCategory.UNKNOWN)

    _USER_MESSAGES: ClassVar[dict[str, str]] = {
        BackendCategory.TIMEOUT: "The request timed out. Please try again.",
        BackendCategory.NETWORK: "Network connection issue. Please check your connection and try again.",
        BackendCategory.AUTH: "The analysis service rejected our credentials.",
        BackendCategory.RATE_LIMIT: "The analysis service is busy. Please try again shortly.",
        BackendCategory.BAD_REQUEST: "The analysis service could not process this text.",
        BackendCategory.SERVER: "The analysis service is temporarily unavailable. Please try again.",
    }

    @property
    def is_retryable(self) -> bool:
        return self.category in BackendCategory.RETRYABLE

    def user_message(self) -> str:
        return self._USER_MESSAGES.get(self.category, self.default_user_message)

    def to_dict(self) -> dict[str, Any]:
        result = QuillmarkError.to_dict(self)
        result["category"] = self.category
        return result


@dataclass(eq=False)
class ParseError(QuillmarkError):
    """A backend response could not be interpreted at all."""

    error_code: str = field(default=ErrorCode.PARSE_FAILURE)
    message: str = field(default="Analysis response could not be parsed")
    default_user_message: ClassVar[str] = "Unable to process the analysis results. Please try again."


@dataclass(eq=False)
class AnchorLost(QuillmarkError):
    """A suggestion's original text no longer exists in the document."""

    error_code: str = field(default=ErrorCode.ANCHOR_LOST)
    message: str = field(default="Suggestion text is no longer present")
    suggestion_id: str | None = None


@dataclass(eq=False)
class StorageError(QuillmarkError):
    """The durable key-value store is unreachable or rejected an operation."""

    error_code: str = field(default=ErrorCode.STORAGE_UNAVAILABLE)
    message: str = field(default="Durable store unavailable")


__all__ = [
    "AnchorLost",
    "BackendCategory",
    "BackendError",
    "ErrorCode",
    "ParseError",
    "QuillmarkError",
    "QuotaExceeded",
    "StorageError",
    "ValidationError",
]
