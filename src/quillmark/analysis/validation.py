"""Request validation performed before any analysis work is scheduled."""

from __future__ import annotations

from .errors import ErrorCode, ValidationError
from .models import AnalysisOptions

__all__ = ["MAX_FULL_CHARACTERS", "MAX_REALTIME_CHARACTERS", "validate_request"]

MAX_FULL_CHARACTERS = 10_000
MAX_REALTIME_CHARACTERS = 5_000


def validate_request(
    text: str,
    options: AnalysisOptions,
    *,
    realtime: bool = False,
    max_characters: int | None = None,
) -> None:
    """Raise :class:`ValidationError` when ``text``/``options`` cannot be analyzed."""

    if not isinstance(text, str) or not text.strip():
        raise ValidationError(
            error_code=ErrorCode.EMPTY_CONTENT,
            message="Content is required and must be a non-empty string",
        )
    limit = max_characters
    if limit is None:
        limit = MAX_REALTIME_CHARACTERS if realtime else MAX_FULL_CHARACTERS
    if len(text) > limit:
        raise ValidationError(
            error_code=ErrorCode.CONTENT_TOO_LONG,
            message=f"Content exceeds maximum length of {limit:,} characters",
            details={"length": len(text), "limit": limit},
        )
    if not options.any_enabled:
        raise ValidationError(
            error_code=ErrorCode.NO_ANALYSIS_KIND,
            message="At least one analysis type must be enabled",
        )
