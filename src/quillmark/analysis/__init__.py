"""Analysis data model, hashing, validation and reply parsing."""

from .errors import (
    AnchorLost,
    BackendCategory,
    BackendError,
    ErrorCode,
    ParseError,
    QuillmarkError,
    QuotaExceeded,
    StorageError,
    ValidationError,
)
from .hashing import content_hash
from .models import (
    AnalysisOptions,
    AnalysisRequest,
    AnalysisResult,
    GrammarSuggestion,
    ReadabilityMetrics,
    ReadabilitySuggestion,
    Severity,
    StyleSuggestion,
    Suggestion,
    SuggestionKind,
)
from .parsing import ParseConfig, ParsedResponse, parse_analysis_response
from .validation import validate_request

__all__ = [
    "AnalysisOptions",
    "AnalysisRequest",
    "AnalysisResult",
    "AnchorLost",
    "BackendCategory",
    "BackendError",
    "ErrorCode",
    "GrammarSuggestion",
    "ParseConfig",
    "ParseError",
    "ParsedResponse",
    "QuillmarkError",
    "QuotaExceeded",
    "ReadabilityMetrics",
    "ReadabilitySuggestion",
    "Severity",
    "StorageError",
    "StyleSuggestion",
    "Suggestion",
    "SuggestionKind",
    "ValidationError",
    "content_hash",
    "parse_analysis_response",
    "validate_request",
]
