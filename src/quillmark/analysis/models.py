"""Data structures for analysis requests, suggestions and results."""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Iterator, Mapping

from ..documents.ranges import TextRange

__all__ = [
    "AnalysisOptions",
    "AnalysisRequest",
    "AnalysisResult",
    "GrammarSuggestion",
    "ReadabilityMetrics",
    "ReadabilitySuggestion",
    "Severity",
    "StyleSuggestion",
    "Suggestion",
    "SuggestionKind",
    "suggestion_from_dict",
]


class SuggestionKind(str, Enum):
    GRAMMAR = "grammar"
    STYLE = "style"
    READABILITY = "readability"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def coerce(cls, value: Any, default: "Severity" | None = None) -> "Severity":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default or cls.MEDIUM


STYLE_CATEGORIES: tuple[str, ...] = ("clarity", "conciseness", "tone", "formality", "word-choice")
READABILITY_METRICS: tuple[str, ...] = (
    "sentence-length",
    "word-complexity",
    "paragraph-structure",
    "transitions",
)
AUDIENCE_LEVELS: tuple[str, ...] = ("beginner", "intermediate", "advanced")


# -----------------------------------------------------------------------------
# Options / requests
# -----------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class AnalysisOptions:
    """Which analysis kinds to run and how to pitch the feedback."""

    grammar: bool = True
    style: bool = True
    readability: bool = True
    audience_level: str | None = None
    document_type: str | None = None

    def __post_init__(self) -> None:
        level = self.audience_level
        if level is not None and level not in AUDIENCE_LEVELS:
            raise ValueError(f"Unsupported audience level: {level!r}")

    @property
    def any_enabled(self) -> bool:
        return self.grammar or self.style or self.readability

    def enabled_kinds(self) -> tuple[SuggestionKind, ...]:
        kinds: list[SuggestionKind] = []
        if self.grammar:
            kinds.append(SuggestionKind.GRAMMAR)
        if self.style:
            kinds.append(SuggestionKind.STYLE)
        if self.readability:
            kinds.append(SuggestionKind.READABILITY)
        return tuple(kinds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "grammar": self.grammar,
            "style": self.style,
            "readability": self.readability,
            "audience_level": self.audience_level,
            "document_type": self.document_type,
        }

    @classmethod
    def from_value(cls, value: Any) -> "AnalysisOptions":
        if isinstance(value, AnalysisOptions):
            return value
        if value is None:
            return cls()
        if not isinstance(value, Mapping):
            raise TypeError("AnalysisOptions must be built from a mapping")
        return cls(
            grammar=bool(value.get("grammar", True)),
            style=bool(value.get("style", True)),
            readability=bool(value.get("readability", True)),
            audience_level=value.get("audience_level") or value.get("audienceLevel"),
            document_type=value.get("document_type") or value.get("documentType"),
        )


@dataclass(slots=True, frozen=True)
class AnalysisRequest:
    """Payload handed to an analysis backend."""

    text: str
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    realtime: bool = False


# -----------------------------------------------------------------------------
# Suggestions
# -----------------------------------------------------------------------------

@dataclass(slots=True, frozen=True, kw_only=True)
class Suggestion:
    """One proposed edit produced by analysis.

    ``start_offset``/``end_offset`` describe where the backend *thought* the text
    was. They are advisory only and must be re-verified against the live
    document before use.
    """

    id: str
    kind: SuggestionKind
    original_text: str
    suggested_text: str
    start_offset: int = 0
    end_offset: int = 0
    severity: Severity = Severity.MEDIUM
    explanation: str = ""
    category: str = ""
    confidence: float = 0.5

    def __post_init__(self) -> None:
        confidence = min(1.0, max(0.0, float(self.confidence)))
        object.__setattr__(self, "confidence", confidence)
        start = max(0, int(self.start_offset))
        end = max(start, int(self.end_offset))
        object.__setattr__(self, "start_offset", start)
        object.__setattr__(self, "end_offset", end)

    @property
    def approximate_range(self) -> TextRange:
        return TextRange(self.start_offset, self.end_offset)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "original_text": self.original_text,
            "suggested_text": self.suggested_text,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "severity": self.severity.value,
            "explanation": self.explanation,
            "category": self.category,
            "confidence": self.confidence,
        }

    @staticmethod
    def _base_kwargs(payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "id": str(payload["id"]),
            "original_text": str(payload["original_text"]),
            "suggested_text": str(payload["suggested_text"]),
            "start_offset": int(payload.get("start_offset", 0) or 0),
            "end_offset": int(payload.get("end_offset", 0) or 0),
            "severity": Severity.coerce(payload.get("severity")),
            "explanation": str(payload.get("explanation", "") or ""),
            "category": str(payload.get("category", "") or ""),
            "confidence": float(payload.get("confidence", 0.5)),
        }


@dataclass(slots=True, frozen=True, kw_only=True)
class GrammarSuggestion(Suggestion):
    kind: SuggestionKind = field(default=SuggestionKind.GRAMMAR, init=False)
    grammar_rule: str = ""
    esl_explanation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = Suggestion.to_dict(self)
        payload["grammar_rule"] = self.grammar_rule
        if self.esl_explanation:
            payload["esl_explanation"] = self.esl_explanation
        return payload


@dataclass(slots=True, frozen=True, kw_only=True)
class StyleSuggestion(Suggestion):
    kind: SuggestionKind = field(default=SuggestionKind.STYLE, init=False)
    style_category: str = "clarity"
    impact: Severity = Severity.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        payload = Suggestion.to_dict(self)
        payload["style_category"] = self.style_category
        payload["impact"] = self.impact.value
        return payload


@dataclass(slots=True, frozen=True, kw_only=True)
class ReadabilitySuggestion(Suggestion):
    kind: SuggestionKind = field(default=SuggestionKind.READABILITY, init=False)
    metric: str = "sentence-length"
    target_level: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = Suggestion.to_dict(self)
        payload["metric"] = self.metric
        payload["target_level"] = self.target_level
        return payload


def suggestion_from_dict(payload: Mapping[str, Any]) -> Suggestion:
    """Rebuild a suggestion from :meth:`Suggestion.to_dict` output."""

    kind = SuggestionKind(payload.get("kind", SuggestionKind.GRAMMAR.value))
    kwargs = Suggestion._base_kwargs(payload)
    if kind is SuggestionKind.GRAMMAR:
        return GrammarSuggestion(
            grammar_rule=str(payload.get("grammar_rule", "") or ""),
            esl_explanation=payload.get("esl_explanation"),
            **kwargs,
        )
    if kind is SuggestionKind.STYLE:
        return StyleSuggestion(
            style_category=str(payload.get("style_category", "clarity")),
            impact=Severity.coerce(payload.get("impact")),
            **kwargs,
        )
    return ReadabilitySuggestion(
        metric=str(payload.get("metric", "sentence-length")),
        target_level=str(payload.get("target_level", "") or ""),
        **kwargs,
    )


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class ReadabilityMetrics:
    """Document-level readability scores."""

    flesch_score: float = 50.0
    grade_level: float = 12.0
    avg_sentence_length: float = 15.0
    avg_syllables_per_word: float = 1.5
    word_count: int = 0
    sentence_count: int = 0
    complex_words_percent: float = 15.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "flesch_score", _clamp(self.flesch_score, 0.0, 100.0))
        object.__setattr__(self, "grade_level", _clamp(self.grade_level, 0.0, 20.0))
        object.__setattr__(self, "avg_sentence_length", max(0.0, float(self.avg_sentence_length)))
        object.__setattr__(self, "avg_syllables_per_word", max(1.0, float(self.avg_syllables_per_word)))
        object.__setattr__(self, "word_count", max(0, int(self.word_count)))
        object.__setattr__(self, "sentence_count", max(0, int(self.sentence_count)))
        object.__setattr__(self, "complex_words_percent", _clamp(self.complex_words_percent, 0.0, 100.0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "flesch_score": self.flesch_score,
            "grade_level": self.grade_level,
            "avg_sentence_length": self.avg_sentence_length,
            "avg_syllables_per_word": self.avg_syllables_per_word,
            "word_count": self.word_count,
            "sentence_count": self.sentence_count,
            "complex_words_percent": self.complex_words_percent,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "ReadabilityMetrics":
        if not payload:
            return cls()
        defaults = cls()
        values: dict[str, Any] = {}
        for name in defaults.to_dict():
            raw = payload.get(name)
            if isinstance(raw, (int, float)) and not isinstance(raw, bool) and math.isfinite(raw):
                values[name] = raw
        return cls(**values)


@dataclass(slots=True, frozen=True)
class AnalysisResult:
    """A complete, validated annotation set for one piece of text."""

    content_hash: str
    grammar_suggestions: tuple[GrammarSuggestion, ...] = ()
    style_suggestions: tuple[StyleSuggestion, ...] = ()
    readability_suggestions: tuple[ReadabilitySuggestion, ...] = ()
    readability_metrics: ReadabilityMetrics = field(default_factory=ReadabilityMetrics)
    analysis_id: str = field(default_factory=lambda: f"analysis_{uuid.uuid4().hex[:12]}")
    processing_time_ms: float = 0.0
    created_at: float = field(default_factory=time.time)
    parse_warnings: tuple[str, ...] = ()

    _KIND_FIELDS: ClassVar[dict[SuggestionKind, str]] = {
        SuggestionKind.GRAMMAR: "grammar_suggestions",
        SuggestionKind.STYLE: "style_suggestions",
        SuggestionKind.READABILITY: "readability_suggestions",
    }

    def all_suggestions(self) -> tuple[Suggestion, ...]:
        return (*self.grammar_suggestions, *self.style_suggestions, *self.readability_suggestions)

    def suggestions_of(self, kind: SuggestionKind) -> tuple[Suggestion, ...]:
        return tuple(getattr(self, self._KIND_FIELDS[kind]))

    def __iter__(self) -> Iterator[Suggestion]:
        return iter(self.all_suggestions())

    @property
    def total_suggestions(self) -> int:
        return len(self.grammar_suggestions) + len(self.style_suggestions) + len(self.readability_suggestions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "content_hash": self.content_hash,
            "grammar_suggestions": [item.to_dict() for item in self.grammar_suggestions],
            "style_suggestions": [item.to_dict() for item in self.style_suggestions],
            "readability_suggestions": [item.to_dict() for item in self.readability_suggestions],
            "readability_metrics": self.readability_metrics.to_dict(),
            "processing_time_ms": self.processing_time_ms,
            "created_at": self.created_at,
            "parse_warnings": list(self.parse_warnings),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AnalysisResult":
        return cls(
            analysis_id=str(payload.get("analysis_id") or f"analysis_{uuid.uuid4().hex[:12]}"),
            content_hash=str(payload.get("content_hash", "")),
            grammar_suggestions=_suggestions(payload.get("grammar_suggestions"), GrammarSuggestion),
            style_suggestions=_suggestions(payload.get("style_suggestions"), StyleSuggestion),
            readability_suggestions=_suggestions(payload.get("readability_suggestions"), ReadabilitySuggestion),
            readability_metrics=ReadabilityMetrics.from_dict(payload.get("readability_metrics")),
            processing_time_ms=float(payload.get("processing_time_ms", 0.0) or 0.0),
            created_at=float(payload.get("created_at", 0.0) or 0.0),
            parse_warnings=tuple(str(item) for item in payload.get("parse_warnings") or ()),
        )


def _suggestions(raw: Any, expected: type[Suggestion]) -> tuple[Any, ...]:
    if not raw:
        return ()
    items = []
    for entry in raw:
        suggestion = suggestion_from_dict(entry)
        if isinstance(suggestion, expected):
            items.append(suggestion)
    return tuple(items)


def _clamp(value: Any, lower: float, upper: float) -> float:
    return max(lower, min(upper, float(value)))
