"""Tolerant parsing of analysis backend replies.

Language-model replies are frequently wrapped in markdown fences, carry
trailing commas, or are truncated mid-object. Parsing therefore runs in
stages, each more forgiving than the last:

1. clean the raw text (strip fences, trim to the outermost braces, drop
   trailing commas) and parse it strictly;
2. extract the individual suggestion arrays with a pattern match;
3. repair the object by closing unbalanced braces or truncating at the last
   comma;
4. give up and return an empty result.

Individual entries are validated against a JSON schema; invalid entries are
dropped with a warning rather than failing the whole reply.
"""

from __future__ import annotations

import json
import math
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from jsonschema import Draft202012Validator

from .errors import ParseError
from .models import (
    READABILITY_METRICS,
    STYLE_CATEGORIES,
    AnalysisResult,
    GrammarSuggestion,
    ReadabilityMetrics,
    ReadabilitySuggestion,
    Severity,
    StyleSuggestion,
    Suggestion,
)

__all__ = ["ParseConfig", "ParseMetadata", "ParsedResponse", "parse_analysis_response"]

LOGGER = logging.getLogger(__name__)

_ARRAY_KEYS: tuple[str, ...] = ("grammarSuggestions", "styleSuggestions", "readabilitySuggestions")

_SUGGESTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "originalText", "suggestedText"],
    "properties": {
        "id": {"type": ["string", "integer"], "minLength": 1},
        "originalText": {"type": "string", "minLength": 1},
        "suggestedText": {"type": "string", "minLength": 1},
        "confidence": {"type": "number"},
    },
}
_SUGGESTION_VALIDATOR = Draft202012Validator(_SUGGESTION_SCHEMA)

_FENCE_OPEN = re.compile(r"```json\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*$")
_TRAILING_COMMA_OBJECT = re.compile(r",\s*}")
_TRAILING_COMMA_ARRAY = re.compile(r",\s*]")


@dataclass(slots=True, frozen=True)
class ParseConfig:
    """Knobs for :func:`parse_analysis_response`.

    Attributes:
        max_suggestions_per_category: Entries kept per kind after validation.
        enable_fallback_parsing: When ``False`` a strict parse failure raises
            :class:`ParseError` instead of running the fallback stages.
        min_confidence: Entries below this confidence are discarded.
    """

    max_suggestions_per_category: int = 50
    enable_fallback_parsing: bool = True
    min_confidence: float = 0.1


@dataclass(slots=True)
class ParseMetadata:
    original_length: int = 0
    cleaned_length: int = 0
    parse_attempts: int = 0
    warnings: list[str] = field(default_factory=list)
    fallbacks_used: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_length": self.original_length,
            "cleaned_length": self.cleaned_length,
            "parse_attempts": self.parse_attempts,
            "warnings": list(self.warnings),
            "fallbacks_used": list(self.fallbacks_used),
        }


@dataclass(slots=True)
class ParsedResponse:
    grammar_suggestions: list[GrammarSuggestion] = field(default_factory=list)
    style_suggestions: list[StyleSuggestion] = field(default_factory=list)
    readability_suggestions: list[ReadabilitySuggestion] = field(default_factory=list)
    readability_metrics: ReadabilityMetrics = field(default_factory=ReadabilityMetrics)
    metadata: ParseMetadata = field(default_factory=ParseMetadata)

    def to_result(self, content_hash: str, *, processing_time_ms: float = 0.0) -> AnalysisResult:
        return AnalysisResult(
            content_hash=content_hash,
            grammar_suggestions=tuple(self.grammar_suggestions),
            style_suggestions=tuple(self.style_suggestions),
            readability_suggestions=tuple(self.readability_suggestions),
            readability_metrics=self.readability_metrics,
            processing_time_ms=processing_time_ms,
            parse_warnings=tuple(self.metadata.warnings),
        )


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

def parse_analysis_response(raw: str, config: ParseConfig | None = None) -> ParsedResponse:
    """Parse a backend reply into validated suggestions.

    Never raises unless fallback parsing is disabled; a reply that cannot be
    salvaged yields an empty response with warnings explaining why.
    """

    config = config or ParseConfig()
    metadata = ParseMetadata(original_length=len(raw or ""))
    cleaned = clean_response(raw or "")
    metadata.cleaned_length = len(cleaned)
    metadata.parse_attempts += 1

    data = _loads_object(cleaned)
    if data is None:
        if not config.enable_fallback_parsing:
            raise ParseError(message="JSON parsing failed and fallback parsing is disabled")
        LOGGER.debug("Strict parse failed for %d character reply; trying fallbacks", len(cleaned))
        data = _run_fallbacks(cleaned, metadata)
        metadata.parse_attempts += 1

    response = ParsedResponse(metadata=metadata)
    response.grammar_suggestions = _validate_entries(data, "grammarSuggestions", "Grammar", _grammar, config, metadata)
    response.style_suggestions = _validate_entries(data, "styleSuggestions", "Style", _style, config, metadata)
    response.readability_suggestions = _validate_entries(
        data, "readabilitySuggestions", "Readability", _readability, config, metadata
    )
    response.readability_metrics = _metrics(data.get("readabilityMetrics"), metadata)
    if metadata.warnings:
        LOGGER.debug("Parsed reply with %d warning(s): %s", len(metadata.warnings), metadata.warnings)
    return response


def clean_response(raw: str) -> str:
    """Strip markdown fences and surrounding prose, and drop trailing commas."""

    cleaned = raw.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and end > start:
        cleaned = cleaned[start : end + 1]
    cleaned = _TRAILING_COMMA_OBJECT.sub("}", cleaned)
    cleaned = _TRAILING_COMMA_ARRAY.sub("]", cleaned)
    return cleaned


# -----------------------------------------------------------------------------
# Fallback stages
# -----------------------------------------------------------------------------

def _run_fallbacks(cleaned: str, metadata: ParseMetadata) -> dict[str, Any]:
    stages: Sequence[tuple[str, Callable[[str], dict[str, Any] | None]]] = (
        ("array_extraction", _extract_arrays),
        ("partial_json", _repair_partial),
    )
    for name, stage in stages:
        data = stage(cleaned)
        if data is not None:
            metadata.fallbacks_used.append(name)
            metadata.warnings.append(f"Used fallback parsing stage: {name}")
            return data
    metadata.fallbacks_used.append("empty_result")
    metadata.warnings.append("All fallback parsing stages failed; returning an empty result")
    LOGGER.warning("Analysis reply could not be parsed; returning no suggestions")
    return {}


def _extract_arrays(cleaned: str) -> dict[str, Any] | None:
    data: dict[str, Any] = {}
    for key in _ARRAY_KEYS:
        match = re.search(rf'"{key}"\s*:\s*(\[[^\]]*\])', cleaned)
        if match is None:
            continue
        try:
            value = json.loads(match.group(1))
        except json.JSONDecodeError:
            LOGGER.debug("Failed to parse extracted %s array", key)
            continue
        if isinstance(value, list):
            data[key] = value
    return data or None


def _repair_partial(cleaned: str) -> dict[str, Any] | None:
    missing = cleaned.count("{") - cleaned.count("}")
    repaired = cleaned + "}" * max(0, missing)
    data = _loads_object(repaired)
    if data is not None:
        return data
    last_comma = repaired.rfind(",")
    if last_comma > 0:
        return _loads_object(repaired[:last_comma] + "}")
    return None


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


# -----------------------------------------------------------------------------
# Entry validation
# -----------------------------------------------------------------------------

def _validate_entries(
    data: Mapping[str, Any],
    key: str,
    label: str,
    build: Callable[[Mapping[str, Any], dict[str, Any]], Suggestion],
    config: ParseConfig,
    metadata: ParseMetadata,
) -> list[Any]:
    entries = data.get(key)
    if not isinstance(entries, list):
        metadata.warnings.append(f"{label} suggestions not found or invalid format")
        return []
    accepted: list[Any] = []
    for entry in entries:
        if not isinstance(entry, Mapping) or not _SUGGESTION_VALIDATOR.is_valid(entry):
            metadata.warnings.append(f"{label} suggestion missing required fields")
            continue
        raw_confidence = entry.get("confidence")
        confidence = float(raw_confidence) if _is_finite_number(raw_confidence) else 0.5
        if confidence < config.min_confidence:
            metadata.warnings.append(f"{label} suggestion confidence too low: {confidence}")
            continue
        accepted.append(build(entry, _common_fields(entry, label, confidence)))
        if len(accepted) >= config.max_suggestions_per_category:
            break
    return accepted


def _common_fields(entry: Mapping[str, Any], label: str, confidence: float) -> dict[str, Any]:
    start = max(0, _as_int(entry.get("startOffset"), 0))
    end = max(start, _as_int(entry.get("endOffset"), start))
    return {
        "id": str(entry["id"]),
        "original_text": str(entry["originalText"]),
        "suggested_text": str(entry["suggestedText"]),
        "start_offset": start,
        "end_offset": end,
        "severity": Severity.coerce(entry.get("severity")),
        "explanation": str(entry.get("explanation") or f"{label} improvement suggested"),
        "category": str(entry.get("category") or "general"),
        "confidence": confidence,
    }


def _grammar(entry: Mapping[str, Any], common: dict[str, Any]) -> GrammarSuggestion:
    return GrammarSuggestion(
        grammar_rule=str(entry.get("grammarRule") or "General Grammar"),
        esl_explanation=str(entry.get("eslExplanation") or "") or None,
        **common,
    )


def _style(entry: Mapping[str, Any], common: dict[str, Any]) -> StyleSuggestion:
    category = str(entry.get("styleCategory") or "").strip().lower()
    return StyleSuggestion(
        style_category=category if category in STYLE_CATEGORIES else "clarity",
        impact=Severity.coerce(entry.get("impact")),
        **common,
    )


def _readability(entry: Mapping[str, Any], common: dict[str, Any]) -> ReadabilitySuggestion:
    metric = str(entry.get("metric") or "").strip().lower()
    return ReadabilitySuggestion(
        metric=metric if metric in READABILITY_METRICS else "sentence-length",
        target_level=str(entry.get("targetLevel") or "Improved readability"),
        **common,
    )


_METRIC_FIELDS: Mapping[str, str] = {
    "fleschScore": "flesch_score",
    "gradeLevel": "grade_level",
    "avgSentenceLength": "avg_sentence_length",
    "avgSyllablesPerWord": "avg_syllables_per_word",
    "wordCount": "word_count",
    "sentenceCount": "sentence_count",
    "complexWordsPercent": "complex_words_percent",
}


def _metrics(raw: Any, metadata: ParseMetadata) -> ReadabilityMetrics:
    if not isinstance(raw, Mapping):
        metadata.warnings.append("Readability metrics missing; using defaults")
        return ReadabilityMetrics()
    values: dict[str, Any] = {}
    for source, target in _METRIC_FIELDS.items():
        value = raw.get(source)
        if _is_finite_number(value):
            values[target] = value
        elif value is not None:
            metadata.warnings.append(f"Readability metric {source} is not a finite number")
    return ReadabilityMetrics(**values)


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False
