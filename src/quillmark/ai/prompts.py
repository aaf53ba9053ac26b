"""Prompt construction for the analysis backend."""

from __future__ import annotations

import json

from ..analysis.models import AnalysisOptions

__all__ = ["build_messages", "system_prompt", "user_prompt"]

_AUDIENCE_HINTS = {
    "beginner": "The writer is learning English; explain corrections simply and fill eslExplanation.",
    "intermediate": "The writer is comfortable with English; keep explanations brief.",
    "advanced": "The writer is fluent; only flag clear problems and keep explanations terse.",
}

_SHAPES = {
    "grammarSuggestions": {
        "id": "g1",
        "severity": "low|medium|high",
        "startOffset": 0,
        "endOffset": 0,
        "originalText": "exact text from the input",
        "suggestedText": "replacement",
        "explanation": "why",
        "category": "subject-verb agreement",
        "confidence": 0.9,
        "grammarRule": "rule name",
        "eslExplanation": "optional learner-friendly note",
    },
    "styleSuggestions": {
        "id": "s1",
        "severity": "low|medium|high",
        "startOffset": 0,
        "endOffset": 0,
        "originalText": "exact text from the input",
        "suggestedText": "replacement",
        "explanation": "why",
        "category": "style",
        "confidence": 0.8,
        "styleCategory": "clarity|conciseness|tone|formality|word-choice",
        "impact": "low|medium|high",
    },
    "readabilitySuggestions": {
        "id": "r1",
        "severity": "low|medium|high",
        "startOffset": 0,
        "endOffset": 0,
        "originalText": "exact text from the input",
        "suggestedText": "replacement",
        "explanation": "why",
        "category": "readability",
        "confidence": 0.7,
        "metric": "sentence-length|word-complexity|paragraph-structure|transitions",
        "targetLevel": "grade 8",
    },
}


def system_prompt(options: AnalysisOptions, *, realtime: bool = False) -> str:
    wanted = []
    if options.grammar:
        wanted.append("grammar")
    if options.style:
        wanted.append("style")
    if options.readability:
        wanted.append("readability")
    shape = {
        "grammarSuggestions": [_SHAPES["grammarSuggestions"]] if options.grammar else [],
        "styleSuggestions": [_SHAPES["styleSuggestions"]] if options.style else [],
        "readabilitySuggestions": [_SHAPES["readabilitySuggestions"]] if options.readability else [],
        "readabilityMetrics": {
            "fleschScore": 60,
            "gradeLevel": 9,
            "avgSentenceLength": 15,
            "avgSyllablesPerWord": 1.5,
            "wordCount": 120,
            "sentenceCount": 8,
            "complexWordsPercent": 12,
        },
    }
    lines = [
        "You are a writing assistant that reviews prose.",
        f"Check the text for {', '.join(wanted)} issues.",
        "originalText must be copied verbatim from the input so it can be located again.",
        "Offsets are zero-based character positions in the input.",
    ]
    if realtime:
        lines.append("Only report the most important issues; be brief.")
    if options.audience_level in _AUDIENCE_HINTS:
        lines.append(_AUDIENCE_HINTS[options.audience_level])
    if options.document_type:
        lines.append(f"The text is a {options.document_type}; judge tone and formality accordingly.")
    lines.append("Respond with JSON only, matching this shape:")
    lines.append(json.dumps(shape, indent=2))
    return "\n".join(lines)


def user_prompt(text: str) -> str:
    return f"Analyze the following text:\n\n{text}"


def build_messages(text: str, options: AnalysisOptions, *, realtime: bool = False) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt(options, realtime=realtime)},
        {"role": "user", "content": user_prompt(text)},
    ]
