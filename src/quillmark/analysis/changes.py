"""Sentence-level change detection between two versions of a text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

__all__ = ["ContentChange", "change_summary", "detect_sentence_changes", "split_sentences"]

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE = re.compile(r"\s+")

SIGNIFICANT_CHANGE_PERCENT = 10.0


@dataclass(slots=True, frozen=True)
class ContentChange:
    has_changes: bool
    changed_sentences: int
    added_sentences: int
    removed_sentences: int
    change_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_changes": self.has_changes,
            "changed_sentences": self.changed_sentences,
            "added_sentences": self.added_sentences,
            "removed_sentences": self.removed_sentences,
            "change_percent": self.change_percent,
        }


def split_sentences(text: str) -> list[str]:
    if not text:
        return []
    return [sentence.strip() for sentence in _SENTENCE_BOUNDARY.split(text) if sentence.strip()]


def _normalize(sentence: str) -> str:
    return _WHITESPACE.sub(" ", sentence.lower()).strip()


def _count_changed(previous: list[str], current: list[str]) -> tuple[int, int]:
    total = max(len(previous), len(current))
    changed = 0
    for index in range(total):
        before = previous[index] if index < len(previous) else ""
        after = current[index] if index < len(current) else ""
        if _normalize(before) != _normalize(after):
            changed += 1
    return changed, total


def detect_sentence_changes(previous: str, current: str) -> bool:
    """Return ``True`` when ``current`` differs enough from ``previous`` to re-analyze.

    Any change in sentence count counts as significant; otherwise more than
    ten percent of the (case and whitespace normalized) sentences must differ.
    """

    if previous == current:
        return False
    before = split_sentences(previous)
    after = split_sentences(current)
    if len(before) != len(after):
        return True
    changed, total = _count_changed(before, after)
    percent = (changed / total) * 100 if total else 0.0
    return percent > SIGNIFICANT_CHANGE_PERCENT


def change_summary(previous: str, current: str) -> ContentChange:
    before = split_sentences(previous)
    after = split_sentences(current)
    changed, total = _count_changed(before, after)
    return ContentChange(
        has_changes=changed > 0,
        changed_sentences=changed,
        added_sentences=max(0, len(after) - len(before)),
        removed_sentences=max(0, len(before) - len(after)),
        change_percent=(changed / total) * 100 if total else 0.0,
    )
