"""Locate suggestion text in a document that may have changed since analysis.

Suggestions arrive with offsets computed against an older version of the
text, so offsets are treated as hints. Resolution order:

1. **Fast path**: if the stated range has the right width and the live slice
   matches exactly, use it.
2. **Full scan**: walk the document's text leaves in order, joining adjacent
   leaves (formatting runs of one block) into contiguous segments, and collect
   every occurrence. Short needles must sit on word boundaries. Every candidate
   is re-read from the live document before it counts.
3. **Disambiguation**: the occurrence closest to the stated start wins; ties go
   to the one found first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator

from ..analysis.models import Suggestion
from ..documents.ranges import AnchorResult
from ..documents.rich_text import HostDocument

__all__ = ["AnchorConfig", "AnchorResolver"]

LOGGER = logging.getLogger(__name__)

_WORD_CHAR = re.compile(r"\w")


@dataclass(slots=True, frozen=True)
class AnchorConfig:
    """Tuning for :class:`AnchorResolver`.

    Attributes:
        short_text_threshold: Needles at or below this length require word
            boundaries on both sides.
        max_distance: When set, matches farther than this from the stated
            start offset are ignored.
    """

    short_text_threshold: int = 3
    max_distance: int | None = None


@dataclass(slots=True, frozen=True)
class _Segment:
    offset: int
    text: str


class AnchorResolver:
    """Maps suggestions onto absolute ranges in the live document."""

    def __init__(self, config: AnchorConfig | None = None) -> None:
        self._config = config or AnchorConfig()

    @property
    def config(self) -> AnchorConfig:
        return self._config

    def resolve(self, document: HostDocument, suggestion: Suggestion) -> AnchorResult:
        needle = suggestion.original_text
        if not needle or not needle.strip():
            return AnchorResult.not_found()

        fast = self._fast_path(document, suggestion)
        if fast is not None:
            return fast

        starts = self.find_occurrences(document, needle)
        if not starts:
            LOGGER.debug("Suggestion %s: %r not found", suggestion.id, needle)
            return AnchorResult.not_found()

        target = suggestion.start_offset
        best = min(starts, key=lambda start: abs(start - target))
        max_distance = self._config.max_distance
        if max_distance is not None and abs(best - target) > max_distance:
            LOGGER.debug(
                "Suggestion %s: closest match at %d is beyond %d of %d",
                suggestion.id,
                best,
                max_distance,
                target,
            )
            return AnchorResult.not_found(candidates=len(starts))
        if len(starts) > 1:
            LOGGER.debug(
                "Suggestion %s: %d candidates, chose %d (stated %d)",
                suggestion.id,
                len(starts),
                best,
                target,
            )
        return AnchorResult.resolved(best, best + len(needle), candidates=len(starts))

    def find_occurrences(self, document: HostDocument, needle: str) -> list[int]:
        """Return verified absolute start offsets of ``needle`` in document order."""

        if not needle:
            return []
        short = len(needle) <= self._config.short_text_threshold
        starts: list[int] = []
        for segment in self._segments(document):
            index = segment.text.find(needle)
            while index != -1:
                if not short or self._on_word_boundary(segment.text, index, len(needle)):
                    start = segment.offset + index
                    if self._verify(document, start, needle):
                        starts.append(start)
                index = segment.text.find(needle, index + 1)
        return starts

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _fast_path(self, document: HostDocument, suggestion: Suggestion) -> AnchorResult | None:
        start, end = suggestion.start_offset, suggestion.end_offset
        if end - start != len(suggestion.original_text):
            return None
        if not self._verify(document, start, suggestion.original_text):
            return None
        return AnchorResult.resolved(start, end, fast_path=True)

    @staticmethod
    def _segments(document: HostDocument) -> Iterator[_Segment]:
        offset: int | None = None
        parts: list[str] = []
        end = 0
        for leaf in document.iter_text_leaves():
            if offset is not None and leaf.offset == end:
                parts.append(leaf.text)
            else:
                if offset is not None:
                    yield _Segment(offset, "".join(parts))
                offset = leaf.offset
                parts = [leaf.text]
            end = leaf.offset + len(leaf.text)
        if offset is not None:
            yield _Segment(offset, "".join(parts))

    @staticmethod
    def _on_word_boundary(text: str, index: int, length: int) -> bool:
        before = text[index - 1] if index > 0 else ""
        after_index = index + length
        after = text[after_index] if after_index < len(text) else ""
        return not _WORD_CHAR.match(before) and not _WORD_CHAR.match(after)

    @staticmethod
    def _verify(document: HostDocument, start: int, needle: str) -> bool:
        end = start + len(needle)
        if start < 0 or end > document.size:
            return False
        return document.text_between(start, end) == needle
