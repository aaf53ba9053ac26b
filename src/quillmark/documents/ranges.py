"""Offset ranges and anchor resolution results."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Iterator


@dataclass(slots=True, frozen=True)
class TextRange(Sequence[int]):
    """Half-open ``[start, end)`` span using absolute document positions."""

    start: int
    end: int

    def __post_init__(self) -> None:
        start = self._coerce_index(self.start, "start")
        end = self._coerce_index(self.end, "end")
        if end < start:
            start, end = end, start
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @staticmethod
    def _coerce_index(value: Any, label: str) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"TextRange {label} must be an integer") from exc
        if number < 0:
            return 0
        return number

    def __len__(self) -> int:
        return 2

    def __getitem__(self, index: int | slice) -> int | tuple[int, ...]:
        if isinstance(index, slice):
            return self.to_tuple()[index]
        if index == 0:
            return self.start
        if index == 1:
            return self.end
        raise IndexError("TextRange index out of range")

    def __iter__(self) -> Iterator[int]:
        yield self.start
        yield self.end

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def is_caret(self) -> bool:
        return self.start == self.end

    def overlaps(self, other: TextRange) -> bool:
        """Return ``True`` when the two spans share at least one position."""

        return self.start < other.end and other.start < self.end

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}


@dataclass(slots=True, frozen=True)
class AnchorResult:
    """Outcome of locating a suggestion in the current document.

    ``range`` is ``None`` when the text could not be found; callers should treat
    that as "drop this suggestion", not as an error.
    """

    range: TextRange | None = None
    candidates: int = 0
    fast_path: bool = False

    @property
    def found(self) -> bool:
        return self.range is not None

    @classmethod
    def resolved(cls, start: int, end: int, *, candidates: int = 1, fast_path: bool = False) -> AnchorResult:
        return cls(range=TextRange(start, end), candidates=candidates, fast_path=fast_path)

    @classmethod
    def not_found(cls, *, candidates: int = 0) -> AnchorResult:
        return cls(range=None, candidates=candidates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "range": self.range.to_dict() if self.range is not None else None,
            "candidates": self.candidates,
            "fast_path": self.fast_path,
        }


__all__ = ["AnchorResult", "TextRange"]
