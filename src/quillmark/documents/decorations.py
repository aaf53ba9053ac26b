"""Inline decorations layered over a :class:`RichTextDocument`."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Iterator, Mapping

from .rich_text import StepMap

__all__ = ["Decoration", "DecorationSet"]


@dataclass(slots=True, frozen=True)
class Decoration:
    """Styling attached to ``[start, end)`` that never changes document text.

    ``spec`` carries arbitrary payload (such as the suggestion id) that survives
    mapping; ``on_click`` is invoked by hosts when the decorated span is
    activated.
    """

    start: int
    end: int
    attrs: Mapping[str, str] = field(default_factory=dict)
    spec: Mapping[str, Any] = field(default_factory=dict)
    on_click: Callable[[], None] | None = field(default=None, compare=False)

    def map(self, step: StepMap) -> Decoration | None:
        """Carry the decoration through ``step``; ``None`` when it collapses."""

        start = step.map(self.start, assoc=1)
        end = step.map(self.end, assoc=-1)
        if start >= end:
            return None
        return replace(self, start=start, end=end)


class DecorationSet:
    """Immutable collection of decorations ordered by start position."""

    __slots__ = ("_items",)

    def __init__(self, decorations: Iterable[Decoration] = ()) -> None:
        self._items: tuple[Decoration, ...] = tuple(sorted(decorations, key=lambda item: (item.start, item.end)))

    @classmethod
    def create(cls, decorations: Iterable[Decoration]) -> DecorationSet:
        return cls(decorations)

    @classmethod
    def empty(cls) -> DecorationSet:
        return cls()

    def map(self, step: StepMap) -> DecorationSet:
        """Return a new set with every decoration mapped through ``step``."""

        mapped = (decoration.map(step) for decoration in self._items)
        return DecorationSet(item for item in mapped if item is not None)

    def find(self, start: int | None = None, end: int | None = None) -> list[Decoration]:
        """Return decorations touching ``[start, end]`` (the whole set by default)."""

        lo = 0 if start is None else start
        hi = float("inf") if end is None else end
        return [item for item in self._items if item.end >= lo and item.start <= hi]

    def find_by_id(self, suggestion_id: str) -> Decoration | None:
        for item in self._items:
            if item.spec.get("suggestion_id") == suggestion_id:
                return item
        return None

    def __iter__(self) -> Iterator[Decoration]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)
