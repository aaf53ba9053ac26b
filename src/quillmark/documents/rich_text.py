"""In-memory tree-shaped rich-text document.

The document is a list of blocks (paragraphs), each holding formatted text
runs. Positions are absolute character offsets in a flattened view where
consecutive blocks are separated by a single ``"\\n"`` position, so
``document.text[a:b] == document.text_between(a, b)`` for every valid pair.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Protocol, Sequence, runtime_checkable

__all__ = [
    "Block",
    "HostDocument",
    "RichTextDocument",
    "StepMap",
    "TextLeaf",
    "TextRun",
]

LOGGER = logging.getLogger(__name__)

BLOCK_SEPARATOR = "\n"

ChangeListener = Callable[["StepMap"], None]


# -----------------------------------------------------------------------------
# Nodes
# -----------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class TextRun:
    """A span of text sharing one set of formatting marks."""

    text: str
    marks: frozenset[str] = frozenset()

    def with_text(self, text: str) -> TextRun:
        return TextRun(text=text, marks=self.marks)


@dataclass(slots=True)
class Block:
    """A paragraph-level node holding inline runs."""

    runs: list[TextRun] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)

    @property
    def length(self) -> int:
        return sum(len(run.text) for run in self.runs)

    def slice_runs(self, start: int, end: int) -> list[TextRun]:
        """Return the runs covering ``[start, end)`` relative to the block."""

        result: list[TextRun] = []
        pos = 0
        for run in self.runs:
            run_start, run_end = pos, pos + len(run.text)
            pos = run_end
            lo = max(start, run_start)
            hi = min(end, run_end)
            if hi > lo:
                result.append(run.with_text(run.text[lo - run_start : hi - run_start]))
        return result


@dataclass(slots=True, frozen=True)
class TextLeaf:
    """A text node exposed to scanners together with its absolute offset."""

    offset: int
    text: str
    block_index: int
    marks: frozenset[str] = frozenset()

    @property
    def end(self) -> int:
        return self.offset + len(self.text)


# -----------------------------------------------------------------------------
# Position mapping
# -----------------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class StepMap:
    """Describes one replacement so positions can be carried across it."""

    start: int
    old_length: int
    new_length: int

    @property
    def delta(self) -> int:
        return self.new_length - self.old_length

    def map(self, pos: int, assoc: int = 1) -> int:
        """Map ``pos`` through the replacement.

        ``assoc`` chooses the side a position sticks to when content is inserted
        exactly at it: negative keeps it before the insertion, positive moves it
        after.
        """

        end = self.start + self.old_length
        if pos < self.start:
            return pos
        if pos > end:
            return pos + self.delta
        if self.old_length == 0:
            side = assoc
        elif pos == self.start:
            side = -1
        elif pos == end:
            side = 1
        else:
            side = assoc
        return self.start if side < 0 else self.start + self.new_length


@runtime_checkable
class HostDocument(Protocol):
    """Capabilities the anchoring and lifecycle layers need from a document."""

    @property
    def text(self) -> str: ...

    @property
    def size(self) -> int: ...

    def iter_text_leaves(self) -> Iterator[TextLeaf]: ...

    def text_between(self, start: int, end: int) -> str: ...

    def replace_range(self, start: int, end: int, text: str) -> StepMap: ...

    def transaction(self) -> contextlib.AbstractContextManager[object]: ...

    def add_listener(self, listener: ChangeListener) -> None: ...

    def remove_listener(self, listener: ChangeListener) -> None: ...


# -----------------------------------------------------------------------------
# Document
# -----------------------------------------------------------------------------

class RichTextDocument:
    """Mutable block/run document with atomic range replacement."""

    def __init__(self, blocks: Iterable[Block] | None = None) -> None:
        self._blocks: list[Block] = [Block(list(block.runs)) for block in blocks or ()]
        if not self._blocks:
            self._blocks = [Block()]
        self._lock = threading.RLock()
        self._depth = 0
        self._pending_steps: list[StepMap] = []
        self._listeners: list[ChangeListener] = []
        self._version = 0
        self._text_cache: str | None = None

    @classmethod
    def from_text(cls, text: str) -> RichTextDocument:
        """Build an unformatted document, one block per line."""

        return cls(Block([TextRun(line)] if line else []) for line in text.split(BLOCK_SEPARATOR))

    @classmethod
    def from_runs(cls, blocks: Sequence[Sequence[tuple[str, Iterable[str]]]]) -> RichTextDocument:
        """Build a formatted document from ``[[(text, marks), ...], ...]``."""

        return cls(
            Block([TextRun(text, frozenset(marks)) for text, marks in runs if text]) for runs in blocks
        )

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def version(self) -> int:
        return self._version

    @property
    def blocks(self) -> tuple[Block, ...]:
        return tuple(self._blocks)

    @property
    def text(self) -> str:
        with self._lock:
            if self._text_cache is None:
                self._text_cache = BLOCK_SEPARATOR.join(block.text for block in self._blocks)
            return self._text_cache

    @property
    def size(self) -> int:
        return len(self.text)

    def iter_text_leaves(self) -> Iterator[TextLeaf]:
        """Yield every non-empty text run in document order with its offset."""

        with self._lock:
            leaves: list[TextLeaf] = []
            pos = 0
            for index, block in enumerate(self._blocks):
                for run in block.runs:
                    if run.text:
                        leaves.append(TextLeaf(pos, run.text, index, run.marks))
                    pos += len(run.text)
                pos += len(BLOCK_SEPARATOR)
        yield from leaves

    def text_between(self, start: int, end: int) -> str:
        start, end = self._check_range(start, end)
        return self.text[start:end]

    def marks_at(self, pos: int) -> frozenset[str]:
        """Return the marks new text inserted at ``pos`` should inherit."""

        with self._lock:
            offset = 0
            for block in self._blocks:
                block_end = offset + block.length
                if offset <= pos <= block_end:
                    local = pos - offset
                    run_pos = 0
                    for run in block.runs:
                        run_end = run_pos + len(run.text)
                        if run_pos < local <= run_end:
                            return run.marks
                        run_pos = run_end
                    return block.runs[0].marks if block.runs else frozenset()
                offset = block_end + len(BLOCK_SEPARATOR)
        return frozenset()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def transaction(self) -> Iterator[RichTextDocument]:
        """Serialize a group of reads and writes.

        Listeners are notified once the outermost transaction exits, in the
        order the steps were applied.
        """

        steps: list[StepMap] = []
        try:
            with self._lock:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                    if self._depth == 0:
                        steps, self._pending_steps = self._pending_steps, []
        finally:
            self._notify(steps)

    def replace_range(self, start: int, end: int, text: str) -> StepMap:
        """Replace ``[start, end)`` with ``text`` atomically.

        Inserted text inherits the marks at ``start``; ``"\\n"`` characters in
        ``text`` split the surrounding block.
        """

        with self.transaction():
            start, end = self._check_range(start, end)
            marks = self.marks_at(start)
            prefix = self._slice(0, start)
            suffix = self._slice(end, self.size)
            lines = [[TextRun(line, marks)] if line else [] for line in text.split(BLOCK_SEPARATOR)]
            lines[0] = prefix[-1] + lines[0]
            lines[-1] = lines[-1] + suffix[0]
            self._blocks = [Block(_merge_runs(runs)) for runs in (*prefix[:-1], *lines, *suffix[1:])]
            self._version += 1
            self._text_cache = None
            step = StepMap(start=start, old_length=end - start, new_length=len(text))
            self._pending_steps.append(step)
        return step

    def insert(self, pos: int, text: str) -> StepMap:
        return self.replace_range(pos, pos, text)

    def delete(self, start: int, end: int) -> StepMap:
        return self.replace_range(start, end, "")

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def _notify(self, steps: Sequence[StepMap]) -> None:
        for step in steps:
            for listener in list(self._listeners):
                try:
                    listener(step)
                except Exception:
                    LOGGER.exception("Document listener %r failed", listener)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _check_range(self, start: int, end: int) -> tuple[int, int]:
        size = self.size
        if start < 0 or end < start or end > size:
            raise ValueError(f"Range [{start}, {end}) is outside the document (size {size})")
        return start, end

    def _slice(self, start: int, end: int) -> list[list[TextRun]]:
        """Return per-block run lists for ``[start, end)``, keeping block breaks."""

        pieces: list[list[TextRun]] = []
        pos = 0
        for block in self._blocks:
            block_end = pos + block.length
            if block_end >= start and pos <= end:
                pieces.append(block.slice_runs(max(start, pos) - pos, min(end, block_end) - pos))
            pos = block_end + len(BLOCK_SEPARATOR)
        return pieces


def _merge_runs(runs: Iterable[TextRun]) -> list[TextRun]:
    merged: list[TextRun] = []
    for run in runs:
        if not run.text:
            continue
        if merged and merged[-1].marks == run.marks:
            merged[-1] = merged[-1].with_text(merged[-1].text + run.text)
        else:
            merged.append(run)
    return merged
