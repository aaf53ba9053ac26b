"""Authoritative live suggestion set and the accept/reject/sweep flows around it.

The manager owns every suggestion between the arrival of an analysis result
and its removal. A suggestion leaves the live set exactly once, by being
accepted, rejected, invalidated (its text disappeared) or replaced wholesale
by the next result. Offsets carried by suggestions are never trusted: every
render and every accept re-resolves the text against the live document.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from ..analysis.errors import AnchorLost
from ..analysis.models import AnalysisResult, Suggestion, SuggestionKind
from ..documents.decorations import Decoration, DecorationSet
from ..documents.ranges import TextRange
from ..documents.rich_text import HostDocument, StepMap
from ..events import (
    BulkActionCompleted,
    Event,
    EventBus,
    SuggestionAccepted,
    SuggestionRejected,
    SuggestionsInvalidated,
    SuggestionsReplaced,
)
from .anchoring import AnchorResolver

__all__ = [
    "BulkOutcome",
    "LifecycleConfig",
    "LiveSuggestion",
    "SuggestionLifecycleManager",
    "SuggestionState",
]

LOGGER = logging.getLogger(__name__)

SuggestionRef = Suggestion | str
OverlaySink = Callable[[DecorationSet], None]
ClickHandler = Callable[[Suggestion], None]


class SuggestionState(str, Enum):
    PENDING = "pending"
    DISPLAYED = "displayed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    INVALIDATED = "invalidated"


@dataclass(slots=True, frozen=True)
class LifecycleConfig:
    """Lifecycle tuning.

    Attributes:
        sweep_interval_seconds: Delay between staleness sweeps started by
            :meth:`SuggestionLifecycleManager.start`; ``0`` disables the loop.
        class_prefix: CSS-style class prefix applied to decorations.
    """

    sweep_interval_seconds: float = 5.0
    class_prefix: str = "quillmark-suggestion"


@dataclass(slots=True)
class LiveSuggestion:
    suggestion: Suggestion
    state: SuggestionState = SuggestionState.PENDING
    range: TextRange | None = None

    @property
    def id(self) -> str:
        return self.suggestion.id


@dataclass(slots=True, frozen=True)
class BulkOutcome:
    """Result of an accept-all or reject-all pass."""

    action: str
    kind: str
    applied: int = 0
    failed: int = 0
    failed_ids: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return self.applied + self.failed


class SuggestionLifecycleManager:
    """Tracks live suggestions for one document and applies user decisions."""

    def __init__(
        self,
        document: HostDocument,
        *,
        resolver: AnchorResolver | None = None,
        event_bus: EventBus | None = None,
        config: LifecycleConfig | None = None,
        overlay_sink: OverlaySink | None = None,
        on_suggestion_click: ClickHandler | None = None,
    ) -> None:
        self._document = document
        self._resolver = resolver or AnchorResolver()
        self._event_bus = event_bus
        self._config = config or LifecycleConfig()
        self._overlay_sink = overlay_sink
        self._on_suggestion_click = on_suggestion_click
        self._live: dict[str, LiveSuggestion] = {}
        self._finished: dict[str, SuggestionState] = {}
        self._decorations = DecorationSet.empty()
        self._analysis_id: str | None = None
        self._sweep_task: asyncio.Task[None] | None = None
        self._closed = False
        document.add_listener(self.on_document_changed)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def document(self) -> HostDocument:
        return self._document

    @property
    def decorations(self) -> DecorationSet:
        return self._decorations

    @property
    def analysis_id(self) -> str | None:
        return self._analysis_id

    def get(self, suggestion_id: str) -> Suggestion | None:
        live = self._live.get(suggestion_id)
        return live.suggestion if live is not None else None

    def live_suggestions(self, kind: SuggestionKind | str | None = None) -> tuple[Suggestion, ...]:
        wanted = _coerce_kind(kind)
        return tuple(
            live.suggestion
            for live in self._live.values()
            if wanted is None or live.suggestion.kind == wanted
        )

    def state_of(self, suggestion_id: str) -> SuggestionState | None:
        """Return the state of a live suggestion, or how it left the current set."""

        live = self._live.get(suggestion_id)
        if live is not None:
            return live.state
        return self._finished.get(suggestion_id)

    def range_of(self, suggestion_id: str) -> TextRange | None:
        live = self._live.get(suggestion_id)
        return live.range if live is not None else None

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, suggestion_id: object) -> bool:
        return suggestion_id in self._live

    # ------------------------------------------------------------------
    # Replacement and rendering
    # ------------------------------------------------------------------
    def replace_all(self, source: AnalysisResult | Iterable[Suggestion]) -> int:
        """Discard every live suggestion and adopt ``source`` as the new set.

        Repeated ids keep their first occurrence. Returns the live count.
        """

        if isinstance(source, AnalysisResult):
            suggestions: tuple[Suggestion, ...] = source.all_suggestions()
            analysis_id = source.analysis_id
        else:
            suggestions = tuple(source)
            analysis_id = ""

        live: dict[str, LiveSuggestion] = {}
        dropped = 0
        for suggestion in suggestions:
            if suggestion.id in live:
                dropped += 1
                LOGGER.debug("Dropping duplicate suggestion id %s", suggestion.id)
                continue
            live[suggestion.id] = LiveSuggestion(suggestion)

        self._live = live
        self._finished = {}
        self._decorations = DecorationSet.empty()
        self._analysis_id = analysis_id or None
        LOGGER.debug("Live suggestion set replaced: %d suggestion(s)", len(live))
        self._publish(SuggestionsReplaced(analysis_id=analysis_id, count=len(live), dropped_duplicates=dropped))
        return len(live)

    def clear(self) -> None:
        """Drop every suggestion and clear the overlay."""

        self.replace_all(())
        self._push_overlay()

    def render(self) -> DecorationSet:
        """Anchor every live suggestion and publish the resulting decorations.

        Suggestions whose text cannot be found are invalidated.
        """

        decorations: list[Decoration] = []
        lost: list[str] = []
        with self._document.transaction():
            for live in list(self._live.values()):
                anchor = self._resolver.resolve(self._document, live.suggestion)
                if anchor.range is None:
                    lost.append(live.id)
                    continue
                live.range = anchor.range
                live.state = SuggestionState.DISPLAYED
                decorations.append(self._decoration_for(live.suggestion, anchor.range))

        for suggestion_id in lost:
            LOGGER.debug("%s", AnchorLost(suggestion_id=suggestion_id, details={"phase": "render"}))
            self._finish(suggestion_id, SuggestionState.INVALIDATED)
        self._decorations = DecorationSet.create(decorations)
        if lost:
            self._publish(SuggestionsInvalidated(suggestion_ids=tuple(lost), reason="render"))
        self._push_overlay()
        return self._decorations

    # ------------------------------------------------------------------
    # User decisions
    # ------------------------------------------------------------------
    def accept(self, ref: SuggestionRef) -> bool:
        """Apply a live suggestion's replacement to the document.

        Returns ``False`` without touching the document when the suggestion is
        not live, its text can no longer be located, or the located slice no
        longer matches.
        """

        live = self._lookup(ref)
        if live is None:
            LOGGER.debug("Ignoring accept for unknown suggestion %s", _ref_id(ref))
            return False
        suggestion = live.suggestion
        with self._document.transaction():
            anchor = self._resolver.resolve(self._document, suggestion)
            target = anchor.range
            if target is None:
                LOGGER.info(
                    "Cannot accept %s: %s",
                    suggestion.id,
                    AnchorLost(suggestion_id=suggestion.id, details={"phase": "accept"}),
                )
                return False
            current = self._document.text_between(target.start, target.end)
            if current != suggestion.original_text:
                LOGGER.info(
                    "Cannot accept %s: expected %r at [%d, %d) but found %r",
                    suggestion.id,
                    suggestion.original_text,
                    target.start,
                    target.end,
                    current,
                )
                return False
            self._document.replace_range(target.start, target.end, suggestion.suggested_text)
            self._finish(suggestion.id, SuggestionState.ACCEPTED)

        LOGGER.debug("Accepted %s at [%d, %d)", suggestion.id, target.start, target.end)
        self._publish(
            SuggestionAccepted(
                suggestion_id=suggestion.id,
                range=target.to_tuple(),
                replacement=suggestion.suggested_text,
            )
        )
        return True

    def reject(self, ref: SuggestionRef) -> bool:
        """Remove a live suggestion without changing the document."""

        live = self._lookup(ref)
        if live is None:
            LOGGER.debug("Ignoring reject for unknown suggestion %s", _ref_id(ref))
            return False
        self._finish(live.id, SuggestionState.REJECTED)
        self._publish(SuggestionRejected(suggestion_id=live.id))
        self._push_overlay()
        return True

    def accept_all(self, kind: SuggestionKind | str | None = None) -> BulkOutcome:
        """Accept every live suggestion of ``kind`` (all kinds when ``None``)."""

        return self._bulk("accept", kind, self.accept)

    def reject_all(self, kind: SuggestionKind | str | None = None) -> BulkOutcome:
        return self._bulk("reject", kind, self.reject)

    def _bulk(
        self,
        action: str,
        kind: SuggestionKind | str | None,
        apply: Callable[[SuggestionRef], bool],
    ) -> BulkOutcome:
        wanted = _coerce_kind(kind)
        targets = [suggestion.id for suggestion in self.live_suggestions(wanted)]
        applied = 0
        failed_ids: list[str] = []
        for suggestion_id in targets:
            try:
                ok = apply(suggestion_id)
            except Exception:
                LOGGER.exception("Bulk %s failed for suggestion %s", action, suggestion_id)
                ok = False
            if ok:
                applied += 1
            else:
                failed_ids.append(suggestion_id)

        label = wanted.value if wanted is not None else "all"
        outcome = BulkOutcome(
            action=action,
            kind=label,
            applied=applied,
            failed=len(failed_ids),
            failed_ids=tuple(failed_ids),
        )
        if failed_ids:
            LOGGER.info("Bulk %s (%s): %d applied, %d failed", action, label, applied, len(failed_ids))
        self._publish(BulkActionCompleted(action=action, kind=label, applied=applied, failed=len(failed_ids)))
        return outcome

    # ------------------------------------------------------------------
    # Staleness sweep
    # ------------------------------------------------------------------
    def sweep(self) -> tuple[str, ...]:
        """Drop live suggestions whose text no longer occurs in the document."""

        stale = [
            live.id
            for live in list(self._live.values())
            if not self._resolver.find_occurrences(self._document, live.suggestion.original_text)
        ]
        if not stale:
            return ()
        for suggestion_id in stale:
            self._finish(suggestion_id, SuggestionState.INVALIDATED)
        LOGGER.debug("Sweep invalidated %d suggestion(s)", len(stale))
        self._publish(SuggestionsInvalidated(suggestion_ids=tuple(stale), reason="sweep"))
        self._push_overlay()
        return tuple(stale)

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""

        if self._closed:
            raise RuntimeError("SuggestionLifecycleManager is closed")
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        if self._config.sweep_interval_seconds <= 0:
            return
        loop = asyncio.get_running_loop()
        self._sweep_task = loop.create_task(self._sweep_loop(), name="quillmark-suggestion-sweep")

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._document.remove_listener(self.on_document_changed)
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _sweep_loop(self) -> None:
        interval = self._config.sweep_interval_seconds
        try:
            while not self._closed:
                await asyncio.sleep(interval)
                try:
                    self.sweep()
                except Exception:
                    LOGGER.exception("Suggestion sweep failed")
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            return

    # ------------------------------------------------------------------
    # Document changes
    # ------------------------------------------------------------------
    def on_document_changed(self, step: StepMap) -> None:
        """Carry decorations and cached ranges through a document mutation."""

        self._decorations = self._decorations.map(step)
        for live in self._live.values():
            if live.range is None:
                continue
            start = step.map(live.range.start, assoc=1)
            end = step.map(live.range.end, assoc=-1)
            live.range = TextRange(start, end) if start < end else None
        self._push_overlay()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _lookup(self, ref: SuggestionRef) -> LiveSuggestion | None:
        return self._live.get(_ref_id(ref))

    def _finish(self, suggestion_id: str, state: SuggestionState) -> None:
        live = self._live.pop(suggestion_id, None)
        if live is None:
            return
        live.state = state
        self._finished[suggestion_id] = state
        self._decorations = DecorationSet(
            item for item in self._decorations if item.spec.get("suggestion_id") != suggestion_id
        )

    def _decoration_for(self, suggestion: Suggestion, target: TextRange) -> Decoration:
        prefix = self._config.class_prefix
        on_click = None
        if self._on_suggestion_click is not None:
            on_click = functools.partial(self._handle_click, suggestion.id)
        return Decoration(
            start=target.start,
            end=target.end,
            attrs={
                "class": f"{prefix} {prefix}--{suggestion.kind.value} {prefix}--{suggestion.severity.value}",
                "data-suggestion-id": suggestion.id,
                "title": suggestion.explanation,
            },
            spec={
                "suggestion_id": suggestion.id,
                "kind": suggestion.kind.value,
                "severity": suggestion.severity.value,
                "suggested_text": suggestion.suggested_text,
            },
            on_click=on_click,
        )

    def _handle_click(self, suggestion_id: str) -> None:
        live = self._live.get(suggestion_id)
        if live is None or self._on_suggestion_click is None:
            return
        try:
            self._on_suggestion_click(live.suggestion)
        except Exception:
            LOGGER.exception("Suggestion click handler failed for %s", suggestion_id)

    def _push_overlay(self) -> None:
        sink = self._overlay_sink
        if sink is None:
            return
        try:
            sink(self._decorations)
        except Exception:
            LOGGER.exception("Overlay sink failed")

    def _publish(self, event: Event) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)


def _ref_id(ref: SuggestionRef) -> str:
    return ref if isinstance(ref, str) else ref.id


def _coerce_kind(kind: SuggestionKind | str | None) -> SuggestionKind | None:
    if kind is None or isinstance(kind, SuggestionKind):
        return kind
    return SuggestionKind(kind)
