"""Event bus for decoupled communication between the overlay and its host.

Components publish typed events; hosts subscribe to the ones they render or
log without holding references to the publishers.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, DefaultDict, Generic, TypeVar
from weakref import WeakMethod, ref

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events.

    Subclasses are ``@dataclass(slots=True)`` records::

        @dataclass(slots=True)
        class SuggestionRejected(Event):
            suggestion_id: str
    """


# =============================================================================
# Suggestion Events
# =============================================================================


@dataclass(slots=True)
class SuggestionsReplaced(Event):
    """Emitted when a new analysis result replaces the live suggestion set.

    Attributes:
        analysis_id: Identifier of the result now driving the overlay.
        count: Number of live suggestions after replacement.
        dropped_duplicates: Suggestions discarded because their id repeated.
    """

    analysis_id: str
    count: int
    dropped_duplicates: int = 0


@dataclass(slots=True)
class SuggestionAccepted(Event):
    """Emitted after a suggestion's replacement has been applied to the document.

    Attributes:
        suggestion_id: The accepted suggestion.
        range: The ``(start, end)`` range that was replaced.
        replacement: The text written in its place.
    """

    suggestion_id: str
    range: tuple[int, int]
    replacement: str


@dataclass(slots=True)
class SuggestionRejected(Event):
    """Emitted when the user dismisses a suggestion."""

    suggestion_id: str


@dataclass(slots=True)
class SuggestionsInvalidated(Event):
    """Emitted when suggestions are dropped because their text disappeared.

    Attributes:
        suggestion_ids: The suggestions removed from the live set.
        reason: ``"sweep"`` for the periodic check, ``"render"`` when anchoring
            failed while drawing decorations.
    """

    suggestion_ids: tuple[str, ...]
    reason: str


@dataclass(slots=True)
class BulkActionCompleted(Event):
    """Emitted after an accept-all or reject-all pass."""

    action: str
    kind: str
    applied: int
    failed: int


# =============================================================================
# Analysis Events
# =============================================================================


@dataclass(slots=True)
class AnalysisStatusChanged(Event):
    """Emitted whenever the scheduler changes state.

    Attributes:
        state: New scheduler state value (``"pending"``, ``"complete"``...).
        request_id: The request the state refers to, if any.
        cache_hit: Whether a completed result came from the cache.
        message: User-facing error message for ``"error"`` states.
    """

    state: str
    request_id: str | None = None
    cache_hit: bool = False
    message: str = ""


@dataclass(slots=True)
class TelemetryEvent(Event):
    """Lightweight telemetry record republished from component emitters."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)


_QUIET_EVENT_TYPES: set[type] = {TelemetryEvent}


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers are stored as weak references where possible (bound methods), so
    subscribing does not keep the subscriber alive.

    Thread Safety:
        Not thread-safe; publish from the event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for events of exactly ``event_type``.

        Subscribing the same handler twice results in two invocations.
        """
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed handler %s to event type %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Invoke every handler for ``type(event)`` in registration order.

        A handler that raises is logged and the remaining handlers still run.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if handlers is None:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead_indices: list[int] = []
        for i, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(i)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for i in reversed(dead_indices):
            if i < len(handlers):
                handlers.pop(i)

    def clear(self) -> None:
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "AnalysisStatusChanged",
    "BulkActionCompleted",
    "Event",
    "EventBus",
    "Handler",
    "SuggestionAccepted",
    "SuggestionRejected",
    "SuggestionsInvalidated",
    "SuggestionsReplaced",
    "TelemetryEvent",
]
