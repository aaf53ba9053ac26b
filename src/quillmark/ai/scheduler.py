"""Debounced, cancellable scheduling of analysis requests.

The scheduler owns a single authoritative in-flight handle. Every call to
:meth:`AnalysisScheduler.schedule` replaces it, so a response is applied only
when it still belongs to the most recently *requested* analysis. Work that
has already reached the backend is never aborted; its result is cached and
otherwise ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from ..analysis.changes import change_summary, detect_sentence_changes
from ..analysis.errors import BackendCategory, BackendError, QuillmarkError, ValidationError
from ..analysis.hashing import content_hash
from ..analysis.models import AnalysisOptions, AnalysisRequest, AnalysisResult
from ..analysis.validation import validate_request
from ..services.quota import QuotaTracker
from ..services.suggestion_cache import SuggestionCache
from .client import AnalysisBackend

__all__ = [
    "AnalysisOutcome",
    "AnalysisScheduler",
    "AnalysisState",
    "AnalysisStatus",
    "SchedulerConfig",
]

LOGGER = logging.getLogger(__name__)

TelemetryEmitter = Callable[[str, Mapping[str, Any]], None]


class AnalysisState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class SchedulerConfig:
    """Scheduler timing and request shaping.

    Attributes:
        debounce_seconds: Quiet period after the last ``schedule`` call.
        realtime: Whether requests use the realtime quota tier and limits.
        skip_unchanged: Ignore ``schedule`` calls whose text shows no
            significant sentence-level change since the last analysis.
        max_characters: Override for the validation length limit.
        cache_ttl_seconds: Override for the cache's default TTL.
    """

    debounce_seconds: float = 2.0
    realtime: bool = True
    skip_unchanged: bool = False
    max_characters: int | None = None
    cache_ttl_seconds: float | None = None


@dataclass(slots=True, frozen=True)
class AnalysisOutcome:
    request_id: str
    content_hash: str
    result: AnalysisResult
    cache_hit: bool = False


@dataclass(slots=True, frozen=True)
class AnalysisStatus:
    state: AnalysisState
    request_id: str | None = None
    cache_hit: bool = False
    error: QuillmarkError | None = None
    updated_at: float = field(default_factory=time.time)

    @property
    def is_busy(self) -> bool:
        return self.state in (AnalysisState.PENDING, AnalysisState.ANALYZING)


@dataclass(slots=True)
class _PendingAnalysis:
    request_id: str
    text: str
    content_hash: str
    task: asyncio.Task[None] | None = None
    started: bool = False


def _new_request_id() -> str:
    return f"rt_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class AnalysisScheduler:
    """Debounces edits into analysis calls and applies only the latest result."""

    def __init__(
        self,
        backend: AnalysisBackend,
        cache: SuggestionCache,
        quota: QuotaTracker,
        *,
        identity: str,
        options: AnalysisOptions | None = None,
        config: SchedulerConfig | None = None,
        on_complete: Callable[[AnalysisOutcome], None] | None = None,
        on_error: Callable[[QuillmarkError], None] | None = None,
        on_status: Callable[[AnalysisStatus], None] | None = None,
        telemetry_emitter: TelemetryEmitter | None = None,
    ) -> None:
        self._backend = backend
        self._cache = cache
        self._quota = quota
        self._identity = identity
        self._options = options or AnalysisOptions()
        self._config = config or SchedulerConfig()
        self._on_complete = on_complete
        self._on_error = on_error
        self._on_status = on_status
        self._telemetry_emitter = telemetry_emitter
        self._current: _PendingAnalysis | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._status = AnalysisStatus(AnalysisState.IDLE)
        self._last_outcome: AnalysisOutcome | None = None
        self._last_error: QuillmarkError | None = None
        self._last_analyzed_text: str | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def status(self) -> AnalysisStatus:
        return self._status

    @property
    def state(self) -> AnalysisState:
        return self._status.state

    @property
    def current_request_id(self) -> str | None:
        return self._current.request_id if self._current is not None else None

    @property
    def last_outcome(self) -> AnalysisOutcome | None:
        return self._last_outcome

    @property
    def last_error(self) -> QuillmarkError | None:
        return self._last_error

    @property
    def options(self) -> AnalysisOptions:
        return self._options

    def set_options(self, options: AnalysisOptions) -> None:
        """Use ``options`` for subsequent requests; forces the next text to be analyzed."""

        self._options = options
        self._last_analyzed_text = None

    def set_callbacks(
        self,
        *,
        on_complete: Callable[[AnalysisOutcome], None] | None = None,
        on_error: Callable[[QuillmarkError], None] | None = None,
        on_status: Callable[[AnalysisStatus], None] | None = None,
    ) -> None:
        """Replace the delivery callbacks; ``None`` leaves a callback unchanged."""

        if on_complete is not None:
            self._on_complete = on_complete
        if on_error is not None:
            self._on_error = on_error
        if on_status is not None:
            self._on_status = on_status

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def schedule(self, text: str) -> str | None:
        """Debounce an analysis of ``text`` and return its request id.

        Raises :class:`ValidationError` for input that can never be analyzed.
        Returns ``None`` when ``skip_unchanged`` is enabled and the text has
        not changed meaningfully since the last completed analysis.
        """

        if self._closed:
            raise RuntimeError("AnalysisScheduler is closed")
        try:
            validate_request(
                text,
                self._options,
                realtime=self._config.realtime,
                max_characters=self._config.max_characters,
            )
        except ValidationError:
            if self._current is not None:
                self._supersede()
                self._set_status(AnalysisState.IDLE)
            raise
        if (
            self._config.skip_unchanged
            and self._last_analyzed_text is not None
            and self._current is None
            and not detect_sentence_changes(self._last_analyzed_text, text)
        ):
            summary = change_summary(self._last_analyzed_text, text)
            LOGGER.debug("Skipping analysis; %d sentence(s) changed", summary.changed_sentences)
            self._emit("analysis.skipped", summary.to_dict())
            return None

        self._supersede()
        handle = _PendingAnalysis(
            request_id=_new_request_id(),
            text=text,
            content_hash=content_hash(text, self._options),
        )
        self._current = handle
        self._set_status(AnalysisState.PENDING, handle.request_id)
        handle.task = asyncio.create_task(self._run(handle), name=f"quillmark-analysis-{handle.request_id}")
        self._track(handle.task)
        self._emit("analysis.requested", {"request_id": handle.request_id, "length": len(text)})
        return handle.request_id

    def cancel(self) -> None:
        """Stop the pending debounce and ignore any in-flight response.

        Observers see ``cancelled`` followed by ``idle``.
        """

        if self._current is None:
            return
        request_id = self._current.request_id
        self._supersede()
        self._set_status(AnalysisState.CANCELLED, request_id)
        self._set_status(AnalysisState.IDLE)

    def reset(self) -> None:
        """Cancel outstanding work and return to ``idle``."""

        self._supersede()
        self._last_outcome = None
        self._last_error = None
        self._last_analyzed_text = None
        self._set_status(AnalysisState.IDLE)

    async def drain(self) -> None:
        """Wait for every task the scheduler started, including superseded ones."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        self._closed = True
        self._supersede()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._background.clear()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def _run(self, handle: _PendingAnalysis) -> None:
        await asyncio.sleep(self._config.debounce_seconds)
        if not self._is_current(handle):
            return
        handle.started = True
        self._set_status(AnalysisState.ANALYZING, handle.request_id)
        try:
            outcome = await self._execute(handle)
        except QuillmarkError as exc:
            self._deliver_error(handle, exc)
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected failure while analyzing %s", handle.request_id)
            error = BackendError(message=f"Unexpected analysis failure: {exc}", category=BackendCategory.UNKNOWN)
            self._deliver_error(handle, error)
            return
        self._deliver_outcome(handle, outcome)

    async def _execute(self, handle: _PendingAnalysis) -> AnalysisOutcome:
        realtime = self._config.realtime
        decision = await self._quota.check_and_consume(self._identity, len(handle.text), realtime=realtime)
        if not decision.allowed:
            raise decision.to_error()

        cached = await self._cache.get(handle.content_hash)
        if cached is not None:
            return AnalysisOutcome(handle.request_id, handle.content_hash, cached, cache_hit=True)

        request = AnalysisRequest(
            text=handle.text,
            options=self._options,
            request_id=handle.request_id,
            realtime=realtime,
        )
        result = await self._backend.analyze(request)
        await self._cache.set(handle.content_hash, result, self._config.cache_ttl_seconds)
        return AnalysisOutcome(handle.request_id, handle.content_hash, result, cache_hit=False)

    def _deliver_outcome(self, handle: _PendingAnalysis, outcome: AnalysisOutcome) -> None:
        if not self._is_current(handle):
            LOGGER.debug("Discarding superseded result for %s", handle.request_id)
            self._emit("analysis.superseded", {"request_id": handle.request_id})
            return
        self._current = None
        self._last_outcome = outcome
        self._last_error = None
        self._last_analyzed_text = handle.text
        self._set_status(AnalysisState.COMPLETE, handle.request_id, cache_hit=outcome.cache_hit)
        self._emit(
            "analysis.cache_hit" if outcome.cache_hit else "analysis.completed",
            {
                "request_id": handle.request_id,
                "suggestions": outcome.result.total_suggestions,
                "cache_hit": outcome.cache_hit,
            },
        )
        self._invoke(self._on_complete, outcome)

    def _deliver_error(self, handle: _PendingAnalysis, error: QuillmarkError) -> None:
        if not self._is_current(handle):
            LOGGER.debug("Discarding superseded error for %s: %s", handle.request_id, error)
            return
        self._current = None
        self._last_error = error
        LOGGER.info("Analysis %s failed: %s", handle.request_id, error)
        self._set_status(AnalysisState.ERROR, handle.request_id, error=error)
        self._emit("analysis.failed", {"request_id": handle.request_id, **error.to_dict()})
        self._invoke(self._on_error, error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _supersede(self) -> None:
        handle = self._current
        if handle is None:
            return
        self._current = None
        if handle.task is not None and not handle.started:
            handle.task.cancel()

    def _is_current(self, handle: _PendingAnalysis) -> bool:
        return self._current is handle

    def _track(self, task: asyncio.Task[None]) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _set_status(
        self,
        state: AnalysisState,
        request_id: str | None = None,
        *,
        cache_hit: bool = False,
        error: QuillmarkError | None = None,
    ) -> None:
        self._status = AnalysisStatus(state=state, request_id=request_id, cache_hit=cache_hit, error=error)
        self._invoke(self._on_status, self._status)

    def _invoke(self, callback: Callable[[Any], None] | None, payload: Any) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            LOGGER.exception("Scheduler callback %r failed", callback)

    def _emit(self, name: str, payload: Mapping[str, Any]) -> None:
        emitter = self._telemetry_emitter
        if emitter is None:
            return
        try:
            emitter(name, dict(payload))
        except Exception:  # pragma: no cover - telemetry must not break scheduling
            LOGGER.debug("Scheduler telemetry emitter failed", exc_info=True)
