"""Wiring between a live document, the analysis scheduler and the suggestion overlay."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping

from .ai.client import AnalysisBackend, ClientSettings, OpenAIAnalysisBackend
from .ai.scheduler import AnalysisOutcome, AnalysisScheduler, AnalysisStatus, SchedulerConfig
from .analysis.errors import QuillmarkError, ValidationError
from .documents.rich_text import HostDocument, StepMap
from .editor.lifecycle import ClickHandler, LifecycleConfig, OverlaySink, SuggestionLifecycleManager
from .events import AnalysisStatusChanged, EventBus, TelemetryEvent
from .services.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore
from .services.quota import QuotaTracker
from .services.settings import Settings, redact_secret
from .services.suggestion_cache import SuggestionCache
from .utils.logging import configure_logging

__all__ = ["AnalysisSession", "build_session"]

LOGGER = logging.getLogger(__name__)

Closer = Callable[[], Awaitable[None] | None]


class AnalysisSession:
    """Re-analyzes a document as it changes and keeps its overlay current.

    Every document change schedules a debounced analysis of the full text.
    Completed results replace the live suggestion set and are rendered
    immediately; failures are kept for display until the next success.
    """

    def __init__(
        self,
        document: HostDocument,
        scheduler: AnalysisScheduler,
        manager: SuggestionLifecycleManager,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self._document = document
        self._scheduler = scheduler
        self._manager = manager
        self._event_bus = event_bus
        self._last_error: QuillmarkError | None = None
        self._closers: list[Closer] = []
        self._started = False
        self._closed = False
        scheduler.set_callbacks(
            on_complete=self._handle_complete,
            on_error=self._handle_error,
            on_status=self._handle_status,
        )

    @property
    def document(self) -> HostDocument:
        return self._document

    @property
    def scheduler(self) -> AnalysisScheduler:
        return self._scheduler

    @property
    def manager(self) -> SuggestionLifecycleManager:
        return self._manager

    @property
    def event_bus(self) -> EventBus | None:
        return self._event_bus

    @property
    def status(self) -> AnalysisStatus:
        return self._scheduler.status

    @property
    def last_error(self) -> QuillmarkError | None:
        return self._last_error

    @property
    def user_message(self) -> str:
        """Message to show the writer, empty when the last analysis succeeded."""

        return self._last_error.user_message() if self._last_error is not None else ""

    def add_closer(self, closer: Closer) -> None:
        """Register a resource to release when the session closes."""

        self._closers.append(closer)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Begin tracking the document; analyzes the current text right away."""

        if self._closed:
            raise RuntimeError("AnalysisSession is closed")
        if self._started:
            return
        self._started = True
        self._document.add_listener(self._handle_document_changed)
        self._manager.start()
        self.request_analysis()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._document.remove_listener(self._handle_document_changed)
        await self._scheduler.aclose()
        await self._manager.aclose()
        for closer in reversed(self._closers):
            try:
                result = closer()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("Failed to release session resource %r", closer)
        self._closers.clear()

    def request_analysis(self) -> str | None:
        """Schedule analysis of the current text; returns the request id if any.

        Blank documents clear the overlay instead of being analyzed.
        """

        if self._closed:
            return None
        text = self._document.text
        if not text.strip():
            self._scheduler.cancel()
            self._manager.clear()
            return None
        try:
            return self._scheduler.schedule(text)
        except ValidationError as exc:
            LOGGER.info("Analysis not scheduled: %s", exc)
            self._last_error = exc
            self._publish(AnalysisStatusChanged(state="error", message=exc.user_message()))
            return None

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------
    def _handle_document_changed(self, step: StepMap) -> None:
        del step
        self.request_analysis()

    def _handle_complete(self, outcome: AnalysisOutcome) -> None:
        self._last_error = None
        self._manager.replace_all(outcome.result)
        self._manager.render()

    def _handle_error(self, error: QuillmarkError) -> None:
        self._last_error = error

    def _handle_status(self, status: AnalysisStatus) -> None:
        message = status.error.user_message() if status.error is not None else ""
        self._publish(
            AnalysisStatusChanged(
                state=status.state.value,
                request_id=status.request_id,
                cache_hit=status.cache_hit,
                message=message,
            )
        )

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)


def build_session(
    document: HostDocument,
    settings: Settings,
    *,
    backend: AnalysisBackend | None = None,
    store: KeyValueStore | None = None,
    event_bus: EventBus | None = None,
    overlay_sink: OverlaySink | None = None,
    on_suggestion_click: ClickHandler | None = None,
) -> AnalysisSession:
    """Construct the full analysis graph for ``document`` from ``settings``.

    When ``settings.log_dir`` is set the package log file is (re)configured
    first, so everything below logs with the session's redaction rules.
    """

    configure_logging(settings)
    bus = event_bus or EventBus()

    def _telemetry(name: str, payload: Mapping[str, Any]) -> None:
        bus.publish(TelemetryEvent(name=name, payload=dict(payload)))

    owned_backend = backend is None
    if backend is None:
        LOGGER.info(
            "Using analysis backend %s (model=%s, api_key=%s)",
            settings.base_url,
            settings.model,
            redact_secret(settings.api_key) or "<unset>",
        )
        backend = OpenAIAnalysisBackend(
            ClientSettings(
                base_url=settings.base_url,
                api_key=settings.api_key,
                model=settings.model,
                organization=settings.organization,
                request_timeout=settings.request_timeout,
                max_retries=settings.max_retries,
                retry_min_seconds=settings.retry_min_seconds,
                retry_max_seconds=settings.retry_max_seconds,
                temperature=settings.temperature,
                max_tokens=settings.max_tokens,
                default_headers=settings.default_headers or None,
                debug_logging=settings.debug_logging,
            )
        )

    if store is None:
        if settings.store_path:
            store = JsonFileKeyValueStore(settings.store_path)
        else:
            store = InMemoryKeyValueStore()

    cache = SuggestionCache(store, settings.cache.to_config(), telemetry_emitter=_telemetry)
    quota = QuotaTracker(store, settings.quota.to_config())
    max_characters = settings.max_realtime_characters if settings.realtime else settings.max_full_characters
    scheduler = AnalysisScheduler(
        backend,
        cache,
        quota,
        identity=settings.identity,
        options=settings.options(),
        config=SchedulerConfig(
            debounce_seconds=settings.debounce_seconds,
            realtime=settings.realtime,
            max_characters=max_characters,
        ),
        telemetry_emitter=_telemetry,
    )
    manager = SuggestionLifecycleManager(
        document,
        event_bus=bus,
        config=LifecycleConfig(sweep_interval_seconds=settings.sweep_interval_seconds),
        overlay_sink=overlay_sink,
        on_suggestion_click=on_suggestion_click,
    )
    session = AnalysisSession(document, scheduler, manager, event_bus=bus)
    session.add_closer(quota.aclose)
    if owned_backend and isinstance(backend, OpenAIAnalysisBackend):
        session.add_closer(backend.aclose)
    return session
