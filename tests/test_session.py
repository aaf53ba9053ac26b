"""End-to-end tests: document edits drive analysis, rendering and acceptance."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from quillmark.ai.scheduler import AnalysisState
from quillmark.analysis.errors import BackendCategory, BackendError, ValidationError
from quillmark.analysis.hashing import content_hash
from quillmark.analysis.models import AnalysisOptions, AnalysisResult, GrammarSuggestion
from quillmark.documents import DecorationSet, RichTextDocument
from quillmark.events import AnalysisStatusChanged, EventBus, SuggestionsReplaced, TelemetryEvent
from quillmark.services.kv_store import InMemoryKeyValueStore
from quillmark.services.settings import Settings
from quillmark.session import build_session

TEXT = "The students goes to school."


def make_settings(**overrides) -> Settings:
    values = {
        "api_key": "sk-test",
        "debounce_seconds": 0.01,
        "realtime": False,
        "sweep_interval_seconds": 0,
    }
    values.update(overrides)
    return Settings(**values)


def canned_result(text: str) -> AnalysisResult:
    return AnalysisResult(
        content_hash=content_hash(text, AnalysisOptions()),
        grammar_suggestions=(
            GrammarSuggestion(
                id="g1",
                original_text="students goes",
                suggested_text="students go",
                start_offset=4,
                end_offset=17,
                explanation="Subject-verb agreement",
            ),
        ),
    )


class TestAnalysisSession:
    """Tests for AnalysisSession wired through build_session."""

    @pytest.mark.asyncio
    async def test_analysis_renders_and_accept_reanalyzes(self, fake_backend) -> None:
        fake_backend.results[TEXT] = canned_result(TEXT)
        document = RichTextDocument.from_text(TEXT)
        pushed: list[DecorationSet] = []
        session = build_session(
            document,
            make_settings(),
            backend=fake_backend,
            store=InMemoryKeyValueStore(),
            overlay_sink=pushed.append,
        )

        session.start()
        await session.scheduler.drain()

        assert len(session.manager) == 1
        decoration = pushed[-1].find_by_id("g1")
        assert decoration is not None and (decoration.start, decoration.end) == (4, 17)
        assert session.status.state is AnalysisState.COMPLETE
        assert session.user_message == ""

        assert session.manager.accept("g1") is True
        assert document.text == "The students go to school."
        assert session.scheduler.state is AnalysisState.PENDING

        await session.scheduler.drain()
        assert [request.text for request in fake_backend.requests] == [TEXT, "The students go to school."]
        assert len(session.manager) == 0
        await session.aclose()

    @pytest.mark.asyncio
    async def test_events_are_published(self, fake_backend) -> None:
        bus = EventBus()
        statuses: list[AnalysisStatusChanged] = []
        replaced: list[SuggestionsReplaced] = []
        telemetry: list[str] = []
        bus.subscribe(AnalysisStatusChanged, statuses.append)
        bus.subscribe(SuggestionsReplaced, replaced.append)
        bus.subscribe(TelemetryEvent, lambda event: telemetry.append(event.name))
        fake_backend.results[TEXT] = canned_result(TEXT)

        session = build_session(
            RichTextDocument.from_text(TEXT), make_settings(), backend=fake_backend, event_bus=bus
        )
        session.start()
        await session.scheduler.drain()

        assert [event.state for event in statuses] == ["pending", "analyzing", "complete"]
        assert replaced[-1].count == 1
        assert "analysis.requested" in telemetry
        assert "cache.miss" in telemetry
        assert "analysis.completed" in telemetry
        await session.aclose()

    @pytest.mark.asyncio
    async def test_rapid_edits_analyze_once(self, fake_backend) -> None:
        document = RichTextDocument.from_text("Hello")
        session = build_session(document, make_settings(debounce_seconds=0.05), backend=fake_backend)
        session.start()
        for char in " world.":
            document.insert(document.size, char)
        await session.scheduler.drain()

        assert [request.text for request in fake_backend.requests] == ["Hello world."]
        await session.aclose()

    @pytest.mark.asyncio
    async def test_blank_document_clears_overlay(self, fake_backend) -> None:
        fake_backend.results[TEXT] = canned_result(TEXT)
        document = RichTextDocument.from_text(TEXT)
        session = build_session(document, make_settings(), backend=fake_backend)
        session.start()
        await session.scheduler.drain()
        assert len(session.manager) == 1

        document.delete(0, document.size)
        await session.scheduler.drain()

        assert len(session.manager) == 0
        assert len(fake_backend.requests) == 1
        await session.aclose()

    @pytest.mark.asyncio
    async def test_too_long_text_reports_validation_error(self, fake_backend) -> None:
        bus = EventBus()
        statuses: list[AnalysisStatusChanged] = []
        bus.subscribe(AnalysisStatusChanged, statuses.append)
        document = RichTextDocument.from_text("x" * 20)
        session = build_session(
            document, make_settings(max_full_characters=10), backend=fake_backend, event_bus=bus
        )

        session.start()

        assert isinstance(session.last_error, ValidationError)
        assert "10" in session.user_message
        assert statuses[-1].state == "error"
        assert fake_backend.requests == []
        await session.aclose()

    @pytest.mark.asyncio
    async def test_backend_failure_surfaces_user_message(self, fake_backend) -> None:
        fake_backend.fail_with(BackendError(message="timed out", category=BackendCategory.TIMEOUT))
        bus = EventBus()
        statuses: list[AnalysisStatusChanged] = []
        bus.subscribe(AnalysisStatusChanged, statuses.append)
        session = build_session(
            RichTextDocument.from_text(TEXT), make_settings(), backend=fake_backend, event_bus=bus
        )

        session.start()
        await session.scheduler.drain()

        assert session.user_message == "The request timed out. Please try again."
        assert statuses[-1].state == "error"
        assert statuses[-1].message == session.user_message

        session.request_analysis()
        await session.scheduler.drain()
        assert session.last_error is None
        await session.aclose()

    @pytest.mark.asyncio
    async def test_json_store_persists_cache(self, fake_backend, tmp_path: Path) -> None:
        store_path = tmp_path / "store.json"
        session = build_session(
            RichTextDocument.from_text(TEXT),
            make_settings(store_path=str(store_path)),
            backend=fake_backend,
        )
        session.start()
        await session.scheduler.drain()
        await session.aclose()

        keys = set(json.loads(store_path.read_text(encoding="utf-8")))
        assert any(key.startswith("analysis_cache:") for key in keys)
        assert "rate_limit:local" in keys

    @pytest.mark.asyncio
    async def test_default_backend_is_built_and_closed(self) -> None:
        session = build_session(RichTextDocument.from_text(TEXT), make_settings())
        closed: list[str] = []
        session.add_closer(lambda: closed.append("extra"))

        await session.aclose()
        await session.aclose()

        assert closed == ["extra"]
        assert session.request_analysis() is None
        with pytest.raises(RuntimeError):
            session.start()
