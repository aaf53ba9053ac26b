"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from quillmark.analysis.errors import BackendError
from quillmark.analysis.hashing import content_hash
from quillmark.analysis.models import (
    AnalysisRequest,
    AnalysisResult,
    GrammarSuggestion,
    ReadabilitySuggestion,
    StyleSuggestion,
    Suggestion,
)


class FakeClock:
    """Manually advanced clock for TTL and window tests."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeBackend:
    """Analysis backend returning canned results and recording requests."""

    def __init__(self) -> None:
        self.requests: list[AnalysisRequest] = []
        self.results: dict[str, AnalysisResult] = {}
        self.errors: list[BaseException] = []
        self.delay = 0.0
        self.gate: asyncio.Event | None = None

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        result = self.results.get(request.text)
        if result is not None:
            return result
        return AnalysisResult(content_hash=content_hash(request.text, request.options))

    def fail_with(self, error: BackendError) -> None:
        self.errors.append(error)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_suggestion() -> Callable[..., Suggestion]:
    """Factory building suggestions of any kind with sensible defaults."""

    counter = {"value": 0}
    classes: dict[str, type[Suggestion]] = {
        "grammar": GrammarSuggestion,
        "style": StyleSuggestion,
        "readability": ReadabilitySuggestion,
    }

    def _make(
        original: str,
        suggested: str,
        start: int = 0,
        end: int | None = None,
        *,
        kind: str = "grammar",
        id: str | None = None,
        **extra: Any,
    ) -> Suggestion:
        counter["value"] += 1
        return classes[kind](
            id=id or f"s{counter['value']}",
            original_text=original,
            suggested_text=suggested,
            start_offset=start,
            end_offset=start + len(original) if end is None else end,
            **extra,
        )

    return _make
