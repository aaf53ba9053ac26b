"""Analysis backend contract and an OpenAI-compatible implementation."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol, runtime_checkable

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_random

from ..analysis.errors import BackendCategory, BackendError
from ..analysis.hashing import content_hash
from ..analysis.models import AnalysisRequest, AnalysisResult
from ..analysis.parsing import ParseConfig, parse_analysis_response
from .prompts import build_messages

__all__ = [
    "AnalysisBackend",
    "ClientSettings",
    "OpenAIAnalysisBackend",
    "categorize_exception",
]

LOGGER = logging.getLogger(__name__)
_DEFAULT_RATE_LIMIT_RETRY_SECONDS = 60


@runtime_checkable
class AnalysisBackend(Protocol):
    """Anything that turns text into a validated annotation set."""

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """Analyze ``request.text``; raise :class:`BackendError` on failure."""


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the backend client."""

    base_url: str
    api_key: str
    model: str = "gpt-3.5-turbo"
    organization: str | None = None
    request_timeout: float | None = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 1.0
    retry_max_seconds: float = 10.0
    temperature: float = 0.2
    realtime_temperature: float = 0.1
    max_tokens: int = 2_000
    realtime_max_tokens: int = 1_000
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False


def categorize_exception(exc: BaseException) -> BackendError:
    """Map transport and API exceptions onto :class:`BackendError` categories."""

    if isinstance(exc, BackendError):
        return exc
    if isinstance(exc, (APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return BackendError(message=f"Request timed out: {exc}", category=BackendCategory.TIMEOUT)
    if isinstance(exc, RateLimitError):
        return BackendError(
            message="Backend rate limit exceeded",
            category=BackendCategory.RATE_LIMIT,
            retry_after=_retry_after(exc),
        )
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return BackendError(message=f"Backend rejected credentials: {exc}", category=BackendCategory.AUTH)
    if isinstance(exc, APIStatusError):
        status = exc.status_code
        if status >= 500:
            category = BackendCategory.SERVER
        elif status in (400, 404, 409, 413, 422):
            category = BackendCategory.BAD_REQUEST
        else:
            category = BackendCategory.UNKNOWN
        return BackendError(
            message=f"Backend returned HTTP {status}: {exc.message}",
            category=category,
            details={"status": status},
        )
    if isinstance(exc, (APIConnectionError, httpx.TransportError, ConnectionError)):
        return BackendError(message=f"Network failure: {exc}", category=BackendCategory.NETWORK)
    if isinstance(exc, APIError):
        return BackendError(message=f"Backend error: {exc}", category=BackendCategory.UNKNOWN)
    return BackendError(message=f"Unexpected backend failure: {exc}", category=BackendCategory.UNKNOWN)


def _retry_after(exc: APIStatusError) -> int:
    headers = getattr(getattr(exc, "response", None), "headers", None) or {}
    raw = headers.get("retry-after") if hasattr(headers, "get") else None
    try:
        return max(1, int(float(raw))) if raw is not None else _DEFAULT_RATE_LIMIT_RETRY_SECONDS
    except (TypeError, ValueError):
        return _DEFAULT_RATE_LIMIT_RETRY_SECONDS


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.is_retryable


class OpenAIAnalysisBackend:
    """Chat-completions backed analysis with bounded retries for transient failures."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        parse_config: ParseConfig | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._parse_config = parse_config or ParseConfig()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        started = time.perf_counter()
        payload = self._build_payload(request)
        LOGGER.debug(
            "Requesting %s analysis %s via %s (%d chars)",
            "realtime" if request.realtime else "full",
            request.request_id,
            self._settings.model,
            len(request.text),
        )
        if self._settings.debug_logging:
            self._log_payload(payload)
        raw = await self._complete(payload)
        parsed = parse_analysis_response(raw, self._parse_config)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        result = parsed.to_result(content_hash(request.text, request.options), processing_time_ms=elapsed_ms)
        LOGGER.debug(
            "Analysis %s produced %d suggestion(s) in %.0fms",
            request.request_id,
            result.total_suggestions,
            elapsed_ms,
        )
        return result

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _complete(self, payload: Mapping[str, Any]) -> str:
        content = ""
        async for attempt in self._retrying():
            with attempt:
                try:
                    response = await self._client.chat.completions.create(**payload)
                except (APIError, httpx.HTTPError, asyncio.TimeoutError) as exc:
                    error = categorize_exception(exc)
                    LOGGER.warning(
                        "Analysis backend call failed (%s, attempt %d): %s",
                        error.category,
                        attempt.retry_state.attempt_number,
                        error.message,
                    )
                    raise error from exc
                choices = getattr(response, "choices", None) or []
                message = getattr(choices[0], "message", None) if choices else None
                content = getattr(message, "content", None) or ""
                if not content:
                    raise BackendError(
                        message="Empty response from analysis backend",
                        category=BackendCategory.SERVER,
                    )
                break
        return content

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            )
            + wait_random(0, self._settings.retry_min_seconds),
            retry=retry_if_exception(_is_retryable),
        )

    def _build_payload(self, request: AnalysisRequest) -> Dict[str, Any]:
        settings = self._settings
        return {
            "model": settings.model,
            "messages": build_messages(request.text, request.options, realtime=request.realtime),
            "temperature": settings.realtime_temperature if request.realtime else settings.temperature,
            "max_tokens": settings.realtime_max_tokens if request.realtime else settings.max_tokens,
        }

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            max_retries=0,
            default_headers=headers,
        )

    def _log_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Analysis payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Analysis payload:\n%s", serialized)
