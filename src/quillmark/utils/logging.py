"""Logging configuration driven by :class:`~quillmark.services.settings.Settings`.

Records from the ``quillmark`` logger tree go to a rotating ``quillmark.log``
inside ``Settings.log_dir``. Every installed handler carries a
:class:`SecretRedactionFilter`, so API keys are masked before anything is
written, including the prompt payloads emitted when ``debug_logging`` is on.
"""

from __future__ import annotations

import logging
import logging.handlers
import re
from pathlib import Path
from typing import Iterable

from ..services.settings import Settings, redact_secret

__all__ = ["SecretRedactionFilter", "configure_logging", "get_log_path", "shutdown_logging"]

LOGGER = logging.getLogger(__name__)

_PACKAGE_LOGGER = "quillmark"
_LOG_FILENAME = "quillmark.log"
_HANDLER_NAME = "quillmark-log"
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai")
_API_KEY_PATTERN = re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}")
_LOG_PATH: Path | None = None


class SecretRedactionFilter(logging.Filter):
    """Masks configured secrets and ``sk-`` style keys in log messages."""

    def __init__(self, secrets: Iterable[str | None] = ()) -> None:
        super().__init__()
        cleaned = {secret.strip() for secret in secrets if secret and secret.strip()}
        self._secrets = tuple(sorted(cleaned, key=len, reverse=True))

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, redact_secret(secret))
        return _API_KEY_PATTERN.sub(lambda match: redact_secret(match.group(0)), text)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(
    settings: Settings,
    *,
    console: bool = False,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> Path | None:
    """Attach the rotating log file described by ``settings``.

    Returns ``None`` without touching logging when ``settings.log_dir`` is
    unset. Calling again replaces the handlers installed by the previous call,
    so a settings change (new directory, debug toggle, rotated key) takes
    effect immediately.
    """

    global _LOG_PATH
    if not settings.log_dir:
        return None

    level = logging.DEBUG if settings.debug_logging else logging.INFO
    target_dir = Path(settings.log_dir).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILENAME

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    redaction = SecretRedactionFilter([settings.api_key])
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    _remove_installed_handlers(package_logger)
    for handler in handlers:
        handler.set_name(_HANDLER_NAME)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(redaction)
        package_logger.addHandler(handler)
    package_logger.setLevel(level)

    quiet_level = logging.WARNING if level < logging.WARNING else level
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _LOG_PATH = log_path
    LOGGER.info("Logging to %s (debug=%s)", log_path, settings.debug_logging)
    return log_path


def shutdown_logging() -> None:
    """Detach and close the handlers installed by :func:`configure_logging`."""

    global _LOG_PATH
    _remove_installed_handlers(logging.getLogger(_PACKAGE_LOGGER))
    _LOG_PATH = None


def get_log_path() -> Path | None:
    return _LOG_PATH


def _remove_installed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)
            handler.close()
