"""Shared utilities."""

from .logging import SecretRedactionFilter, configure_logging, get_log_path, shutdown_logging

__all__ = ["SecretRedactionFilter", "configure_logging", "get_log_path", "shutdown_logging"]
