"""Anchoring and lifecycle of suggestions over a live document."""

from .anchoring import AnchorConfig, AnchorResolver
from .lifecycle import (
    BulkOutcome,
    LifecycleConfig,
    LiveSuggestion,
    SuggestionLifecycleManager,
    SuggestionState,
)

__all__ = [
    "AnchorConfig",
    "AnchorResolver",
    "BulkOutcome",
    "LifecycleConfig",
    "LiveSuggestion",
    "SuggestionLifecycleManager",
    "SuggestionState",
]
