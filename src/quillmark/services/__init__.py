"""Storage-facing services: key-value stores, result cache, quotas and settings."""

from .kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore
from .quota import QuotaConfig, QuotaDecision, QuotaRecord, QuotaStatus, QuotaTracker
from .settings import CacheSettings, QuotaSettings, SecretVault, Settings, SettingsStore
from .suggestion_cache import SuggestionCache, SuggestionCacheConfig, SuggestionCacheStats

__all__ = [
    "CacheSettings",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "QuotaConfig",
    "QuotaDecision",
    "QuotaRecord",
    "QuotaSettings",
    "QuotaStatus",
    "QuotaTracker",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "SuggestionCache",
    "SuggestionCacheConfig",
    "SuggestionCacheStats",
]
