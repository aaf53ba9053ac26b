"""Tests for settings persistence, secret storage and overrides."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from quillmark.analysis.models import AnalysisOptions
from quillmark.services.settings import (
    CacheSettings,
    QuotaSettings,
    SecretVault,
    Settings,
    SettingsStore,
    redact_secret,
)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "QUILLMARK_API_KEY",
        "QUILLMARK_BASE_URL",
        "QUILLMARK_MODEL",
        "QUILLMARK_ORGANIZATION",
        "QUILLMARK_STORE_PATH",
        "QUILLMARK_LOG_DIR",
        "QUILLMARK_DEBUG_LOGGING",
        "QUILLMARK_REALTIME",
        "QUILLMARK_REQUEST_TIMEOUT",
        "QUILLMARK_TEMPERATURE",
        "QUILLMARK_DEBOUNCE_SECONDS",
        "QUILLMARK_MAX_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)


def make_store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    settings = make_store(tmp_path).load()
    assert settings == Settings()
    assert settings.options() == AnalysisOptions()


def test_roundtrip_encrypts_api_key(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    settings = Settings(api_key="sk-secret-value", model="gpt-4o-mini", identity="alice")
    store.save(settings)

    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert "api_key" not in raw
    assert raw["api_key_ciphertext"].startswith("fernet:")
    assert "sk-secret-value" not in store.path.read_text(encoding="utf-8")

    loaded = make_store(tmp_path).load()
    assert loaded.api_key == "sk-secret-value"
    assert loaded.model == "gpt-4o-mini"
    assert loaded.identity == "alice"


def test_nested_settings_roundtrip(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.save(Settings(quota=QuotaSettings(max_requests=5), cache=CacheSettings(ttl_hours=2)))
    loaded = store.load()
    assert loaded.quota.to_config().max_requests == 5
    assert loaded.cache.to_config().ttl_seconds == 7200


def test_legacy_plaintext_key_is_migrated(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.path.write_text(json.dumps({"api_key": "sk-legacy", "version": 1}), encoding="utf-8")

    settings = store.load()

    assert settings.api_key == "sk-legacy"
    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert "api_key" not in raw
    assert raw["api_key_ciphertext"].startswith("fernet:")


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.path.write_text("{broken", encoding="utf-8")
    assert store.load() == Settings()


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.path.write_text(json.dumps({"model": "m", "theme": "dark", "version": 1}), encoding="utf-8")
    assert store.load().model == "m"


def test_invalid_quota_block_uses_defaults(tmp_path: Path) -> None:
    store = make_store(tmp_path)
    store.path.write_text(json.dumps({"quota": {"bogus": 1}, "version": 1}), encoding="utf-8")
    assert store.load().quota == QuotaSettings()


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = make_store(tmp_path)
    store.save(Settings(api_key="sk-disk"))
    monkeypatch.setenv("QUILLMARK_API_KEY", "sk-env")
    monkeypatch.setenv("QUILLMARK_REALTIME", "off")
    monkeypatch.setenv("QUILLMARK_MAX_RETRIES", "5")
    monkeypatch.setenv("QUILLMARK_DEBOUNCE_SECONDS", "0.5")
    monkeypatch.setenv("QUILLMARK_REQUEST_TIMEOUT", "not-a-number")
    monkeypatch.setenv("QUILLMARK_LOG_DIR", str(tmp_path / "logs"))

    settings = store.load()

    assert settings.api_key == "sk-env"
    assert settings.realtime is False
    assert settings.max_retries == 5
    assert settings.debounce_seconds == 0.5
    assert settings.request_timeout == 30.0
    assert settings.log_dir == str(tmp_path / "logs")


def test_runtime_overrides_ignore_unknown_and_none(tmp_path: Path) -> None:
    settings = make_store(tmp_path).load(overrides={"model": "override", "nope": 1, "identity": None})
    assert settings.model == "override"
    assert settings.identity == "local"


def test_vault_roundtrip_and_key_reuse(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "nested" / "vault.key")
    token = vault.encrypt("hunter2")
    assert vault.key_path.exists()
    assert SecretVault(key_path=vault.key_path).decrypt(token) == "hunter2"
    assert vault.encrypt("") == ""
    assert vault.decrypt(None) == ""


def test_vault_rejects_tampered_token(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "vault.key")
    token = vault.encrypt("hunter2")
    with pytest.raises(ValueError):
        vault.decrypt(token[:-4] + "AAAA")


def test_undecryptable_key_is_dropped(tmp_path: Path) -> None:
    make_store(tmp_path).save(Settings(api_key="sk-secret"))
    other = SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "other.key"))
    assert other.load().api_key == ""


@pytest.mark.parametrize(
    "value,expected",
    [("", ""), ("abc", "***"), ("sk-123456", "sk*****56"), ("  sk-1234  ", "sk***34")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected
