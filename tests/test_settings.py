"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from copydesk.services.settings import SecretVault, Settings, SettingsStore, redact_secret


@pytest.fixture(autouse=True)
def _clear_copydesk_env(monkeypatch: pytest.MonkeyPatch) -> None:
    import os

    for name in list(os.environ):
        if name.startswith("COPYDESK_"):
            monkeypatch.delenv(name, raising=False)


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))

    assert store.load() == Settings()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="gpt-4.1-mini",
        remote_url="https://sync.example.com",
        remote_api_key="remote-secret",
        storage_mode="cloud",
        autosave_delay=1.5,
        user_id="user-42",
    )

    store.save(original)
    reloaded = SettingsStore(path).load()

    assert reloaded == original


def test_secrets_are_encrypted_on_disk(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(api_key="super-secret", remote_api_key="remote-secret"))

    persisted = json.loads(path.read_text(encoding="utf-8"))

    assert "api_key" not in persisted
    assert "remote_api_key" not in persisted
    assert persisted["api_key_ciphertext"].startswith("fernet:")
    assert "super-secret" not in path.read_text(encoding="utf-8")


def test_load_legacy_plaintext_api_key_migrates(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(
        json.dumps({"base_url": "https://old", "api_key": "plain-key", "model": "gpt-3.5"}),
        encoding="utf-8",
    )

    loaded = SettingsStore(target).load()

    assert loaded.api_key == "plain-key"
    assert loaded.base_url == "https://old"
    persisted = json.loads(target.read_text(encoding="utf-8"))
    assert "api_key" not in persisted
    assert persisted["api_key_ciphertext"]


def test_unknown_storage_mode_falls_back_to_hybrid(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"storage_mode": "floppy", "version": 2}), encoding="utf-8")

    assert SettingsStore(target).load().storage_mode == "hybrid"


def test_env_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(base_url="https://local", api_key="abc"))
    monkeypatch.setenv("COPYDESK_BASE_URL", "https://env-base")
    monkeypatch.setenv("COPYDESK_API_KEY", "env-key")
    monkeypatch.setenv("COPYDESK_USER_ID", "env-user")

    overridden = SettingsStore(path).load()

    assert overridden.base_url == "https://env-base"
    assert overridden.api_key == "env-key"
    assert overridden.user_id == "env-user"


def test_bool_and_float_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings())
    monkeypatch.setenv("COPYDESK_DEBUG_LOGGING", "true")
    monkeypatch.setenv("COPYDESK_AUTOSAVE_DELAY", "0.25")
    monkeypatch.setenv("COPYDESK_REMOTE_TIMEOUT", "not-a-number")

    overridden = SettingsStore(path).load()

    assert overridden.debug_logging is True
    assert overridden.autosave_delay == pytest.approx(0.25)
    assert overridden.remote_timeout == pytest.approx(Settings().remote_timeout)


def test_load_applies_cli_overrides(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    store.save(Settings(base_url="https://ui", request_timeout=45.0))

    loaded = store.load(overrides={"base_url": "https://cli", "request_timeout": 30.5})

    assert loaded.base_url == "https://cli"
    assert loaded.request_timeout == pytest.approx(30.5)


def test_env_overrides_take_priority_over_cli(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    store.save(Settings(base_url="https://ui"))
    monkeypatch.setenv("COPYDESK_BASE_URL", "https://env")

    loaded = store.load(overrides={"base_url": "https://cli"})

    assert loaded.base_url == "https://env"


def test_remote_enabled_depends_on_url_and_mode() -> None:
    assert Settings().remote_enabled is False
    assert Settings(remote_url="https://sync").remote_enabled is True
    assert Settings(remote_url="https://sync", storage_mode="local").remote_enabled is False


def test_secret_vault_roundtrip_and_rejects_foreign_tokens(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "settings.key")

    token = vault.encrypt("super-secret")

    assert token.startswith("fernet:")
    assert vault.decrypt(token) == "super-secret"
    assert SecretVault(key_path=tmp_path / "settings.key").decrypt(token) == "super-secret"
    with pytest.raises(ValueError):
        vault.decrypt("dpapi:abc")
    with pytest.raises(ValueError):
        SecretVault(key_path=tmp_path / "other.key").decrypt(token)


def test_redact_secret() -> None:
    assert redact_secret("") == ""
    assert redact_secret("abc") == "***"
    assert redact_secret("sk-123456") == "sk*****56"
