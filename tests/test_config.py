from __future__ import annotations

import json
from pathlib import Path

from brainshell.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_MODEL,
    Settings,
    load_user_config,
    mask_secret,
    save_user_config,
)


_ENV_KEYS = (
    "BRAIN_API_URL",
    "BRAIN_API_KEY",
    "BRAIN_MODEL",
    "BRAIN_SESSIONS_DIR",
    "BRAIN_ACTIVITY_LOG_PATH",
    "BRAIN_MODEL_IO_LOG_PATH",
    "BRAIN_REQUEST_TIMEOUT_SECONDS",
    "BRAIN_MAX_RETRIES",
    "BRAIN_RETRY_BACKOFF_SECONDS",
    "BRAIN_COMMAND_TIMEOUT_SECONDS",
    "BRAIN_TELEMETRY_ENABLED",
    "BRAIN_TELEMETRY_TIMEOUT_SECONDS",
    "BRAIN_CLARIFY_ON_EMPTY",
)


def _clean_env(monkeypatch, config_dir: Path) -> None:  # type: ignore[no-untyped-def]
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BRAIN_CONFIG_DIR", str(config_dir))


def test_defaults_without_env_or_config(monkeypatch, tmp_path: Path) -> None:
    _clean_env(monkeypatch, tmp_path)

    settings = Settings.from_env()

    assert settings.api_base_url == DEFAULT_API_BASE_URL
    assert settings.api_key is None
    assert settings.model == DEFAULT_MODEL
    assert settings.sessions_dir == tmp_path / "sessions"
    assert settings.activity_log_path == tmp_path / "logs" / "activity.jsonl"
    assert settings.gateway_chat_url == f"{DEFAULT_API_BASE_URL}/gateway/chat"
    assert settings.telemetry_url == f"{DEFAULT_API_BASE_URL}/sessions/report"
    assert settings.telemetry_enabled is True
    assert settings.clarify_on_empty is True


def test_user_config_with_bom_is_read(monkeypatch, tmp_path: Path) -> None:
    _clean_env(monkeypatch, tmp_path)
    payload = json.dumps({"apiKey": "sk-from-file", "defaultModel": "file-model"})
    (tmp_path / "config.json").write_bytes(b"\xef\xbb\xbf" + payload.encode("utf-8"))

    settings = Settings.from_env()

    assert settings.api_key == "sk-from-file"
    assert settings.model == "file-model"


def test_env_wins_over_user_config(monkeypatch, tmp_path: Path) -> None:
    _clean_env(monkeypatch, tmp_path)
    save_user_config(tmp_path / "config.json", {"apiKey": "sk-file", "defaultModel": "file-model"})
    monkeypatch.setenv("BRAIN_API_KEY", "sk-env")
    monkeypatch.setenv("BRAIN_MODEL", "env-model")
    monkeypatch.setenv("BRAIN_API_URL", "http://localhost:8787/")

    settings = Settings.from_env()

    assert settings.api_key == "sk-env"
    assert settings.model == "env-model"
    assert settings.gateway_chat_url == "http://localhost:8787/gateway/chat"


def test_invalid_numbers_and_flags_fall_back(monkeypatch, tmp_path: Path) -> None:
    _clean_env(monkeypatch, tmp_path)
    monkeypatch.setenv("BRAIN_MAX_RETRIES", "many")
    monkeypatch.setenv("BRAIN_REQUEST_TIMEOUT_SECONDS", "1")
    monkeypatch.setenv("BRAIN_RETRY_BACKOFF_SECONDS", "-3")
    monkeypatch.setenv("BRAIN_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("BRAIN_CLARIFY_ON_EMPTY", "maybe")

    settings = Settings.from_env()

    assert settings.max_retries == 1
    assert settings.request_timeout_seconds == 5
    assert settings.retry_backoff_seconds == 0.0
    assert settings.telemetry_enabled is False
    assert settings.clarify_on_empty is True


def test_malformed_user_config_is_empty(tmp_path: Path) -> None:
    (tmp_path / "broken.json").write_text("{oops", encoding="utf-8")
    (tmp_path / "list.json").write_text("[1, 2]", encoding="utf-8")

    assert load_user_config(tmp_path / "broken.json") == {}
    assert load_user_config(tmp_path / "list.json") == {}
    assert load_user_config(tmp_path / "missing.json") == {}


def test_mask_secret() -> None:
    assert mask_secret("sk-1234567890") == "sk-12345..."
    assert mask_secret(None) == "(not set)"
    assert mask_secret("") == "(not set)"
