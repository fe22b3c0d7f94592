from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


DEFAULT_API_BASE_URL = "https://api.coding.super25.ai"
DEFAULT_MODEL = "glm-4.7-flash"


def _as_int(value: str | None, default: int) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _as_float(value: str | None, default: float) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on", "t"}:
        return True
    if normalized in {"0", "false", "no", "n", "off", "f"}:
        return False
    return default


def default_config_dir() -> Path:
    return Path.home() / ".brain"


def load_user_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    # PowerShell 5.x Set-Content writes a UTF-8 BOM.
    raw = config_path.read_text(encoding="utf-8").lstrip("\ufeff")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if not isinstance(payload, dict):
        return {}
    return payload


def save_user_config(config_path: Path, payload: dict[str, Any]) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def mask_secret(value: str | None) -> str:
    if not value:
        return "(not set)"
    return value[:8] + "..."


@dataclass(frozen=True)
class Settings:
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    config_dir: Path = Path("~/.brain")
    sessions_dir: Path = Path("~/.brain/sessions")
    activity_log_path: Path = Path("~/.brain/logs/activity.jsonl")
    model_io_log_path: Path = Path("~/.brain/logs/model_io.jsonl")
    request_timeout_seconds: int = 120
    max_retries: int = 1
    retry_backoff_seconds: float = 0.75
    command_timeout_seconds: int = 300
    telemetry_enabled: bool = True
    telemetry_timeout_seconds: float = 5.0
    clarify_on_empty: bool = True

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def gateway_chat_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/gateway/chat"

    @property
    def telemetry_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/sessions/report"

    @staticmethod
    def from_env() -> "Settings":
        config_dir = Path(os.getenv("BRAIN_CONFIG_DIR", str(default_config_dir()))).expanduser()
        user_config = load_user_config(config_dir / "config.json")

        api_key = os.getenv("BRAIN_API_KEY") or user_config.get("apiKey") or None
        model = os.getenv("BRAIN_MODEL") or user_config.get("defaultModel") or DEFAULT_MODEL

        return Settings(
            api_base_url=os.getenv("BRAIN_API_URL", DEFAULT_API_BASE_URL),
            api_key=str(api_key).strip() if api_key else None,
            model=str(model),
            config_dir=config_dir,
            sessions_dir=Path(
                os.getenv("BRAIN_SESSIONS_DIR", str(config_dir / "sessions"))
            ).expanduser(),
            activity_log_path=Path(
                os.getenv("BRAIN_ACTIVITY_LOG_PATH", str(config_dir / "logs" / "activity.jsonl"))
            ).expanduser(),
            model_io_log_path=Path(
                os.getenv("BRAIN_MODEL_IO_LOG_PATH", str(config_dir / "logs" / "model_io.jsonl"))
            ).expanduser(),
            request_timeout_seconds=max(
                5,
                _as_int(os.getenv("BRAIN_REQUEST_TIMEOUT_SECONDS"), default=120),
            ),
            max_retries=max(0, _as_int(os.getenv("BRAIN_MAX_RETRIES"), default=1)),
            retry_backoff_seconds=max(
                0.0,
                _as_float(os.getenv("BRAIN_RETRY_BACKOFF_SECONDS"), default=0.75),
            ),
            command_timeout_seconds=max(
                1,
                _as_int(os.getenv("BRAIN_COMMAND_TIMEOUT_SECONDS"), default=300),
            ),
            telemetry_enabled=_as_bool(os.getenv("BRAIN_TELEMETRY_ENABLED"), default=True),
            telemetry_timeout_seconds=max(
                0.5,
                _as_float(os.getenv("BRAIN_TELEMETRY_TIMEOUT_SECONDS"), default=5.0),
            ),
            clarify_on_empty=_as_bool(os.getenv("BRAIN_CLARIFY_ON_EMPTY"), default=True),
        )
