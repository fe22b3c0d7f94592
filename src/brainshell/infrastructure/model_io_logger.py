from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class ModelIOLogger:
    """JSONL trace of every gateway request, response and failure."""

    def __init__(self, log_path: Path) -> None:
        self._log_path = log_path
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

    def _write(self, event: str, request_id: str, model: str, endpoint: str, **fields: Any) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "request_id": request_id,
            "model": model,
            "endpoint": endpoint,
            **fields,
        }
        with self._log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def log_input(self, *, request_id: str, model: str, endpoint: str, payload: dict[str, Any]) -> None:
        self._write("model_input", request_id, model, endpoint, payload=payload)

    def log_output(self, *, request_id: str, model: str, endpoint: str, response: dict[str, Any]) -> None:
        self._write("model_output", request_id, model, endpoint, response=response)

    def log_error(self, *, request_id: str, model: str, endpoint: str, error: str, attempt: int) -> None:
        self._write("model_error", request_id, model, endpoint, error=error, attempt=attempt)
