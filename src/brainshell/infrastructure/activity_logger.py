from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class ActivityLogger:
    """Append-only JSONL log of what brainshell did and why.

    Loggers returned by ``bind`` share the file and add ``session_id`` to
    every record they write.
    """

    def __init__(self, log_path: Path, session_id: str | None = None) -> None:
        self._log_path = log_path
        self._session_id = session_id
        log_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def log_path(self) -> Path:
        return self._log_path

    def bind(self, session_id: str) -> "ActivityLogger":
        return ActivityLogger(self._log_path, session_id=session_id)

    def _append(self, record: dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False, default=str)
        with self._log_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")

    def log(self, *, action: str, intent: str, details: dict[str, Any] | None = None) -> None:
        record: dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        if self._session_id:
            record["session_id"] = self._session_id
        record.update(action=action, intent=intent, details=details or {})
        self._append(record)
