from __future__ import annotations

import json
import os
import re
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from brainshell.domain.models import Session
from brainshell.infrastructure.activity_logger import ActivityLogger

if TYPE_CHECKING:
    from brainshell.application.fsm import SessionFSM


_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class SessionStoreError(RuntimeError):
    pass


class SessionNotFoundError(SessionStoreError):
    pass


class SessionStore:
    """One JSON file per session under ``sessions_dir``.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so a crash mid-write leaves the previous
    record intact.
    """

    def __init__(self, sessions_dir: Path) -> None:
        self._sessions_dir = sessions_dir
        self._sessions_dir.mkdir(parents=True, exist_ok=True)

    @property
    def sessions_dir(self) -> Path:
        return self._sessions_dir

    def path_for(self, session_id: str) -> Path:
        if not _SESSION_ID_PATTERN.match(session_id or ""):
            raise SessionStoreError(f"Invalid session id: {session_id!r}")
        return self._sessions_dir / f"{session_id}.json"

    def exists(self, session_id: str) -> bool:
        return self.path_for(session_id).exists()

    def save(self, session: Session) -> None:
        target = self.path_for(session.session_id)
        payload = json.dumps(session.to_dict(), indent=2, ensure_ascii=False)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{session.session_id}.",
            suffix=".tmp",
            dir=str(self._sessions_dir),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, target)
        except OSError as error:
            Path(temp_name).unlink(missing_ok=True)
            raise SessionStoreError(f"Cannot write session {session.session_id}: {error}") from error

    def load(self, session_id: str) -> Session:
        path = self.path_for(session_id)
        if not path.exists():
            raise SessionNotFoundError(f"No session record: {session_id}")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            raise SessionStoreError(f"Unreadable session record {path}: {error}") from error
        if not isinstance(payload, dict):
            raise SessionStoreError(f"Session record {path} is not a JSON object.")
        try:
            return Session.from_dict(payload)
        except (KeyError, ValueError, TypeError) as error:
            raise SessionStoreError(f"Malformed session record {path}: {error}") from error

    def restore(self, session_id: str, activity_logger: ActivityLogger | None = None) -> "SessionFSM":
        from brainshell.application.fsm import SessionFSM

        return SessionFSM(self.load(session_id), self, activity_logger)

    def list_sessions(self, limit: int = 20) -> list[Session]:
        paths = sorted(
            self._sessions_dir.glob("*.json"),
            key=lambda path: path.stat().st_mtime,
            reverse=True,
        )
        sessions: list[Session] = []
        for path in paths:
            if len(sessions) >= max(0, limit):
                break
            try:
                sessions.append(self.load(path.stem))
            except SessionStoreError:
                continue
        return sessions
