from __future__ import annotations

import json
import socket
import threading
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from brainshell.domain.models import FSM_VERSION, Session
from brainshell.infrastructure.activity_logger import ActivityLogger


PROMPT_MAX_CHARS = 500


class TelemetryReporter:
    """Fire-and-forget session reports.

    Delivery problems are written to the activity log and never reach the
    caller; a failed report must not change the outcome of a session.
    """

    def __init__(
        self,
        endpoint_url: str,
        api_key: str | None,
        *,
        timeout_seconds: float = 5.0,
        activity_logger: ActivityLogger | None = None,
        enabled: bool = True,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._activity_logger = activity_logger
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def build_payload(session: Session) -> dict[str, Any]:
        return {
            "sessionId": session.session_id,
            "mode": session.mode,
            "os": session.os,
            "prompt": session.prompt[:PROMPT_MAX_CHARS],
            "events": [event.to_dict() for event in session.events],
            "finalState": session.current_state.value,
            "commandsExecuted": session.commands_executed,
            "commandsFailed": session.commands_failed,
            "fsmVersion": FSM_VERSION,
        }

    def _log(self, action: str, intent: str, details: dict[str, Any]) -> None:
        if not self._activity_logger:
            return
        try:
            self._activity_logger.log(action=action, intent=intent, details=details)
        except OSError:
            # A full or read-only log disk must not turn a report into a crash.
            return

    def _log_failure(self, session: Session, error: str) -> None:
        self._log(
            "telemetry.failed",
            "Telemetry delivery failed; the session result is unaffected.",
            {"session_id": session.session_id, "error": error},
        )

    def deliver(self, session: Session) -> bool:
        if not self._enabled:
            return False
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            request = Request(
                url=self._endpoint_url,
                data=json.dumps(self.build_payload(session), default=str).encode("utf-8"),
                headers=headers,
                method="POST",
            )
            with urlopen(request, timeout=self._timeout_seconds) as response:
                status = getattr(response, "status", 200)
        except HTTPError as error:
            self._log_failure(session, f"HTTP {error.code}")
            return False
        except URLError as error:
            self._log_failure(session, f"Cannot connect: {error.reason}")
            return False
        except (TimeoutError, socket.timeout, OSError, ValueError) as error:
            self._log_failure(session, str(error))
            return False
        except Exception as error:
            # deliver() runs on a daemon thread and must never raise.
            self._log_failure(session, f"{type(error).__name__}: {error}")
            return False

        self._log(
            "telemetry.sent",
            "Reported the finished session.",
            {"session_id": session.session_id, "status": status},
        )
        return True

    def report(self, session: Session) -> threading.Thread:
        # The worker sends a snapshot taken now, not the live session.
        snapshot = Session.from_dict(session.to_dict())
        thread = threading.Thread(
            target=self.deliver,
            args=(snapshot,),
            name=f"telemetry-{session.session_id[:8]}",
            daemon=True,
        )
        thread.start()
        return thread
