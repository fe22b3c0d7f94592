from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


FSM_VERSION = "1.0.0"


class FSMState(str, Enum):
    IDLE = "IDLE"
    AUTH_CHECK = "AUTH_CHECK"
    CONTEXT_SCAN = "CONTEXT_SCAN"
    API_CALL = "API_CALL"
    DISPLAY = "DISPLAY"
    PLAN_REVIEW = "PLAN_REVIEW"
    AWAITING_CONFIRM = "AWAITING_CONFIRM"
    EXECUTING = "EXECUTING"
    CMD_SUCCESS = "CMD_SUCCESS"
    CMD_FAILED = "CMD_FAILED"
    ERROR_RECOVERY = "ERROR_RECOVERY"
    DONE = "DONE"
    ABORTED = "ABORTED"


TERMINAL_STATES = frozenset({FSMState.DONE, FSMState.ABORTED})


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class FSMEvent:
    from_state: FSMState
    to_state: FSMState
    timestamp: str
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "timestamp": self.timestamp,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "FSMEvent":
        metadata = payload.get("metadata")
        return FSMEvent(
            from_state=FSMState(payload["from"]),
            to_state=FSMState(payload["to"]),
            timestamp=str(payload.get("timestamp", "")),
            metadata=dict(metadata) if isinstance(metadata, dict) else None,
        )


@dataclass(frozen=True)
class CommandBlock:
    lines: tuple[str, ...]
    language: str | None = None

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    def to_dict(self) -> dict[str, Any]:
        return {"lines": list(self.lines), "language": self.language}

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "CommandBlock":
        raw_lines = payload.get("lines", [])
        lines = tuple(str(line) for line in raw_lines) if isinstance(raw_lines, list) else ()
        language = payload.get("language")
        return CommandBlock(lines=lines, language=str(language) if language else None)


@dataclass
class Session:
    session_id: str
    mode: str
    os: str
    prompt: str
    model: str = ""
    auto_execute: bool = False
    current_state: FSMState = FSMState.IDLE
    events: list[FSMEvent] = field(default_factory=list)
    commands_executed: int = 0
    commands_failed: int = 0
    pending_blocks: list[CommandBlock] = field(default_factory=list)
    executed_commands: list[str] = field(default_factory=list)
    messages: list[dict[str, str]] = field(default_factory=list)
    started_at: str = field(default_factory=utc_now_iso)
    ended_at: str | None = None

    @property
    def pending_commands(self) -> list[str]:
        return [line for block in self.pending_blocks for line in block.lines]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "mode": self.mode,
            "os": self.os,
            "model": self.model,
            "prompt": self.prompt,
            "autoExecute": self.auto_execute,
            "currentState": self.current_state.value,
            "events": [event.to_dict() for event in self.events],
            "commandsExecuted": self.commands_executed,
            "commandsFailed": self.commands_failed,
            "pendingCommands": self.pending_commands,
            "pendingBlocks": [block.to_dict() for block in self.pending_blocks],
            "executedCommands": list(self.executed_commands),
            "messages": [dict(message) for message in self.messages],
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "fsmVersion": FSM_VERSION,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "Session":
        raw_blocks = payload.get("pendingBlocks")
        if isinstance(raw_blocks, list):
            pending_blocks = [
                CommandBlock.from_dict(item) for item in raw_blocks if isinstance(item, dict)
            ]
        else:
            # Records without block grouping replay one line per block.
            pending_blocks = [
                CommandBlock(lines=(str(line),))
                for line in payload.get("pendingCommands", [])
                if str(line).strip()
            ]

        return Session(
            session_id=str(payload["sessionId"]),
            mode=str(payload.get("mode", "default")),
            os=str(payload.get("os", "")),
            prompt=str(payload.get("prompt", "")),
            model=str(payload.get("model", "")),
            auto_execute=bool(payload.get("autoExecute", False)),
            current_state=FSMState(payload.get("currentState", FSMState.IDLE.value)),
            events=[
                FSMEvent.from_dict(item)
                for item in payload.get("events", [])
                if isinstance(item, dict)
            ],
            commands_executed=int(payload.get("commandsExecuted", 0)),
            commands_failed=int(payload.get("commandsFailed", 0)),
            pending_blocks=[block for block in pending_blocks if block.lines],
            executed_commands=[str(line) for line in payload.get("executedCommands", [])],
            messages=[
                {"role": str(item.get("role", "")), "content": str(item.get("content", ""))}
                for item in payload.get("messages", [])
                if isinstance(item, dict)
            ],
            started_at=str(payload.get("startedAt", "")),
            ended_at=payload.get("endedAt"),
        )


@dataclass(frozen=True)
class CommandResult:
    command: str
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
