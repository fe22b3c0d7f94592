from __future__ import annotations

import uuid
from collections import deque
from typing import Any, Protocol

from brainshell.domain.models import (
    TERMINAL_STATES,
    CommandBlock,
    FSMEvent,
    FSMState,
    Session,
    utc_now_iso,
)
from brainshell.infrastructure.activity_logger import ActivityLogger


S = FSMState

TRANSITIONS: dict[FSMState, tuple[FSMState, ...]] = {
    S.IDLE: (S.AUTH_CHECK, S.ABORTED),
    S.AUTH_CHECK: (S.CONTEXT_SCAN, S.ABORTED),
    S.CONTEXT_SCAN: (S.API_CALL, S.ABORTED),
    S.API_CALL: (S.DISPLAY, S.ABORTED),
    S.DISPLAY: (S.PLAN_REVIEW, S.DONE, S.ABORTED),
    S.PLAN_REVIEW: (S.AWAITING_CONFIRM, S.DONE, S.ABORTED),
    S.AWAITING_CONFIRM: (S.EXECUTING, S.ABORTED),
    S.EXECUTING: (S.CMD_SUCCESS, S.CMD_FAILED, S.ABORTED),
    S.CMD_SUCCESS: (S.EXECUTING, S.DONE, S.ABORTED),
    S.CMD_FAILED: (S.ERROR_RECOVERY, S.ABORTED),
    S.ERROR_RECOVERY: (S.API_CALL, S.ABORTED),
    S.DONE: (S.IDLE,),
    S.ABORTED: (S.IDLE,),
}


class IllegalTransitionError(RuntimeError):
    def __init__(self, from_state: FSMState, to_state: FSMState) -> None:
        super().__init__(f"Illegal FSM transition: {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


class SessionSink(Protocol):
    def save(self, session: Session) -> None: ...


def is_allowed(from_state: FSMState, to_state: FSMState) -> bool:
    return to_state in TRANSITIONS.get(from_state, ())


def shortest_path(from_state: FSMState, to_state: FSMState) -> list[FSMState]:
    """Legal states to walk through, excluding ``from_state``, ending at ``to_state``."""
    if from_state == to_state:
        return []
    previous: dict[FSMState, FSMState] = {}
    queue: deque[FSMState] = deque([from_state])
    while queue:
        state = queue.popleft()
        for successor in TRANSITIONS[state]:
            if successor in previous or successor == from_state:
                continue
            previous[successor] = state
            if successor == to_state:
                path = [successor]
                while path[-1] != from_state and previous[path[-1]] != from_state:
                    path.append(previous[path[-1]])
                path.reverse()
                return path
            queue.append(successor)
    raise IllegalTransitionError(from_state, to_state)


class SessionFSM:
    """Owns one session's state and enforces the transition table.

    Every accepted transition appends an event and writes the whole
    session through ``sink`` before returning. Rejected transitions leave
    the session untouched and raise ``IllegalTransitionError``.
    """

    def __init__(
        self,
        session: Session,
        sink: SessionSink,
        activity_logger: ActivityLogger | None = None,
    ) -> None:
        self._session = session
        self._sink = sink
        self._activity_logger = activity_logger

    @classmethod
    def start(
        cls,
        *,
        prompt: str,
        mode: str,
        os_tag: str,
        sink: SessionSink,
        model: str = "",
        auto_execute: bool = False,
        activity_logger: ActivityLogger | None = None,
        session_id: str | None = None,
    ) -> "SessionFSM":
        session = Session(
            session_id=session_id or str(uuid.uuid4()),
            mode=mode,
            os=os_tag,
            prompt=prompt,
            model=model,
            auto_execute=auto_execute,
        )
        fsm = cls(session, sink, activity_logger)
        sink.save(session)
        return fsm

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> FSMState:
        return self._session.current_state

    @property
    def is_terminal(self) -> bool:
        return self._session.current_state in TERMINAL_STATES

    def can_transition(self, to_state: FSMState) -> bool:
        return is_allowed(self._session.current_state, to_state)

    def path_to(self, target: FSMState) -> list[FSMState]:
        return shortest_path(self._session.current_state, target)

    def _reject(self, to_state: FSMState) -> IllegalTransitionError:
        error = IllegalTransitionError(self._session.current_state, to_state)
        if self._activity_logger:
            self._activity_logger.log(
                action="fsm.transition.rejected",
                intent="Refused a transition that is not in the transition table.",
                details={
                    "from": self._session.current_state.value,
                    "to": to_state.value,
                },
            )
        return error

    def transition(self, to_state: FSMState, metadata: dict[str, Any] | None = None) -> FSMEvent:
        if not isinstance(to_state, FSMState):
            to_state = FSMState(to_state)
        if not self.can_transition(to_state):
            raise self._reject(to_state)

        from_state = self._session.current_state
        event = FSMEvent(
            from_state=from_state,
            to_state=to_state,
            timestamp=utc_now_iso(),
            metadata=dict(metadata) if metadata else None,
        )
        self._session.events.append(event)
        self._session.current_state = to_state
        if to_state in TERMINAL_STATES:
            self._session.ended_at = event.timestamp
        elif to_state == FSMState.IDLE:
            self._session.ended_at = None

        self._sink.save(self._session)
        if self._activity_logger:
            self._activity_logger.log(
                action="fsm.transition",
                intent="Recorded a session state change.",
                details={"from": from_state.value, "to": to_state.value, "metadata": metadata or {}},
            )
        return event

    def record_block_success(self, block: CommandBlock, metadata: dict[str, Any] | None = None) -> FSMEvent:
        if not self.can_transition(FSMState.CMD_SUCCESS):
            raise self._reject(FSMState.CMD_SUCCESS)
        session = self._session
        if block in session.pending_blocks:
            session.pending_blocks.remove(block)
        session.executed_commands.extend(block.lines)
        session.commands_executed += 1
        # The queue update reaches disk with this transition's write.
        return self.transition(FSMState.CMD_SUCCESS, metadata)

    def record_block_failure(self, block: CommandBlock, metadata: dict[str, Any] | None = None) -> FSMEvent:
        if not self.can_transition(FSMState.CMD_FAILED):
            raise self._reject(FSMState.CMD_FAILED)
        self._session.commands_failed += 1
        details = {"command": block.text[:200]}
        if metadata:
            details.update(metadata)
        return self.transition(FSMState.CMD_FAILED, details)

    def replace_plan(self, blocks: list[CommandBlock]) -> None:
        """Swap the pending queue; persisted by the next transition."""
        self._session.pending_blocks = list(blocks)

    def append_message(self, role: str, content: str) -> None:
        self._session.messages.append({"role": role, "content": content})
