from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol

from brainshell.application.command_extractor import extract_command_blocks, flatten_blocks
from brainshell.application.context_scan import build_system_prompt
from brainshell.application.fsm import SessionFSM
from brainshell.application.safety_guard import find_dangerous_lines, is_dangerous_command, is_safe
from brainshell.config import Settings
from brainshell.domain.models import CommandBlock, CommandResult, FSMState, Session
from brainshell.domain.modes import is_read_only
from brainshell.infrastructure.activity_logger import ActivityLogger
from brainshell.infrastructure.gateway_client import GatewayClientError
from brainshell.infrastructure.session_store import SessionStore
from brainshell.infrastructure.telemetry import TelemetryReporter
from brainshell.interfaces.confirmation import ConfirmationManager


S = FSMState

CLARIFY_PROMPT = (
    "Your previous answer contained no runnable command block. If the task "
    "needs commands, reply again with them in fenced shell blocks. If it does "
    "not, answer briefly without commands."
)


class Gateway(Protocol):
    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        mode: str,
        os_tag: str,
        context: str | None = None,
    ) -> str: ...


class Runner(Protocol):
    @property
    def os_tag(self) -> str: ...

    def execute(self, block: CommandBlock) -> CommandResult: ...


ContextProvider = Callable[[str, str], str]


@dataclass(frozen=True)
class Turn:
    """One model round: the user message to send and why it is sent."""

    content: str
    kind: str = "prompt"


def recovery_prompt(result: CommandResult) -> str:
    parts = [
        f"The command below failed with exit code {result.exit_code}.",
        "Command:",
        result.command,
    ]
    if result.stderr:
        parts += ["stderr:", result.stderr[-2000:]]
    if result.stdout:
        parts += ["stdout:", result.stdout[-1000:]]
    parts.append("Propose corrected commands that complete the original task.")
    return "\n".join(parts)


def _default_context_provider(mode: str, os_tag: str) -> str:
    return build_system_prompt(mode, Path.cwd(), os_tag)


class Orchestrator:
    """Drives one prompt (or one resumed session) through the FSM lifecycle.

    Recovery never recurses: a failed command that the operator wants fixed
    produces a follow-up ``Turn`` on the work queue, processed by the same
    loop against the same session.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: Gateway,
        runner: Runner,
        store: SessionStore,
        confirmation: ConfirmationManager,
        telemetry: TelemetryReporter | None = None,
        activity_logger: ActivityLogger | None = None,
        context_provider: ContextProvider | None = None,
    ) -> None:
        self._settings = settings
        self._gateway = gateway
        self._runner = runner
        self._store = store
        self._confirmation = confirmation
        self._telemetry = telemetry
        self._activity_logger = activity_logger
        self._context_provider = context_provider or _default_context_provider
        self.telemetry_threads: list[threading.Thread] = []

    def _log(self, action: str, intent: str, details: dict[str, Any], session: Session | None = None) -> None:
        if not self._activity_logger:
            return
        logger = self._activity_logger.bind(session.session_id) if session else self._activity_logger
        logger.log(action=action, intent=intent, details=details)

    def _fsm_logger(self, session_id: str) -> ActivityLogger | None:
        return self._activity_logger.bind(session_id) if self._activity_logger else None

    def flush_telemetry(self, timeout: float) -> None:
        for thread in self.telemetry_threads:
            thread.join(timeout)
        self.telemetry_threads = [thread for thread in self.telemetry_threads if thread.is_alive()]

    def _report(self, session: Session) -> None:
        if self._telemetry is None or not self._telemetry.enabled:
            return
        self.telemetry_threads.append(self._telemetry.report(session))

    def _abort(self, fsm: SessionFSM, metadata: dict[str, Any]) -> None:
        if fsm.can_transition(S.ABORTED):
            fsm.transition(S.ABORTED, metadata)

    def run(
        self,
        prompt: str,
        mode: str,
        auto_execute: bool = False,
        context: str | None = None,
    ) -> Session:
        session_id = str(uuid.uuid4())
        fsm = SessionFSM.start(
            prompt=prompt,
            mode=mode,
            os_tag=self._runner.os_tag,
            sink=self._store,
            model=self._settings.model,
            auto_execute=auto_execute,
            activity_logger=self._fsm_logger(session_id),
            session_id=session_id,
        )
        try:
            self._drive(fsm, prompt, context)
        except KeyboardInterrupt:
            self._confirmation.notify("Interrupted; session aborted.")
            self._abort(fsm, {"reason": "interrupted"})
            raise
        finally:
            self._report(fsm.session)
        return fsm.session

    def _drive(self, fsm: SessionFSM, prompt: str, context: str | None) -> None:
        session = fsm.session
        fsm.transition(S.AUTH_CHECK)
        if not self._settings.api_key:
            self._confirmation.notify("Not authenticated. Run `brainshell auth` first.")
            fsm.transition(S.ABORTED, {"reason": "missing credential"})
            return

        fsm.transition(S.CONTEXT_SCAN)
        system_prompt = self._context_provider(session.mode, session.os)

        queue: deque[Turn] = deque([Turn(content=prompt)])
        while queue:
            turn = queue.popleft()
            follow_up = self._run_turn(fsm, turn, system_prompt, context)
            if follow_up is not None:
                queue.append(follow_up)

    def _ask_model(self, fsm: SessionFSM, system_prompt: str, context: str | None) -> str:
        session = fsm.session
        return self._gateway.chat(
            [{"role": "system", "content": system_prompt}, *session.messages],
            mode=session.mode,
            os_tag=session.os,
            context=context,
        )

    def _run_turn(
        self,
        fsm: SessionFSM,
        turn: Turn,
        system_prompt: str,
        context: str | None,
    ) -> Turn | None:
        session = fsm.session
        read_only = is_read_only(session.mode)
        fsm.append_message("user", turn.content)
        fsm.transition(S.API_CALL, {"turn": turn.kind})

        clarified = False
        try:
            answer = self._ask_model(fsm, system_prompt, context)
            blocks = extract_command_blocks(answer)
            if not blocks and not read_only and self._settings.clarify_on_empty:
                clarified = True
                fsm.append_message("assistant", answer)
                fsm.append_message("user", CLARIFY_PROMPT)
                answer = self._ask_model(fsm, system_prompt, context)
                blocks = extract_command_blocks(answer)
        except GatewayClientError as error:
            self._confirmation.notify(f"Model call failed: {error}")
            fsm.transition(S.ABORTED, {"reason": "model call failed", "error": str(error)[:500]})
            return None

        fsm.append_message("assistant", answer)
        fsm.transition(S.DISPLAY, {"blocks": len(blocks), "clarified": clarified})
        self._confirmation.show(answer)

        # A fix replaces only the failed head block; the blocks queued after it still run.
        recovery = turn.kind == "recovery"
        if not blocks:
            if recovery:
                fsm.transition(S.ABORTED, {"reason": "no fix proposed"})
            else:
                fsm.transition(S.DONE, {"reason": "read-only mode" if read_only else "no commands"})
            return None
        if read_only:
            fsm.transition(S.DONE, {"reason": "read-only mode"})
            return None

        fsm.transition(S.PLAN_REVIEW)
        plan, refusals = self._review(fsm, blocks)
        if not plan:
            if recovery:
                fsm.transition(S.ABORTED, {"reason": "fix refused", "refusals": refusals})
            else:
                fsm.replace_plan([])
                fsm.transition(S.DONE, {"reason": "all blocks refused", "refusals": refusals})
            return None
        if recovery:
            plan = plan + session.pending_blocks[1:]
        fsm.replace_plan(plan)

        auto = session.auto_execute
        downgraded = False
        if auto and is_dangerous_command("\n".join(flatten_blocks(plan))).blocked:
            flagged = find_dangerous_lines(flatten_blocks(plan))
            auto = False
            downgraded = True
            self._confirmation.notify("Dangerous commands in plan; switching to manual confirmation.")
            self._log(
                "plan.downgraded",
                "Auto-execution turned off because the plan has dangerous lines.",
                {"lines": [line for line, _ in flagged], "categories": [rule.category for _, rule in flagged]},
                session,
            )

        self._confirmation.reset_plan()
        metadata: dict[str, Any] = {"blocks": len(plan), "autoExecute": auto}
        if refusals:
            metadata["refusals"] = refusals
        if downgraded:
            metadata["downgraded"] = True
        fsm.transition(S.AWAITING_CONFIRM, metadata)
        return self._execute_plan(fsm, auto=auto, offer_fix=True)

    def _review(self, fsm: SessionFSM, blocks: list[CommandBlock]) -> tuple[list[CommandBlock], list[dict[str, str]]]:
        plan: list[CommandBlock] = []
        refusals: list[dict[str, str]] = []
        for block in blocks:
            verdict = is_safe(block.text)
            if not verdict.blocked:
                plan.append(block)
                continue
            refusal = {
                "command": block.text[:200],
                "category": verdict.category or "",
                "reason": verdict.reason or "",
            }
            refusals.append(refusal)
            self._confirmation.notify(f"Refused: {verdict.reason}")
            self._log("safety.blocked", "Dropped a plan block that matched a blocked rule.", refusal, fsm.session)
        return plan, refusals

    def _execute_plan(self, fsm: SessionFSM, *, auto: bool, offer_fix: bool) -> Turn | None:
        session = fsm.session
        total = len(session.pending_blocks)
        index = 0
        while session.pending_blocks:
            block = session.pending_blocks[0]
            index += 1
            if not auto:
                warnings = find_dangerous_lines(block.lines)
                if not self._confirmation.confirm_block(block, index=index, total=total, warnings=warnings):
                    fsm.transition(S.ABORTED, {"reason": "declined", "command": block.text[:200]})
                    return None

            fsm.transition(S.EXECUTING, {"command": block.text[:200]})
            result = self._runner.execute(block)
            if result.stdout:
                self._confirmation.show(result.stdout)

            if result.ok:
                fsm.record_block_success(block, {"exitCode": result.exit_code})
                continue

            fsm.record_block_failure(
                block,
                {
                    "exitCode": result.exit_code,
                    "timedOut": result.timed_out,
                    "stderr": result.stderr[-500:],
                },
            )
            if not offer_fix:
                self._confirmation.notify("Stopped at the first failing block.")
                return None
            if not self._confirmation.confirm_fix(result):
                fsm.transition(S.ABORTED, {"reason": "fix declined"})
                return None
            fsm.transition(S.ERROR_RECOVERY, {"command": block.text[:200]})
            return Turn(content=recovery_prompt(result), kind="recovery")

        fsm.transition(S.DONE, {"commandsExecuted": session.commands_executed})
        return None

    def resume(self, session_id: str) -> Session:
        fsm = self._store.restore(session_id, self._fsm_logger(session_id))
        session = fsm.session
        if not session.pending_blocks:
            self._confirmation.notify(f"Session {session_id} has no pending commands; nothing to resume.")
            return session

        try:
            # Steps before AWAITING_CONFIRM are walked without a model call or command behind them.
            for state in fsm.path_to(S.AWAITING_CONFIRM):
                metadata: dict[str, Any] = {"resume": True}
                if state != S.AWAITING_CONFIRM:
                    metadata["synthetic"] = True
                fsm.transition(state, metadata)

            # The record on disk may have been edited since it was written.
            plan, refusals = self._review(fsm, list(session.pending_blocks))
            fsm.replace_plan(plan)
            if not plan:
                fsm.transition(S.ABORTED, {"resume": True, "reason": "all blocks refused", "refusals": refusals})
                return session

            self._confirmation.reset_plan()
            self._confirmation.notify(f"Resuming {len(plan)} pending block(s) for session {session_id}.")
            self._execute_plan(fsm, auto=False, offer_fix=False)
        except KeyboardInterrupt:
            self._confirmation.notify("Interrupted; session aborted.")
            self._abort(fsm, {"reason": "interrupted", "resume": True})
            raise
        finally:
            self._report(session)
        return session
