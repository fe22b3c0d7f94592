from __future__ import annotations

from typing import Callable, Iterable

from brainshell.application.orchestrator import Orchestrator
from brainshell.domain.models import FSMEvent, Session
from brainshell.domain.modes import DEFAULT_MODE, MODES, READ_ONLY_MODES, resolve_mode
from brainshell.infrastructure.activity_logger import ActivityLogger


InputFn = Callable[[str], str]
OutputFn = Callable[[str], None]

HELP_TEXT = """Commands:
  /help            show this help
  /modes           list operating modes
  /mode <name>     switch mode for the next prompts
  /yolo            toggle auto-execution of safe plans
  /quit            leave the shell
Anything else is sent to the model as a prompt. A first word naming a mode
(e.g. `fix the failing build`) selects that mode for one prompt."""


def format_modes() -> str:
    lines = []
    for name, label in MODES.items():
        marker = " (read-only)" if name in READ_ONLY_MODES else ""
        lines.append(f"  {name:<10} {label}{marker}")
    return "\n".join(lines)


def format_event_line(event: FSMEvent) -> str:
    line = f"{event.timestamp}  {event.from_state.value:>16} -> {event.to_state.value}"
    if event.metadata:
        details = ", ".join(f"{key}={value}" for key, value in event.metadata.items())
        if len(details) > 120:
            details = details[:117] + "..."
        line += f"  [{details}]"
    return line


def format_session_summary(session: Session) -> str:
    prompt = session.prompt if len(session.prompt) <= 60 else session.prompt[:57] + "..."
    return (
        f"{session.session_id}  {session.current_state.value:<16} "
        f"mode={session.mode} ok={session.commands_executed} failed={session.commands_failed} "
        f"pending={len(session.pending_blocks)}  {prompt}"
    )


def format_replay(session: Session) -> str:
    lines = [
        f"Session:  {session.session_id}",
        f"Prompt:   {session.prompt}",
        f"Mode:     {session.mode}    OS: {session.os}    Model: {session.model or '-'}",
        f"State:    {session.current_state.value}",
        f"Started:  {session.started_at}    Ended: {session.ended_at or '-'}",
        f"Commands: executed={session.commands_executed} failed={session.commands_failed}",
        "",
        "Events:",
    ]
    lines.extend(f"  {format_event_line(event)}" for event in session.events)
    if session.executed_commands:
        lines.append("")
        lines.append("Executed:")
        lines.extend(f"  $ {command}" for command in session.executed_commands)
    if session.pending_blocks:
        lines.append("")
        lines.append("Pending (run `brainshell resume` to continue):")
        for block in session.pending_blocks:
            lines.extend(f"  $ {command}" for command in block.lines)
    return "\n".join(lines)


def print_sessions(sessions: Iterable[Session], output_fn: OutputFn = print) -> int:
    count = 0
    for session in sessions:
        output_fn(format_session_summary(session))
        count += 1
    if count == 0:
        output_fn("No sessions recorded.")
    return count


def run_cli(
    orchestrator: Orchestrator,
    *,
    mode: str = DEFAULT_MODE,
    auto_execute: bool = False,
    context: str | None = None,
    input_fn: InputFn = input,
    output_fn: OutputFn = print,
    activity_logger: ActivityLogger | None = None,
) -> None:
    """Interactive prompt loop; each line becomes one session."""

    def log_action(action: str, intent: str, details: dict | None = None) -> None:
        if activity_logger:
            activity_logger.log(action=action, intent=intent, details=details)

    current_mode = mode
    output_fn("brainshell interactive mode. Type /help for commands, /quit to leave.")
    log_action("cli.start", "Started the interactive prompt loop.", {"mode": current_mode})

    while True:
        try:
            raw = input_fn(f"\nbrain[{current_mode}{'!' if auto_execute else ''}]> ").strip()
        except EOFError:
            output_fn("")
            break
        except KeyboardInterrupt:
            output_fn("\nClosed (Ctrl+C).")
            break

        if not raw:
            continue

        if raw in {"/quit", "/exit"}:
            break

        if raw == "/help":
            output_fn(HELP_TEXT)
            continue

        if raw == "/modes":
            output_fn(format_modes())
            continue

        if raw.startswith("/mode"):
            parts = raw.split(maxsplit=1)
            if len(parts) < 2 or parts[1].strip() not in MODES:
                output_fn("Usage: /mode <name>  (see /modes)")
                continue
            current_mode = parts[1].strip()
            output_fn(f"Mode: {MODES[current_mode]}")
            log_action("cli.mode", "Switched the operating mode.", {"mode": current_mode})
            continue

        if raw == "/yolo":
            auto_execute = not auto_execute
            output_fn(f"Auto-execute: {'ON' if auto_execute else 'OFF'}")
            continue

        if current_mode == DEFAULT_MODE:
            turn_mode, words = resolve_mode(None, raw.split())
        else:
            turn_mode, words = current_mode, raw.split()
        prompt = " ".join(words)
        if not prompt:
            continue

        try:
            session = orchestrator.run(prompt, turn_mode, auto_execute=auto_execute, context=context)
        except KeyboardInterrupt:
            output_fn("\nInterrupted; the session was aborted.")
            continue
        output_fn(f"\n[{session.current_state.value}] session {session.session_id}")
