from __future__ import annotations

import argparse
import getpass
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable

from brainshell.application.context_scan import ContextFileError, load_context_file
from brainshell.application.orchestrator import Orchestrator
from brainshell.config import Settings, load_user_config, mask_secret, save_user_config
from brainshell.domain.models import FSMState
from brainshell.domain.modes import resolve_mode
from brainshell.infrastructure.activity_logger import ActivityLogger
from brainshell.infrastructure.command_runner import CommandRunner
from brainshell.infrastructure.gateway_client import GatewayClient
from brainshell.infrastructure.model_io_logger import ModelIOLogger
from brainshell.infrastructure.session_store import SessionNotFoundError, SessionStore, SessionStoreError
from brainshell.infrastructure.telemetry import TelemetryReporter
from brainshell.interfaces.cli import format_modes, format_replay, print_sessions, run_cli
from brainshell.interfaces.confirmation import ConfirmationManager
from brainshell.interfaces.textual_replay import run_textual_replay


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="brainshell",
        description="Turn prompts into confirmed, recoverable shell sessions.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a task in the current directory.")
    run_parser.add_argument("prompt", nargs="*", help="Task description; empty starts the interactive shell.")
    run_parser.add_argument("-m", "--mode", default=None, help="Operating mode (see `brainshell modes`).")
    run_parser.add_argument(
        "-y",
        "--yolo",
        action="store_true",
        help="Run safe plans without asking; dangerous plans still ask.",
    )
    run_parser.add_argument("--model", default=None, help="Model id for this run.")
    run_parser.add_argument("--context-file", default=None, help="Attach a file to the model request.")

    resume_parser = subparsers.add_parser("resume", help="Continue the pending commands of a session.")
    resume_parser.add_argument("session_id")

    auth_parser = subparsers.add_parser("auth", help="Store the API key.")
    auth_parser.add_argument("api_key", nargs="?", default=None)

    config_parser = subparsers.add_parser("config", help="Show or change the configuration.")
    config_parser.add_argument("--set-model", default=None, help="Store a default model id.")

    subparsers.add_parser("modes", help="List operating modes.")

    sessions_parser = subparsers.add_parser("sessions", help="List recorded sessions, newest first.")
    sessions_parser.add_argument("-n", "--limit", type=int, default=20)

    replay_parser = subparsers.add_parser("replay", help="Show the recorded transitions of a session.")
    replay_parser.add_argument("session_id")
    replay_parser.add_argument("--ui", choices=("cli", "textual"), default="cli")

    return parser.parse_args(argv)


def _build_orchestrator(
    settings: Settings,
    confirmation: ConfirmationManager,
    activity_logger: ActivityLogger,
) -> Orchestrator:
    gateway = GatewayClient(
        base_url=settings.api_base_url,
        api_key=settings.api_key or "",
        model=settings.model,
        io_logger=ModelIOLogger(settings.model_io_log_path),
        activity_logger=activity_logger,
        request_timeout_seconds=settings.request_timeout_seconds,
        max_retries=settings.max_retries,
        retry_backoff_seconds=settings.retry_backoff_seconds,
    )
    telemetry = TelemetryReporter(
        settings.telemetry_url,
        settings.api_key,
        timeout_seconds=settings.telemetry_timeout_seconds,
        activity_logger=activity_logger,
        enabled=settings.telemetry_enabled,
    )
    return Orchestrator(
        settings,
        gateway,
        CommandRunner(timeout_seconds=settings.command_timeout_seconds, activity_logger=activity_logger),
        SessionStore(settings.sessions_dir),
        confirmation,
        telemetry=telemetry,
        activity_logger=activity_logger,
    )


def _require_credential(settings: Settings) -> bool:
    if settings.api_key:
        return True
    print("Error: not authenticated. Run `brainshell auth` first.", file=sys.stderr)
    return False


def _exit_code_for(state: FSMState) -> int:
    return 0 if state == FSMState.DONE else 1


def _cmd_run(args: argparse.Namespace, settings: Settings, activity_logger: ActivityLogger) -> int:
    if args.model:
        settings = replace(settings, model=args.model)
    try:
        mode, words = resolve_mode(args.mode, list(args.prompt))
    except ValueError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 2

    if not _require_credential(settings):
        return 1

    context = None
    if args.context_file:
        try:
            context = load_context_file(Path(args.context_file))
        except ContextFileError as error:
            print(f"Error: {error}", file=sys.stderr)
            return 1

    orchestrator = _build_orchestrator(settings, ConfirmationManager(), activity_logger)
    prompt = " ".join(words).strip()
    try:
        if not prompt:
            if not sys.stdin.isatty():
                print("Error: no prompt given.", file=sys.stderr)
                return 2
            run_cli(
                orchestrator,
                mode=mode,
                auto_execute=args.yolo,
                context=context,
                activity_logger=activity_logger,
            )
            return 0

        print(f"Thinking about: \"{prompt}\" ({mode}, {settings.model})")
        session = orchestrator.run(prompt, mode, auto_execute=args.yolo, context=context)
        print(f"\n[{session.current_state.value}] session {session.session_id}")
        return _exit_code_for(session.current_state)
    finally:
        orchestrator.flush_telemetry(settings.telemetry_timeout_seconds)


def _cmd_resume(args: argparse.Namespace, settings: Settings, activity_logger: ActivityLogger) -> int:
    if not _require_credential(settings):
        return 1
    orchestrator = _build_orchestrator(settings, ConfirmationManager(), activity_logger)
    try:
        session = orchestrator.resume(args.session_id)
    except SessionNotFoundError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    except SessionStoreError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    finally:
        orchestrator.flush_telemetry(settings.telemetry_timeout_seconds)
    print(f"\n[{session.current_state.value}] session {session.session_id}")
    if session.current_state in {FSMState.ABORTED, FSMState.CMD_FAILED}:
        return 1
    return 0


def _cmd_auth(
    args: argparse.Namespace,
    settings: Settings,
    secret_fn: Callable[[str], str] = getpass.getpass,
) -> int:
    api_key = (args.api_key or secret_fn("API key: ")).strip()
    if not api_key:
        print("Error: empty API key.", file=sys.stderr)
        return 1
    payload = load_user_config(settings.config_path)
    payload["apiKey"] = api_key
    save_user_config(settings.config_path, payload)
    print(f"Saved API key {mask_secret(api_key)} to {settings.config_path}")
    return 0


def _cmd_config(args: argparse.Namespace, settings: Settings) -> int:
    if args.set_model:
        payload = load_user_config(settings.config_path)
        payload["defaultModel"] = args.set_model
        save_user_config(settings.config_path, payload)
        settings = replace(settings, model=args.set_model)
        print(f"Default model set to {args.set_model}")

    print(f"API URL:       {settings.api_base_url}")
    print(f"API key:       {mask_secret(settings.api_key)}")
    print(f"Model:         {settings.model}")
    print(f"Config file:   {settings.config_path}")
    print(f"Sessions:      {settings.sessions_dir}")
    print(f"Activity log:  {settings.activity_log_path}")
    print(f"Model I/O log: {settings.model_io_log_path}")
    print(f"Telemetry:     {'ON' if settings.telemetry_enabled else 'OFF'}")
    return 0


def _cmd_replay(args: argparse.Namespace, settings: Settings) -> int:
    try:
        session = SessionStore(settings.sessions_dir).load(args.session_id)
    except SessionStoreError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    if args.ui == "textual":
        run_textual_replay(session)
    else:
        print(format_replay(session))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = Settings.from_env()
    activity_logger = ActivityLogger(settings.activity_log_path)

    try:
        if args.command == "run":
            return _cmd_run(args, settings, activity_logger)
        if args.command == "resume":
            return _cmd_resume(args, settings, activity_logger)
        if args.command == "auth":
            return _cmd_auth(args, settings)
        if args.command == "config":
            return _cmd_config(args, settings)
        if args.command == "modes":
            print(format_modes())
            return 0
        if args.command == "sessions":
            print_sessions(SessionStore(settings.sessions_dir).list_sessions(limit=args.limit))
            return 0
        if args.command == "replay":
            return _cmd_replay(args, settings)
    except KeyboardInterrupt:
        print("\nSession closed (Ctrl+C).")
        activity_logger.log(
            action="session.interrupt",
            intent="The operator ended the program with Ctrl+C.",
            details={"command": args.command},
        )
        return 130
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
