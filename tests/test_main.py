from __future__ import annotations

import json
from pathlib import Path

import pytest

from brainshell import main as main_module
from brainshell.application.fsm import SessionFSM
from brainshell.config import Settings
from brainshell.domain.models import FSMState, Session
from brainshell.infrastructure.session_store import SessionStore


class FakeOrchestrator:
    def __init__(self, final_state: FSMState = FSMState.DONE) -> None:
        self.final_state = final_state
        self.runs: list[tuple[str, str, bool, str | None]] = []
        self.flushed: list[float] = []

    def run(self, prompt, mode, auto_execute=False, context=None):  # type: ignore[no-untyped-def]
        self.runs.append((prompt, mode, auto_execute, context))
        return Session(session_id="s-1", mode=mode, os="linux", prompt=prompt, current_state=self.final_state)

    def resume(self, session_id):  # type: ignore[no-untyped-def]
        return Session(session_id=session_id, mode="default", os="linux", prompt="p", current_state=self.final_state)

    def flush_telemetry(self, timeout):  # type: ignore[no-untyped-def]
        self.flushed.append(timeout)


def _settings(tmp_path: Path, api_key: str | None = "sk-test-123456") -> Settings:
    return Settings(
        api_key=api_key,
        config_dir=tmp_path,
        sessions_dir=tmp_path / "sessions",
        activity_log_path=tmp_path / "logs" / "activity.jsonl",
        model_io_log_path=tmp_path / "logs" / "model_io.jsonl",
        telemetry_enabled=False,
    )


def _use_settings(monkeypatch, settings: Settings) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(main_module.Settings, "from_env", staticmethod(lambda: settings))


def _use_orchestrator(monkeypatch, orchestrator: FakeOrchestrator) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr(
        main_module,
        "_build_orchestrator",
        lambda settings, confirmation, activity_logger: orchestrator,
    )


def _actions(settings: Settings) -> list[str]:
    if not settings.activity_log_path.exists():
        return []
    lines = settings.activity_log_path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line)["action"] for line in lines]


def test_run_without_credential_fails(monkeypatch, tmp_path: Path, capsys) -> None:
    _use_settings(monkeypatch, _settings(tmp_path, api_key=None))

    assert main_module.main(["run", "list", "files"]) == 1
    assert "brainshell auth" in capsys.readouterr().err


def test_run_passes_mode_from_first_word(monkeypatch, tmp_path: Path) -> None:
    orchestrator = FakeOrchestrator()
    _use_settings(monkeypatch, _settings(tmp_path))
    _use_orchestrator(monkeypatch, orchestrator)

    assert main_module.main(["run", "fix", "the", "build", "-y"]) == 0
    assert orchestrator.runs == [("the build", "fix", True, None)]
    assert orchestrator.flushed


def test_run_exit_code_follows_final_state(monkeypatch, tmp_path: Path) -> None:
    _use_settings(monkeypatch, _settings(tmp_path))
    _use_orchestrator(monkeypatch, FakeOrchestrator(FSMState.ABORTED))

    assert main_module.main(["run", "deploy", "--mode", "default"]) == 1


def test_run_rejects_unknown_mode(monkeypatch, tmp_path: Path, capsys) -> None:
    _use_settings(monkeypatch, _settings(tmp_path))

    assert main_module.main(["run", "x", "--mode", "wizard"]) == 2
    assert "Unknown mode" in capsys.readouterr().err


def test_run_attaches_context_file(monkeypatch, tmp_path: Path) -> None:
    orchestrator = FakeOrchestrator()
    _use_settings(monkeypatch, _settings(tmp_path))
    _use_orchestrator(monkeypatch, orchestrator)
    notes = tmp_path / "notes.txt"
    notes.write_text("use pnpm", encoding="utf-8")

    assert main_module.main(["run", "install", "--context-file", str(notes)]) == 0
    assert orchestrator.runs[0][3] == "File: notes.txt\nuse pnpm"


def test_resume_without_credential_fails(monkeypatch, tmp_path: Path) -> None:
    _use_settings(monkeypatch, _settings(tmp_path, api_key=None))

    assert main_module.main(["resume", "abc"]) == 1


def test_resume_unknown_session_fails(monkeypatch, tmp_path: Path, capsys) -> None:
    _use_settings(monkeypatch, _settings(tmp_path))

    assert main_module.main(["resume", "missing"]) == 1
    assert "missing" in capsys.readouterr().err


def test_auth_saves_key(monkeypatch, tmp_path: Path, capsys) -> None:
    settings = _settings(tmp_path, api_key=None)
    _use_settings(monkeypatch, settings)

    assert main_module.main(["auth", "sk-new-key-0001"]) == 0

    saved = json.loads(settings.config_path.read_text(encoding="utf-8"))
    assert saved["apiKey"] == "sk-new-key-0001"
    output = capsys.readouterr().out
    assert "sk-new-k..." in output
    assert "sk-new-key-0001" not in output


def test_auth_prompts_for_key_when_missing(tmp_path: Path) -> None:
    settings = _settings(tmp_path, api_key=None)
    args = main_module._parse_args(["auth"])

    assert main_module._cmd_auth(args, settings, secret_fn=lambda prompt: "  sk-typed  ") == 0
    assert json.loads(settings.config_path.read_text(encoding="utf-8"))["apiKey"] == "sk-typed"
    assert main_module._cmd_auth(args, settings, secret_fn=lambda prompt: "") == 1


def test_config_masks_key_and_sets_model(monkeypatch, tmp_path: Path, capsys) -> None:
    settings = _settings(tmp_path)
    _use_settings(monkeypatch, settings)

    assert main_module.main(["config", "--set-model", "big-model"]) == 0

    output = capsys.readouterr().out
    assert "sk-test-..." in output
    assert "sk-test-123456" not in output
    assert "Model:         big-model" in output
    assert json.loads(settings.config_path.read_text(encoding="utf-8"))["defaultModel"] == "big-model"


def test_modes_and_sessions_listing(monkeypatch, tmp_path: Path, capsys) -> None:
    settings = _settings(tmp_path)
    _use_settings(monkeypatch, settings)

    assert main_module.main(["modes"]) == 0
    assert main_module.main(["sessions"]) == 0
    output = capsys.readouterr().out
    assert "migrate" in output
    assert "No sessions recorded." in output


def test_replay_prints_recorded_transitions(monkeypatch, tmp_path: Path, capsys) -> None:
    settings = _settings(tmp_path)
    _use_settings(monkeypatch, settings)
    store = SessionStore(settings.sessions_dir)
    fsm = SessionFSM.start(prompt="list files", mode="default", os_tag="linux", sink=store, session_id="r-1")
    fsm.transition(FSMState.AUTH_CHECK)
    fsm.transition(FSMState.ABORTED, {"reason": "missing credential"})

    assert main_module.main(["replay", "r-1"]) == 0
    output = capsys.readouterr().out
    assert "AUTH_CHECK -> ABORTED" in output
    assert "reason=missing credential" in output

    assert main_module.main(["replay", "nope"]) == 1


def test_main_returns_130_on_keyboard_interrupt(monkeypatch, tmp_path: Path, capsys) -> None:
    settings = _settings(tmp_path)
    _use_settings(monkeypatch, settings)

    def _interrupt(args, settings, activity_logger):  # type: ignore[no-untyped-def]
        raise KeyboardInterrupt

    monkeypatch.setattr(main_module, "_cmd_run", _interrupt)

    assert main_module.main(["run", "anything"]) == 130
    assert "Session closed (Ctrl+C)." in capsys.readouterr().out
    assert _actions(settings) == ["session.interrupt"]


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit):
        main_module._parse_args([])


@pytest.mark.parametrize(
    ("final_state", "expected"),
    [(FSMState.DONE, 0), (FSMState.CMD_FAILED, 1), (FSMState.ABORTED, 1), (FSMState.AWAITING_CONFIRM, 0)],
)
def test_resume_exit_code(monkeypatch, tmp_path: Path, final_state: FSMState, expected: int) -> None:
    orchestrator = FakeOrchestrator(final_state)
    _use_settings(monkeypatch, _settings(tmp_path))
    _use_orchestrator(monkeypatch, orchestrator)

    assert main_module.main(["resume", "abc"]) == expected
    assert orchestrator.flushed
