from __future__ import annotations

import os
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path

from brainshell.domain.models import CommandBlock, CommandResult
from brainshell.infrastructure.activity_logger import ActivityLogger


TIMEOUT_EXIT_CODE = 124
LAUNCH_FAILURE_EXIT_CODE = 127


def detect_os_tag() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class CommandRunner:
    def __init__(
        self,
        *,
        os_tag: str | None = None,
        timeout_seconds: int = 300,
        work_dir: Path | None = None,
        activity_logger: ActivityLogger | None = None,
    ) -> None:
        self._os_tag = os_tag or detect_os_tag()
        self._timeout_seconds = timeout_seconds
        self._work_dir = work_dir
        self._activity_logger = activity_logger

    @property
    def os_tag(self) -> str:
        return self._os_tag

    def _cwd(self) -> Path:
        return (self._work_dir or Path.cwd()).resolve()

    def execute(self, block: CommandBlock) -> CommandResult:
        """Run one block to completion; failures come back as results."""
        command_text = block.text
        if not command_text.strip():
            return CommandResult(command=command_text, exit_code=1, stdout="", stderr="Empty command block")

        cwd = self._cwd()
        if not cwd.is_dir():
            return CommandResult(
                command=command_text,
                exit_code=1,
                stdout="",
                stderr=f"Directory does not exist: {cwd}",
            )

        if self._os_tag == "windows":
            result = self._execute_powershell(command_text, cwd)
        else:
            result = self._execute_posix(command_text, cwd)

        if self._activity_logger:
            self._activity_logger.log(
                action="command.finished",
                intent="Recorded the outcome of one command block.",
                details={
                    "command": command_text[:500],
                    "exit_code": result.exit_code,
                    "timed_out": result.timed_out,
                    "stderr_tail": result.stderr[-500:],
                },
            )
        return result

    def _execute_posix(self, command_text: str, cwd: Path) -> CommandResult:
        shell = shutil.which("bash") or "/bin/sh"
        script = "set -e\n" + command_text + "\n"
        return self._run([shell, "-c", script], command_text, cwd)

    def _execute_powershell(self, command_text: str, cwd: Path) -> CommandResult:
        # Multi-line scripts go through a file; inline -Command quoting breaks on them.
        script = (
            '$ErrorActionPreference = "Stop"\n'
            f"Set-Location -LiteralPath '{str(cwd).replace(chr(39), chr(39) * 2)}'\n"
            f"{command_text}\n"
        )
        fd, temp_name = tempfile.mkstemp(prefix="brain-", suffix=".ps1")
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8-sig") as handle:
                handle.write(script)
            return self._run(
                [
                    "powershell.exe",
                    "-NoProfile",
                    "-NonInteractive",
                    "-ExecutionPolicy",
                    "Bypass",
                    "-File",
                    str(temp_path),
                ],
                command_text,
                cwd,
            )
        finally:
            temp_path.unlink(missing_ok=True)

    def _run(self, argv: list[str], command_text: str, cwd: Path) -> CommandResult:
        try:
            completed = subprocess.run(
                argv,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=str(cwd),
                stdin=subprocess.DEVNULL,
                timeout=self._timeout_seconds,
            )
        except subprocess.TimeoutExpired as error:
            stderr = _decode(error.stderr).rstrip()
            message = f"Command timed out after {self._timeout_seconds}s"
            return CommandResult(
                command=command_text,
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_decode(error.stdout).rstrip(),
                stderr=f"{stderr}\n{message}".strip(),
                timed_out=True,
            )
        except OSError as error:
            return CommandResult(
                command=command_text,
                exit_code=LAUNCH_FAILURE_EXIT_CODE,
                stdout="",
                stderr=f"Cannot start shell {argv[0]}: {error}",
            )
        return CommandResult(
            command=command_text,
            exit_code=completed.returncode,
            stdout=(completed.stdout or "").rstrip(),
            stderr=(completed.stderr or "").rstrip(),
        )
