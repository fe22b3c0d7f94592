from __future__ import annotations

import json
from pathlib import Path

from brainshell.application.safety_guard import check_path_access, has_unsafe_content
from brainshell.domain.modes import MODES, is_read_only


SNAPSHOT_MAX_ENTRIES = 25
CONTEXT_FILE_MAX_CHARS = 20_000

_PLATFORM_LABELS = {
    "windows": "Windows (PowerShell)",
    "linux": "Linux (bash)",
    "darwin": "macOS (bash)",
}


class ContextFileError(RuntimeError):
    pass


def platform_label(os_tag: str) -> str:
    return _PLATFORM_LABELS.get(os_tag, f"{os_tag} (sh)")


def _manifest_line(cwd: Path) -> str | None:
    package_json = cwd / "package.json"
    if package_json.is_file():
        try:
            manifest = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        if isinstance(manifest, dict):
            return f"  package: {manifest.get('name', '?')}@{manifest.get('version', '?')}"
        return None

    pyproject = cwd / "pyproject.toml"
    if pyproject.is_file():
        try:
            raw = pyproject.read_text(encoding="utf-8")
        except OSError:
            return None
        name = version = "?"
        for line in raw.splitlines():
            stripped = line.strip()
            if stripped.startswith("name") and "=" in stripped and name == "?":
                name = stripped.split("=", 1)[1].strip().strip("\"'")
            elif stripped.startswith("version") and "=" in stripped and version == "?":
                version = stripped.split("=", 1)[1].strip().strip("\"'")
        return f"  package: {name}@{version}"
    return None


def build_project_snapshot(cwd: Path) -> str:
    """Short listing of the working directory for the system prompt."""
    verdict = check_path_access(str(cwd), "list")
    if verdict.blocked:
        return f"  ({verdict.reason})"
    try:
        entries = sorted(cwd.iterdir(), key=lambda entry: entry.name)[:SNAPSHOT_MAX_ENTRIES]
    except OSError:
        return "  (unable to read directory)"

    lines = [f"  {'[dir] ' if entry.is_dir() else ''}{entry.name}" for entry in entries]
    manifest = _manifest_line(cwd)
    if manifest:
        lines.insert(0, manifest)
    return "\n".join(lines) or "  (empty directory)"


def build_system_prompt(mode: str, cwd: Path, os_tag: str) -> str:
    shell = "PowerShell" if os_tag == "windows" else "bash"
    base = (
        "You are an expert software engineer working in the user's terminal.\n"
        f"Platform: {platform_label(os_tag)}\n"
        f"Current working directory: {str(cwd).replace(chr(92), '/')}\n"
        f"Project:\n{build_project_snapshot(cwd)}\n\n"
        f"Mode: {MODES.get(mode, mode)}\n"
    )
    if is_read_only(mode):
        return base + (
            "This is a read-only analysis mode. Do not propose commands to run. "
            "Answer with clear, well-structured analysis text only.\n"
        )
    return base + (
        f"When the task needs shell commands, put them in fenced ```{shell.lower()} blocks. "
        "Each block is run as one unit, in order, after the user confirms it. "
        "Keep every block self-contained and avoid interactive commands. "
        "Explain briefly what the commands do outside the blocks.\n"
    )


def load_context_file(path: Path) -> str:
    """Read an extra context file the operator attached to the prompt."""
    verdict = check_path_access(str(path), "read")
    if verdict.blocked:
        raise ContextFileError(verdict.reason or f"Cannot read {path}")
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as error:
        raise ContextFileError(f"Cannot read context file {path}: {error}") from error

    verdict = has_unsafe_content(content)
    if verdict.blocked:
        raise ContextFileError(verdict.reason or f"Unsafe content in {path}")
    if len(content) > CONTEXT_FILE_MAX_CHARS:
        content = content[:CONTEXT_FILE_MAX_CHARS] + "\n...[truncated]"
    return f"File: {path.name}\n{content}"
