from __future__ import annotations

import re
import textwrap
from typing import Iterable

from brainshell.domain.models import CommandBlock


SHELL_LANGUAGES = frozenset(
    {
        "shell",
        "bash",
        "sh",
        "zsh",
        "console",
        "powershell",
        "pwsh",
        "ps1",
        "ps",
        "cmd",
        "bat",
        "batch",
        "terminal",
    }
)

NON_SHELL_LANGUAGES = frozenset(
    {
        "python",
        "py",
        "javascript",
        "js",
        "jsx",
        "typescript",
        "ts",
        "tsx",
        "json",
        "yaml",
        "yml",
        "sql",
        "html",
        "css",
        "xml",
        "toml",
        "ini",
        "java",
        "c",
        "cpp",
        "csharp",
        "cs",
        "go",
        "rust",
        "ruby",
        "php",
        "kotlin",
        "swift",
        "dockerfile",
        "markdown",
        "md",
        "text",
        "txt",
        "diff",
    }
)

_FENCED_BLOCK = re.compile(
    r"^[ \t]*```[ \t]*(?P<lang>[A-Za-z0-9_+.-]*)[^\n]*\n(?P<body>.*?)^[ \t]*```[ \t]*$",
    re.DOTALL | re.MULTILINE,
)

_PROMPT_PREFIX = re.compile(r"^(?:\$\s+|>\s+|PS(?:\s[^>]*)?>\s*)")

_COMMAND_VERBS = (
    "mkdir",
    "cd",
    "git",
    "npm",
    "npx",
    "yarn",
    "pnpm",
    "pip",
    "pip3",
    "python",
    "python3",
    "node",
    "deno",
    "bun",
    "curl",
    "wget",
    "docker",
    "docker-compose",
    "kubectl",
    "helm",
    "terraform",
    "ls",
    "cat",
    "echo",
    "touch",
    "cp",
    "mv",
    "rm",
    "chmod",
    "chown",
    "make",
    "cargo",
    "brew",
    "apt",
    "apt-get",
    "yum",
    "dnf",
    "sudo",
    "export",
    "source",
    "uvicorn",
    "pytest",
    "poetry",
)

_HEURISTIC_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\$\s+\S"),
    re.compile(r"^>\s+\S"),
    re.compile(r"^PS(?:\s[^>]*)?>\s*\S"),
    re.compile(r"^(?:" + "|".join(re.escape(verb) for verb in _COMMAND_VERBS) + r")(?:\s+\S.*)?$"),
    re.compile(r"^(?:Get|Set|New|Remove|Invoke|Start|Stop|Test|Copy|Move)-[A-Z][A-Za-z]+\b"),
)

# "cd into the folder." reads like a command but is a sentence.
_SENTENCE_END = re.compile(r"[A-Za-z)][.!?:]$")


def _strip_prompt(line: str) -> str:
    return _PROMPT_PREFIX.sub("", line, count=1).strip()


_HEREDOC_START = re.compile(r"(?<!<)<<(?P<dash>-?)[ \t]*(?P<quote>['\"]?)(?P<word>[A-Za-z_][A-Za-z0-9_]*)(?P=quote)")
_HERE_STRING_START = re.compile(r"@(?P<quote>['\"])\s*$")


def _body_terminator(line: str) -> tuple[str, bool] | None:
    """Terminator of a heredoc or PowerShell here-string opened on ``line``."""
    heredoc = _HEREDOC_START.search(line)
    if heredoc:
        return heredoc.group("word"), bool(heredoc.group("dash"))
    here_string = _HERE_STRING_START.search(line)
    if here_string:
        return here_string.group("quote") + "@", False
    return None


def _clean_block_lines(body: str) -> tuple[str, ...]:
    # Heredoc bodies are file content: kept byte for byte, blank and "#" lines included.
    text = textwrap.dedent(body.replace("\r\n", "\n").replace("\r", "\n"))
    lines: list[str] = []
    terminator: tuple[str, bool] | None = None
    for raw_line in text.split("\n"):
        if terminator is not None:
            lines.append(raw_line)
            word, strip_tabs = terminator
            candidate = raw_line.lstrip("\t") if strip_tabs else raw_line
            if candidate.rstrip() == word or (word.endswith("@") and candidate.lstrip().startswith(word)):
                terminator = None
            continue

        stripped = raw_line.strip()
        if not stripped:
            continue
        if stripped.startswith("#") and not stripped.startswith("#!"):
            continue
        command = _strip_prompt(stripped) if _PROMPT_PREFIX.match(stripped) else raw_line.rstrip()
        if command.strip():
            lines.append(command)
            terminator = _body_terminator(command)

    # An unterminated body has no trailing blank lines to keep.
    while lines and not lines[-1].strip():
        lines.pop()
    return tuple(lines)


def _blocks_from_matches(matches: Iterable[re.Match[str]]) -> list[CommandBlock]:
    blocks: list[CommandBlock] = []
    for match in matches:
        language = match.group("lang").lower() or None
        lines = _clean_block_lines(match.group("body"))
        if lines:
            blocks.append(CommandBlock(lines=lines, language=language))
    return blocks


def _tagged_shell_blocks(text: str) -> list[CommandBlock]:
    return _blocks_from_matches(
        match
        for match in _FENCED_BLOCK.finditer(text)
        if match.group("lang").lower() in SHELL_LANGUAGES
    )


def _untagged_blocks(text: str) -> list[CommandBlock]:
    stripped = _FENCED_BLOCK.sub(
        lambda match: "" if match.group("lang").lower() in NON_SHELL_LANGUAGES else match.group(0),
        text,
    )
    return _blocks_from_matches(
        match for match in _FENCED_BLOCK.finditer(stripped) if not match.group("lang")
    )


def _heuristic_block(text: str) -> list[CommandBlock]:
    # Fenced code in another language is never mistaken for commands.
    prose = _FENCED_BLOCK.sub("", text)
    lines: list[str] = []
    for raw_line in prose.splitlines():
        stripped = raw_line.strip()
        if not stripped or _SENTENCE_END.search(stripped):
            continue
        if not any(pattern.match(stripped) for pattern in _HEURISTIC_PATTERNS):
            continue
        command = _strip_prompt(stripped)
        if command:
            lines.append(command)
    if not lines:
        return []
    return [CommandBlock(lines=tuple(lines), language=None)]


def extract_command_blocks(text: str) -> list[CommandBlock]:
    """Turn a model answer into ordered, atomic command blocks.

    Tiers are tried in order and the first non-empty one wins: shell-tagged
    fences, then untagged fences (after dropping fences in known non-shell
    languages), then a line-by-line heuristic scan of the prose. An empty
    list is a normal outcome for explanation-only answers.
    """
    if not isinstance(text, str) or not text.strip():
        return []
    for tier in (_tagged_shell_blocks, _untagged_blocks, _heuristic_block):
        blocks = tier(text)
        if blocks:
            return blocks
    return []


def flatten_blocks(blocks: Iterable[CommandBlock]) -> list[str]:
    return [line for block in blocks for line in block.lines]
