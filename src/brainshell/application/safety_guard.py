from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable


_REASON_MAX_CHARS = 80


@dataclass(frozen=True)
class SafetyRule:
    category: str
    pattern: re.Pattern[str]
    severity: str
    description: str

    def matches(self, line: str) -> bool:
        return self.pattern.search(line) is not None


@dataclass(frozen=True)
class SafetyVerdict:
    blocked: bool
    reason: str | None = None
    rule: SafetyRule | None = None

    @property
    def category(self) -> str | None:
        return self.rule.category if self.rule is not None else None


ALLOWED = SafetyVerdict(blocked=False)


def _rule(category: str, pattern: str, description: str, *, severity: str = "block", flags: int = re.IGNORECASE) -> SafetyRule:
    return SafetyRule(
        category=category,
        pattern=re.compile(pattern, flags),
        severity=severity,
        description=description,
    )


_SYSTEM_DIRS = r"(?:etc|usr|bin|sbin|lib|lib64|boot|var|opt|home|root|srv|sys|proc|dev)"

_RM_OPTIONS = r"(?:-{1,2}[\w-]+\s+)*"
_RM_DELETE_FLAG = r"(?:-[a-z]*[rf][a-z]*|--recursive|--force|--no-preserve-root)\s"

DESTRUCTIVE_FS_RULES: tuple[SafetyRule, ...] = (
    _rule(
        "destructive_fs",
        r"\brm\s+(?=" + _RM_OPTIONS + _RM_DELETE_FLAG + r")" + _RM_OPTIONS
        + r"(['\"]?)(?:/|/\*|~/?|\$HOME/?|/" + _SYSTEM_DIRS + r"/?)\1(?:\s|$)",
        "recursive or forced delete of root, home or a system directory",
    ),
    _rule(
        "destructive_fs",
        r"^(?=.*\bRemove-Item\b)(?=.*-Recurse)(?=.*-Force)(?=.*(?:\s|['\"])(?:[a-z]:[\\/]?|[\\/])['\"]?(?:\s|$))",
        "recursive forced delete of a drive root",
    ),
    _rule(
        "destructive_fs",
        r"Remove-Item.*-Recurse.*-Force\s+\.\s*$",
        "recursive forced delete of the working directory",
    ),
    _rule("destructive_fs", r"\bdel\s+/[sfq]", "bulk delete"),
    _rule("destructive_fs", r"\bdel\b.*/s.*/[fq]", "bulk delete"),
    _rule("destructive_fs", r"\brd\s+/s", "recursive directory removal"),
    _rule("destructive_fs", r"\brmdir\s+/s", "recursive directory removal"),
    _rule("destructive_fs", r"\bformat\s+[a-z]:", "drive format"),
    _rule("destructive_fs", r"\bmkfs", "filesystem format"),
    _rule("destructive_fs", r"\bdd\s+if=", "raw device copy"),
    _rule("destructive_fs", r">\s*/dev/sd[a-z]", "raw device write"),
)

CLOUD_METADATA_RULES: tuple[SafetyRule, ...] = (
    _rule("cloud_metadata", r"169\.254\.169\.254", "cloud metadata endpoint"),
    _rule("cloud_metadata", r"metadata\.google\.internal", "cloud metadata endpoint"),
    _rule("cloud_metadata", r"100\.100\.100\.200", "cloud metadata endpoint"),
)

SYSTEM_CONTROL_RULES: tuple[SafetyRule, ...] = (
    _rule("system_control", r"\b(?:shutdown|reboot|halt|poweroff)\b", "system shutdown"),
    _rule("system_control", r"\btaskkill\s+/f\s+/im", "forced process kill"),
    _rule("system_control", r"Stop-Process.*-Force", "forced process kill"),
    _rule("system_control", r"\bkill\s+-9\s+1\b", "kill init"),
)

SYSTEM_PATH_COMMAND_RULES: tuple[SafetyRule, ...] = (
    _rule("system_path", r"[\\/]windows[\\/]system32", "system directory access"),
    _rule("system_path", r"[\\/]etc[\\/](?:passwd|shadow|sudoers)\b", "credential file access"),
)

LATERAL_MOVEMENT_RULES: tuple[SafetyRule, ...] = (
    _rule("lateral_movement", r"^\s*ssh\s+\S+@", "remote shell"),
    _rule("lateral_movement", r"^\s*ssh\s+-", "remote shell"),
    _rule("lateral_movement", r"Enter-PSSession|New-PSSession", "remote PowerShell session"),
    _rule("lateral_movement", r"Invoke-Command.*-ComputerName", "remote command"),
    _rule("lateral_movement", r"\bnet\s+use\s+\\\\", "network share mount"),
)

EXECUTION_BYPASS_RULES: tuple[SafetyRule, ...] = (
    _rule("execution_bypass", r"powershell.*-exec\w*\s+bypass", "execution policy bypass"),
    _rule("execution_bypass", r"powershell.*-encodedcommand", "encoded command"),
    _rule("execution_bypass", r"powershell.*-enc\s", "encoded command"),
    _rule("execution_bypass", r"powershell(?:\.exe)?\s+.*\.(?:ps1|psm1)\b", "script execution"),
    _rule("execution_bypass", r"\bcmd(?:\.exe)?\s+/[ck].*\.(?:bat|cmd)\b", "batch script execution"),
    _rule("execution_bypass", r"^\s*\.\s+\S*\.(?:ps1|psm1|bat|cmd)['\"]?\s*$", "script dot-sourcing"),
    _rule("execution_bypass", r"&\s*['\"]?[^\s'\"]*\.(?:ps1|psm1|bat|cmd)['\"]?(?:\s|$)", "script invocation"),
)

EGRESS_RULES: tuple[SafetyRule, ...] = (
    _rule("egress", r"Invoke-WebRequest.*-OutFile", "download to disk"),
    _rule("egress", r"\bcertutil.*-urlcache", "download via certutil"),
    _rule("egress", r"\bbitsadmin.*/transfer", "download via bitsadmin"),
    _rule("egress", r"Start-Process.*-FilePath", "arbitrary process launch"),
)

BLOCKED_RULES: tuple[SafetyRule, ...] = (
    *DESTRUCTIVE_FS_RULES,
    *CLOUD_METADATA_RULES,
    *SYSTEM_CONTROL_RULES,
    *SYSTEM_PATH_COMMAND_RULES,
    *LATERAL_MOVEMENT_RULES,
    *EXECUTION_BYPASS_RULES,
    *EGRESS_RULES,
)

# Not blocked outright, but never run without a human looking at them.
DANGEROUS_ONLY_RULES: tuple[SafetyRule, ...] = (
    _rule("recursive_delete", r"\brm\s+(?:-[a-z]*\s+)*-[a-z]*r[a-z]*\b", "recursive delete", severity="confirm"),
    _rule("recursive_delete", r"\brm\s+(?:-[a-z]*\s+)*-[a-z]*f[a-z]*\b", "forced delete", severity="confirm"),
    _rule(
        "recursive_delete",
        r"\brm\s+(?:\S+\s+)*?--(?:recursive|force|no-preserve-root)\b",
        "recursive or forced delete",
        severity="confirm",
    ),
    _rule("recursive_delete", r"Remove-Item.*-Recurse", "recursive delete", severity="confirm"),
    _rule("force_push", r"\bgit\s+push\b.*(?:--force\b|--force-with-lease\b|\s-f\b)", "force push", severity="confirm"),
    _rule("history_rewrite", r"\bgit\s+reset\s+--hard\b", "hard reset", severity="confirm"),
    _rule("history_rewrite", r"\bgit\s+clean\s+-[a-z]*f", "git clean with force", severity="confirm"),
    _rule(
        "package_publish",
        r"\b(?:npm|yarn|pnpm)\s+publish\b|\btwine\s+upload\b|\bcargo\s+publish\b|\bgem\s+push\b|\bpoetry\s+publish\b",
        "package publish",
        severity="confirm",
    ),
    _rule(
        "pipe_to_shell",
        r"\b(?:curl|wget|iwr|Invoke-WebRequest|irm|Invoke-RestMethod)\b.*\|\s*(?:sudo\s+)?(?:ba|z|k)?sh\b|\|\s*iex\b|\|\s*Invoke-Expression\b",
        "pipe download to shell",
        severity="confirm",
    ),
    _rule("path_traversal", r"(?:\.\./){2,}|(?:\.\.\\){2,}", "path traversal", severity="confirm"),
    _rule("fork_bomb", r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:", "fork bomb", severity="confirm"),
    _rule("privilege_escalation", r"^\s*sudo\b", "privileged command", severity="confirm"),
    _rule("permissions", r"\bchmod\s+(?:-R\s+)?777\b", "world-writable permissions", severity="confirm"),
)

DANGEROUS_RULES: tuple[SafetyRule, ...] = (*BLOCKED_RULES, *DANGEROUS_ONLY_RULES)

SYSTEM_PATH_RULES: tuple[SafetyRule, ...] = (
    _rule("system_path", r"/windows/", "Windows system directory"),
    _rule("system_path", r"/system32/", "Windows system directory"),
    _rule("system_path", r"/etc/(?:passwd|shadow|hosts|sudoers)\b", "system credential file"),
    _rule("system_path", r"^/proc(?:/|$)", "kernel process filesystem"),
    _rule("system_path", r"^/sys(?:/|$)", "kernel sysfs"),
    _rule("system_path", r"^/dev(?:/|$)", "device files"),
    _rule("system_path", r"^/boot(?:/|$)", "boot partition"),
)


def _normalized_lines(text: str) -> list[str]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    return [line.strip() for line in normalized.split("\n") if line.strip()]


def _first_match(text: str, rules: Iterable[SafetyRule]) -> tuple[str, SafetyRule] | None:
    rules = tuple(rules)
    for line in _normalized_lines(text):
        for rule in rules:
            if rule.matches(line):
                return line, rule
    return None


def is_safe(command: str) -> SafetyVerdict:
    """Check every line of a command against the blocked rule set.

    A multi-line command is refused when any single line matches.
    """
    match = _first_match(command, BLOCKED_RULES)
    if match is None:
        return ALLOWED
    line, rule = match
    return SafetyVerdict(
        blocked=True,
        reason=f"Blocked ({rule.category}): {line[:_REASON_MAX_CHARS]}",
        rule=rule,
    )


def has_unsafe_content(text: str) -> SafetyVerdict:
    match = _first_match(text, BLOCKED_RULES)
    if match is None:
        return ALLOWED
    line, rule = match
    return SafetyVerdict(
        blocked=True,
        reason=f"File content contains blocked pattern on line: {line[:_REASON_MAX_CHARS]}",
        rule=rule,
    )


def is_dangerous_command(command: str) -> SafetyVerdict:
    match = _first_match(command, DANGEROUS_RULES)
    if match is None:
        return ALLOWED
    line, rule = match
    return SafetyVerdict(
        blocked=True,
        reason=f"Dangerous ({rule.category}): {line[:_REASON_MAX_CHARS]}",
        rule=rule,
    )


def find_dangerous_lines(lines: Iterable[str]) -> list[tuple[str, SafetyRule]]:
    found: list[tuple[str, SafetyRule]] = []
    for line in lines:
        match = _first_match(line, DANGEROUS_RULES)
        if match is not None:
            found.append(match)
    return found


def _system_path_rule(path: str) -> SafetyRule | None:
    normalized = path.replace("\\", "/")
    # Drive-letter paths (C:/Windows/...) are matched without the drive.
    normalized = re.sub(r"^[A-Za-z]:", "", normalized)
    for rule in SYSTEM_PATH_RULES:
        if rule.matches(normalized):
            return rule
    return None


def is_system_path(path: str) -> bool:
    return _system_path_rule(path) is not None


def check_path_access(path: str, operation: str) -> SafetyVerdict:
    """Refuse read/write/list of OS directories, whatever the command text says."""
    rule = _system_path_rule(path)
    if rule is None:
        return ALLOWED
    return SafetyVerdict(
        blocked=True,
        reason=f"Cannot {operation} system path: {path}",
        rule=rule,
    )
