from __future__ import annotations


MODES: dict[str, str] = {
    "default": "Default (coding agent)",
    "review": "Code review",
    "fix": "Debug & fix",
    "plan": "Plan only",
    "security": "Security audit (OWASP)",
    "test": "Test writer",
    "refactor": "Refactorer",
    "docs": "Documentation writer",
    "explain": "Explain (junior-friendly)",
    "git": "Git expert",
    "infra": "Infrastructure / DevOps",
    "architect": "System architect",
    "optimize": "Performance optimizer",
    "deploy": "Deployer",
    "migrate": "Migration planner",
}

READ_ONLY_MODES = frozenset({"plan", "review", "security", "architect", "explain"})

DEFAULT_MODE = "default"


def is_read_only(mode: str) -> bool:
    return mode in READ_ONLY_MODES


def resolve_mode(explicit_mode: str | None, prompt_words: list[str]) -> tuple[str, list[str]]:
    """Pick the operating mode for a run.

    An explicit mode wins. Otherwise a first prompt word naming a mode
    (``brainshell fix the server crashes``) selects it and is dropped from
    the prompt.
    """
    if explicit_mode:
        if explicit_mode not in MODES:
            raise ValueError(f"Unknown mode: {explicit_mode}")
        return explicit_mode, list(prompt_words)

    if prompt_words:
        first = prompt_words[0].strip().lower()
        if first in MODES and first != DEFAULT_MODE:
            return first, list(prompt_words[1:])

    return DEFAULT_MODE, list(prompt_words)
