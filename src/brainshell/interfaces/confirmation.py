from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from brainshell.application.safety_guard import SafetyRule
from brainshell.domain.models import CommandBlock, CommandResult


InputFn = Callable[[str], str]
OutputFn = Callable[[str], None]

_YES = {"y", "yes", "t"}
_ALL = {"a", "all"}


@dataclass
class ConfirmationManager:
    """Operator prompts for running plan blocks and accepting fixes."""

    input_fn: InputFn = input
    output_fn: OutputFn = print
    approve_plan: bool = False

    def reset_plan(self) -> None:
        self.approve_plan = False

    def show(self, text: str) -> None:
        self.output_fn(text)

    def notify(self, message: str) -> None:
        self.output_fn(f"[brainshell] {message}")

    def _ask(self, prompt: str) -> str:
        try:
            return self.input_fn(prompt).strip().lower()
        except EOFError:
            return ""

    def confirm_block(
        self,
        block: CommandBlock,
        *,
        index: int,
        total: int,
        warnings: Sequence[tuple[str, SafetyRule]] = (),
    ) -> bool:
        # "all" never covers a block with flagged lines.
        if self.approve_plan and not warnings:
            return True

        self.output_fn(f"\nBlock {index}/{total}:")
        for line in block.lines:
            self.output_fn(f"  $ {line}")
        for line, rule in warnings:
            self.output_fn(f"  ! {rule.description} ({rule.category}): {line[:80]}")

        answer = self._ask("Run this block? [y]es / [n]o / [a]ll remaining: ")
        if answer in _ALL:
            self.approve_plan = True
            return True
        if answer in _YES:
            return True
        self.output_fn("Declined.")
        return False

    def confirm_fix(self, result: CommandResult) -> bool:
        self.output_fn(f"\nCommand failed (exit {result.exit_code}): {result.command[:200]}")
        if result.stderr:
            self.output_fn(result.stderr[-800:])
        answer = self._ask("Ask the model for a fix? [y]es / [n]o: ")
        return answer in _YES
