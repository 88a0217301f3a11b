"""Adapter that drives the aider CLI as the code-repair agent."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from ..ports import RepairAgentPort
from .process import ProcessLaunchError, run_command


class AgentInvocationError(RuntimeError):
    """Raised when the agent process cannot be started, times out or exits non-zero."""


class AiderAgent(RepairAgentPort):
    """Run ``aider`` non-interactively inside a worktree.

    aider is told not to commit; the repair loop owns staging, rollback and
    commits.  Its own output is discarded because build success is checked
    separately.
    """

    BASE_FLAGS: tuple[str, ...] = (
        "--no-auto-commits",
        "--disable-playwright",
        "--yes-always",
    )

    def __init__(
        self,
        *,
        executable: str = "aider",
        timeout: float | None = None,
        edit_format: str = "diff",
    ) -> None:
        self.executable = executable
        self.timeout = timeout
        self.edit_format = edit_format

    def build_command(
        self,
        model: str,
        instruction: str,
        test_command: str,
        files_to_consider: Sequence[str],
    ) -> list[str]:
        return [
            self.executable,
            *self.BASE_FLAGS,
            "--model",
            model,
            "--edit-format",
            self.edit_format,
            "--auto-test",
            "--test-cmd",
            test_command,
            "--message",
            instruction,
            *files_to_consider,
        ]

    def repair(
        self,
        path: Path,
        model: str,
        target: str,
        instruction: str,
        test_command: str,
        files_to_consider: Sequence[str],
    ) -> None:
        command = self.build_command(model, instruction, test_command, files_to_consider)
        try:
            result = run_command(command, cwd=path, timeout=self.timeout, capture=False)
        except ProcessLaunchError as error:
            raise AgentInvocationError(f"aider failed for model {model} target {target}: {error}") from error
        if result.timed_out:
            raise AgentInvocationError(
                f"aider timed out after {self.timeout}s for model {model} target {target}"
            )
        if result.exit_code != 0:
            raise AgentInvocationError(
                f"aider failed for model {model} target {target}: exit code {result.exit_code}"
            )


__all__ = ["AgentInvocationError", "AiderAgent"]
