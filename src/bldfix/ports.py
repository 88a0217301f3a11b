"""Narrow interfaces to the external systems driven by the repair loop.

Each port is a plain base class whose methods raise ``NotImplementedError``.
The production adapters live in :mod:`bldfix.tools`; tests substitute
scripted in-memory implementations.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence


@dataclass(slots=True)
class ValidationResult:
    """Outcome of a build-system query or build."""

    ok: bool
    output: str = ""
    timed_out: bool = False


class VersionControlPort:
    """Branch, worktree and commit operations against a shared repository.

    Implementations raise :class:`bldfix.tools.vcs.GitError` on failure.
    """

    def current_branch(self, repo_path: Path) -> str:
        raise NotImplementedError("Subclasses must implement current_branch().")

    def branch_exists(self, repo_path: Path, name: str) -> bool:
        raise NotImplementedError("Subclasses must implement branch_exists().")

    def create_branch(self, repo_path: Path, name: str) -> None:
        raise NotImplementedError("Subclasses must implement create_branch().")

    def worktree_exists(self, path: Path) -> bool:
        return Path(path).exists() or Path(path).is_symlink()

    def add_worktree(self, repo_path: Path, path: Path, branch: str) -> None:
        raise NotImplementedError("Subclasses must implement add_worktree().")

    def stage_all(self, path: Path) -> None:
        raise NotImplementedError("Subclasses must implement stage_all().")

    def status_is_clean(self, path: Path) -> bool:
        raise NotImplementedError("Subclasses must implement status_is_clean().")

    def commit(self, path: Path, message: str) -> str | None:
        raise NotImplementedError("Subclasses must implement commit().")

    def stash_all(self, path: Path, label: str) -> bool:
        """Stash tracked and untracked changes; return ``False`` when there was nothing to stash."""

        raise NotImplementedError("Subclasses must implement stash_all().")


class BuildSystemPort:
    """Target resolution and build execution.

    A target that does not resolve or fails to build is a normal
    ``ValidationResult(ok=False)``.  Only infrastructure failures raise
    :class:`bldfix.tools.bazel.BuildSystemError`.
    """

    def query(self, path: Path, target: str) -> ValidationResult:
        raise NotImplementedError("Subclasses must implement query().")

    def build(self, path: Path, target: str) -> ValidationResult:
        raise NotImplementedError("Subclasses must implement build().")


class RepairAgentPort:
    """Model-driven agent that edits files under ``path`` in place.

    Only the success of the invocation itself is reported; whether the target
    builds is checked separately through :class:`BuildSystemPort`.
    Implementations raise :class:`bldfix.tools.agent.AgentInvocationError`
    when the agent process could not run to completion.
    """

    def repair(
        self,
        path: Path,
        model: str,
        target: str,
        instruction: str,
        test_command: str,
        files_to_consider: Sequence[str],
    ) -> None:
        raise NotImplementedError("Subclasses must implement repair().")


__all__ = ["BuildSystemPort", "RepairAgentPort", "ValidationResult", "VersionControlPort"]
