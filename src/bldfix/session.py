"""Per-model git sessions: one branch and one linked worktree for each model."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .ports import VersionControlPort
from .tools.vcs import GitError
from .utils.slug import find_collisions, sanitize_ref_component

LOGGER = logging.getLogger(__name__)


class SessionError(RuntimeError):
    """Raised when a session branch or worktree cannot be provisioned."""


@dataclass(frozen=True, slots=True)
class Session:
    """Isolated working area owned by a single model for the whole run."""

    model: str
    branch_name: str
    worktree_path: Path


class SessionManager:
    """Derive and provision per-model branches and worktrees.

    Branch names are ``<base branch>-<sanitized model>``; worktrees live under
    ``worktree_root/<branch name>``.  Both are created lazily and never
    removed.  Provisioning is serialized because branch creation and worktree
    registration mutate metadata shared by every worktree of the repository.
    """

    def __init__(
        self,
        vcs: VersionControlPort,
        *,
        repo_path: Path | str,
        base_branch: str,
        worktree_root: Path | str,
    ) -> None:
        self._vcs = vcs
        self.repo_path = Path(repo_path)
        self.base_branch = base_branch
        self.worktree_root = Path(worktree_root)
        self._lock = threading.Lock()

    @classmethod
    def for_repository(
        cls,
        vcs: VersionControlPort,
        *,
        repo_path: Path | str,
        worktree_root: Path | str,
    ) -> "SessionManager":
        """Build a manager whose base branch is the repository's current branch."""

        try:
            base_branch = vcs.current_branch(Path(repo_path))
        except GitError as error:
            raise SessionError(f"Error getting git branch: {error}") from error
        LOGGER.info("Current git branch: %s", base_branch)
        return cls(vcs, repo_path=repo_path, base_branch=base_branch, worktree_root=worktree_root)

    def branch_name_for(self, model: str) -> str:
        return f"{self.base_branch}-{sanitize_ref_component(model)}"

    def session_for(self, model: str) -> Session:
        branch_name = self.branch_name_for(model)
        return Session(model=model, branch_name=branch_name, worktree_path=self.worktree_root / branch_name)

    @staticmethod
    def check_injective(models: Iterable[str]) -> None:
        """Raise :class:`SessionError` when two models would share a branch."""

        collisions = find_collisions(models)
        if collisions:
            details = "; ".join(
                f"{name} <- {', '.join(sources)}" for name, sources in sorted(collisions.items())
            )
            raise SessionError(f"Models collapse to the same branch name: {details}")

    def ensure_branch(self, repo_path: Path, branch_name: str) -> None:
        try:
            if self._vcs.branch_exists(repo_path, branch_name):
                LOGGER.info("Branch %s already exists.", branch_name)
                return
            LOGGER.info("Branch %s does not exist, creating...", branch_name)
            self._vcs.create_branch(repo_path, branch_name)
        except GitError as error:
            raise SessionError(f"Error ensuring branch {branch_name} exists: {error}") from error
        LOGGER.info("Branch %s created.", branch_name)

    def ensure_worktree(self, repo_path: Path, worktree_path: Path, branch_name: str) -> None:
        try:
            if self._vcs.worktree_exists(worktree_path):
                LOGGER.info("Worktree already exists at: %s", worktree_path)
                return
            LOGGER.info("Worktree at %s does not exist, creating...", worktree_path)
            self._vcs.add_worktree(repo_path, worktree_path, branch_name)
        except (GitError, OSError) as error:
            raise SessionError(f"Error ensuring worktree at {worktree_path} exists: {error}") from error
        LOGGER.info("Worktree created at: %s", worktree_path)

    def ensure(self, model: str) -> Session:
        """Return the model's session, creating its branch and worktree if needed."""

        session = self.session_for(model)
        with self._lock:
            self.ensure_branch(self.repo_path, session.branch_name)
            self.ensure_worktree(self.repo_path, session.worktree_path, session.branch_name)
        return session


__all__ = ["Session", "SessionError", "SessionManager"]
