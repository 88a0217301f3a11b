"""Git helpers for per-model branches and worktrees.

Repairs are rolled back with ``git stash`` and recorded with plain commits.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import shutil

from ..ports import VersionControlPort
from .process import CommandResult, ProcessLaunchError, run_command

_NOTHING_TO_STASH = "No local changes to save"


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


class GitRepository:
    """Lightweight wrapper around ``git`` commands.

    ``root`` may be the main checkout or a linked worktree; in the latter case
    ``.git`` is a file rather than a directory.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        executable: str = "git",
        timeout: float | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.executable = executable
        self.timeout = timeout
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None, **kwargs: object) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate, **kwargs)  # type: ignore[arg-type]
        raise GitError(f"Unable to locate a git repository from {path}")

    @classmethod
    def initialise(cls, root: Path | str) -> "GitRepository":
        """Initialise a new git repository at ``root`` with an initial commit."""

        path = Path(root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        git_dir = path / ".git"
        if git_dir.exists():
            shutil.rmtree(git_dir)

        def _run(args: Sequence[str], *, check: bool = True) -> CommandResult:
            result = run_command(["git", *args], cwd=path)
            if check and not result.ok:
                raise GitError(f"git {' '.join(args)} failed: {result.describe_failure()}")
            return result

        _run(["init"])

        def _ensure_config(key: str, value: str) -> None:
            probe = _run(["config", "--get", key], check=False)
            if not probe.ok or not probe.stdout.strip():
                _run(["config", key, value])

        _ensure_config("user.email", "bldfix@example.com")
        _ensure_config("user.name", "bldfix")

        _run(["add", "."])
        _run(["commit", "--allow-empty", "-m", "Initial commit"])

        return cls(path)

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        command = [self.executable, *args]
        try:
            result = run_command(command, cwd=self.root, timeout=self.timeout)
        except ProcessLaunchError as error:
            raise GitError(str(error)) from error
        if result.timed_out:
            raise GitError(f"git {' '.join(args)} timed out after {self.timeout}s in {self.root}")
        if check and result.exit_code != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    def git(self, *args: str, check: bool = True) -> CommandResult:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return self._run_git(list(args), check=check)

    # -------------------------------------------------------------- branches
    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=False)
        if result.exit_code != 0:
            return None
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    def branch_exists(self, name: str) -> bool:
        """Return ``True`` when ``refs/heads/<name>`` exists."""

        result = self._run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{name}"], check=False)
        if result.exit_code == 0:
            return True
        if result.exit_code == 1:
            return False
        message = result.stderr.strip() or f"exit code {result.exit_code}"
        raise GitError(f"Failed to check if branch {name} exists: {message}")

    def create_branch(self, name: str) -> None:
        """Create ``name`` pointing at the current ``HEAD``."""

        self._run_git(["branch", name])

    # ------------------------------------------------------------- worktrees
    def add_worktree(self, path: Path | str, branch: str) -> None:
        """Attach a new worktree at ``path`` checked out to ``branch``."""

        worktree_path = Path(path)
        worktree_path.parent.mkdir(parents=True, exist_ok=True)
        self._run_git(["worktree", "add", str(worktree_path), branch])

    # ------------------------------------------------------------------- stash
    def stash_push(
        self,
        *,
        message: str | None = None,
        include_untracked: bool = False,
    ) -> str | None:
        """Stash pending changes and return the created reference."""

        args: List[str] = ["stash", "push"]
        if include_untracked:
            args.append("-u")
        if message:
            args.extend(["-m", message])
        result = self._run_git(args, check=False)
        combined = f"{result.stdout}\n{result.stderr}".strip()
        if result.exit_code != 0:
            if _NOTHING_TO_STASH in combined:
                return None
            message_text = combined or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message_text}")
        if _NOTHING_TO_STASH in combined:
            return None
        return "stash@{0}"

    # ------------------------------------------------------------- repo status
    def is_clean(self) -> bool:
        """Return ``True`` when ``git status --porcelain`` reports nothing, untracked files included."""

        result = self._run_git(["status", "--porcelain"], check=True)
        return not result.stdout.strip()

    # --------------------------------------------------------------- commits
    def add_all(self) -> None:
        """Stage every tracked and untracked change."""

        self._run_git(["add", "-A"], check=True)

    def commit(self, message: str) -> str:
        """Commit the index and return the new ``HEAD`` SHA."""

        self._run_git(["commit", "-m", message], check=True)
        rev = self._run_git(["rev-parse", "HEAD"], check=True)
        return rev.stdout.strip()


class GitVersionControl(VersionControlPort):
    """:class:`VersionControlPort` backed by the git CLI."""

    def __init__(self, *, executable: str = "git", timeout: float | None = None) -> None:
        self.executable = executable
        self.timeout = timeout

    def _repo(self, path: Path) -> GitRepository:
        return GitRepository(path, executable=self.executable, timeout=self.timeout)

    def current_branch(self, repo_path: Path) -> str:
        branch = self._repo(repo_path).current_branch()
        if branch is None:
            raise GitError(f"Unable to determine the current branch of {repo_path}")
        return branch

    def branch_exists(self, repo_path: Path, name: str) -> bool:
        return self._repo(repo_path).branch_exists(name)

    def create_branch(self, repo_path: Path, name: str) -> None:
        self._repo(repo_path).create_branch(name)

    def add_worktree(self, repo_path: Path, path: Path, branch: str) -> None:
        self._repo(repo_path).add_worktree(path, branch)

    def stage_all(self, path: Path) -> None:
        self._repo(path).add_all()

    def status_is_clean(self, path: Path) -> bool:
        return self._repo(path).is_clean()

    def commit(self, path: Path, message: str) -> str | None:
        return self._repo(path).commit(message)

    def stash_all(self, path: Path, label: str) -> bool:
        return self._repo(path).stash_push(message=label, include_untracked=True) is not None


__all__ = ["GitError", "GitRepository", "GitVersionControl"]
