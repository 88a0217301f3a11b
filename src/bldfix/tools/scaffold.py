"""Bazel scaffolding helpers for first-time runs.

Two pieces of bootstrap happen outside the repair loop proper: a repository
without ``MODULE.bazel`` gets an empty one (committed together with the
lockfile bazel writes for it), and a target whose package has no
``BUILD.bazel`` gets a placeholder so the agent has a file to edit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .bazel import BazelBuildSystem, BuildSystemError, package_of
from .vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

MODULE_FILE = "MODULE.bazel"
MODULE_LOCK_FILE = "MODULE.bazel.lock"
PLACEHOLDER_BUILD_CONTENT = "# created by bldfix\n"
MODULE_COMMIT_MESSAGE = "feat: Add MODULE.bazel and MODULE.bazel.lock"


class ScaffoldError(RuntimeError):
    """Raised when bootstrap files cannot be created or committed."""


@dataclass(slots=True)
class ModuleBootstrapResult:
    """Report emitted by :func:`ensure_module_file`."""

    created: bool
    committed: bool
    target_count: int | None = None


def ensure_build_file(worktree_path: Path | str, target: str) -> Path | None:
    """Create a placeholder ``BUILD.bazel`` for ``target``'s package when missing.

    Returns the path that was written, or ``None`` when nothing was needed.
    """

    package = package_of(target)
    if package is None:
        return None

    root = Path(worktree_path)
    build_path = root / package / "BUILD.bazel" if package else root / "BUILD.bazel"
    if build_path.exists():
        return None

    build_path.parent.mkdir(parents=True, exist_ok=True)
    build_path.write_text(PLACEHOLDER_BUILD_CONTENT, encoding="utf-8")
    LOGGER.info("Created %s", build_path)
    return build_path


def ensure_module_file(
    repo: GitRepository,
    bazel: BazelBuildSystem,
    *,
    count_targets: bool = True,
) -> ModuleBootstrapResult:
    """Make sure ``repo`` is a bzlmod workspace.

    An existing ``MODULE.bazel`` is only validated with ``bazel mod explain``.
    A missing one is created empty, validated, and committed along with
    ``MODULE.bazel.lock``.
    """

    module_path = repo.root / MODULE_FILE
    created = False
    committed = False

    if not module_path.exists():
        LOGGER.info("%s not found in %s. Creating an empty %s", MODULE_FILE, repo.root, module_path)
        try:
            module_path.touch()
        except OSError as error:
            raise ScaffoldError(f"error creating {MODULE_FILE}: {error}") from error
        created = True

    try:
        bazel.mod_explain(repo.root)
    except BuildSystemError as error:
        raise ScaffoldError(str(error)) from error

    if created:
        lock_path = repo.root / MODULE_LOCK_FILE
        paths = [MODULE_FILE]
        if lock_path.exists():
            paths.append(MODULE_LOCK_FILE)
        LOGGER.info("Committing %s", ", ".join(paths))
        try:
            repo.git("add", "--", *paths)
            repo.git("commit", "-m", MODULE_COMMIT_MESSAGE)
        except GitError as error:
            raise ScaffoldError(f"error committing {', '.join(paths)}: {error}") from error
        committed = True
        LOGGER.info("%s committed successfully.", ", ".join(paths))

    target_count = None
    if count_targets:
        try:
            target_count = bazel.count_targets(repo.root)
        except BuildSystemError as error:
            raise ScaffoldError(f"error counting targets: {error}") from error
    return ModuleBootstrapResult(created=created, committed=committed, target_count=target_count)


__all__ = [
    "ModuleBootstrapResult",
    "ScaffoldError",
    "ensure_build_file",
    "ensure_module_file",
]
