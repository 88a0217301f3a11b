"""Bazel adapter: target queries, builds and module maintenance commands."""

from __future__ import annotations

import logging
from pathlib import Path

from ..ports import BuildSystemPort, ValidationResult
from .process import CommandResult, ProcessLaunchError, run_command

LOGGER = logging.getLogger(__name__)


class BuildSystemError(RuntimeError):
    """Raised when bazel itself cannot be run (as opposed to a failing target)."""


class BazelBuildSystem(BuildSystemPort):
    """:class:`BuildSystemPort` implemented with the ``bazel`` CLI."""

    def __init__(
        self,
        *,
        executable: str = "bazel",
        query_timeout: float | None = None,
        build_timeout: float | None = None,
    ) -> None:
        self.executable = executable
        self.query_timeout = query_timeout
        self.build_timeout = build_timeout

    def _run(self, args: list[str], path: Path, timeout: float | None) -> CommandResult:
        try:
            return run_command([self.executable, *args], cwd=path, timeout=timeout)
        except ProcessLaunchError as error:
            raise BuildSystemError(str(error)) from error

    @staticmethod
    def _to_validation(result: CommandResult) -> ValidationResult:
        output = result.output
        if result.timed_out:
            output = f"{result.describe_failure()}\n{output}".strip()
        return ValidationResult(ok=result.ok, output=output, timed_out=result.timed_out)

    def query(self, path: Path, target: str) -> ValidationResult:
        return self._to_validation(self._run(["query", target], Path(path), self.query_timeout))

    def build(self, path: Path, target: str) -> ValidationResult:
        return self._to_validation(self._run(["build", target], Path(path), self.build_timeout))

    def mod_explain(self, path: Path) -> None:
        """Run ``bazel mod explain`` so bazel resolves the module graph and writes the lockfile."""

        LOGGER.info("Invoking 'bazel mod explain' in %s", path)
        result = self._run(["mod", "explain"], Path(path), self.query_timeout)
        if not result.ok:
            raise BuildSystemError(f"'bazel mod explain' failed: {result.describe_failure()}")
        LOGGER.info("'bazel mod explain' succeeded.")

    def count_targets(self, path: Path, pattern: str = "//...") -> int | None:
        """Return the number of targets matching ``pattern`` or ``None`` when the query fails."""

        LOGGER.info("Invoking 'bazel query %s' in %s", pattern, path)
        result = self._run(["query", pattern], Path(path), self.query_timeout)
        if not result.ok:
            LOGGER.warning("'bazel query %s' failed: %s", pattern, result.describe_failure())
            return None
        count = sum(1 for line in result.stdout.splitlines() if line.strip())
        LOGGER.info("'bazel query %s' succeeded. Found %d targets.", pattern, count)
        return count


def package_of(target: str) -> str | None:
    """Return the package path of a ``//pkg:name`` label.

    ``//:name`` yields ``""``; labels that do not start with ``//`` yield
    ``None``.
    """

    if not target.startswith("//"):
        return None
    label = target[2:]
    package, _, _ = label.partition(":")
    return package


def build_file_for(target: str) -> str:
    """Return the repository-relative ``BUILD.bazel`` path for ``target``."""

    package = package_of(target)
    if not package:
        return "BUILD.bazel"
    return f"{package}/BUILD.bazel"


__all__ = ["BazelBuildSystem", "BuildSystemError", "build_file_for", "package_of"]
