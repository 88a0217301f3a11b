"""Subprocess execution with timeouts shared by the git, bazel and agent adapters."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

import os
import subprocess
import time


class ProcessLaunchError(RuntimeError):
    """Raised when a command cannot be started at all (missing binary, permissions)."""


@dataclass(slots=True)
class CommandResult:
    """Structured summary of a finished (or timed out) command."""

    command: tuple[str, ...]
    cwd: Path
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    @property
    def output(self) -> str:
        """Return stdout and stderr joined, the way a terminal would show them."""

        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def describe_failure(self) -> str:
        if self.timed_out:
            return f"{self.command[0]} timed out after {self.duration:.1f}s"
        message = self.stderr.strip() or self.stdout.strip() or f"exit code {self.exit_code}"
        return message


def _decode(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    return payload.decode("utf-8", errors="replace")


def run_command(
    command: Sequence[str],
    *,
    cwd: Path | str,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    capture: bool = True,
) -> CommandResult:
    """Run ``command`` in ``cwd`` and return a :class:`CommandResult`.

    A command that exceeds ``timeout`` is killed and reported with
    ``timed_out=True`` rather than raising.  When ``capture`` is false the
    command output is discarded.
    """

    workdir = Path(cwd)
    invocation = tuple(str(part) for part in command)
    env_vars = dict(os.environ)
    if env:
        env_vars.update({str(key): str(value) for key, value in env.items()})

    output_target = subprocess.PIPE if capture else subprocess.DEVNULL
    started = time.monotonic()
    try:
        process = subprocess.run(  # noqa: S603 - arguments are never passed through a shell
            invocation,
            cwd=workdir,
            env=env_vars,
            stdout=output_target,
            stderr=output_target,
            stdin=subprocess.DEVNULL,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as error:
        return CommandResult(
            command=invocation,
            cwd=workdir,
            exit_code=None,
            stdout=_decode(error.stdout),
            stderr=_decode(error.stderr),
            timed_out=True,
            duration=time.monotonic() - started,
        )
    except OSError as error:
        raise ProcessLaunchError(f"Unable to run {invocation[0]} in {workdir}: {error}") from error

    return CommandResult(
        command=invocation,
        cwd=workdir,
        exit_code=process.returncode,
        stdout=_decode(process.stdout),
        stderr=_decode(process.stderr),
        duration=time.monotonic() - started,
    )


__all__ = ["CommandResult", "ProcessLaunchError", "run_command"]
