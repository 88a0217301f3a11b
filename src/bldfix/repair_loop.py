"""Bounded-retry repair of a single target inside a single session.

The loop first checks whether the target already builds (attempt 0).  If it
does not, it alternates agent invocations with a two-stage validation
(``query`` then ``build``), stashing the worktree after every failed attempt
so the next one starts from the last committed state.  A validated attempt
is staged and committed, unless it left the tree unchanged.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Union

from .ports import BuildSystemPort, RepairAgentPort, ValidationResult, VersionControlPort
from .session import Session
from .tools.agent import AgentInvocationError
from .tools.bazel import BuildSystemError, build_file_for
from .tools.vcs import GitError

LOGGER = logging.getLogger(__name__)
INVOCATION_LOGGER = logging.getLogger("bldfix.invocations")

MAX_ATTEMPTS = 5
PRECHECK_ATTEMPT = 0


class AttemptOutcome(str, Enum):
    """How a single attempt ended."""

    QUERY_FAILED = "query_failed"
    BUILD_FAILED = "build_failed"
    SUCCEEDED = "succeeded"


class FatalScope(str, Enum):
    """How far a fatal error reaches."""

    TARGET = "target"
    RUN = "run"


@dataclass(slots=True)
class AttemptRecord:
    """Validation result of one attempt; logged, never persisted."""

    attempt: int
    outcome: AttemptOutcome
    diagnostic: str = ""


@dataclass(frozen=True, slots=True)
class Success:
    attempts: int
    committed: bool = False
    commit_sha: str | None = None


@dataclass(frozen=True, slots=True)
class Exhausted:
    attempts: int
    last_diagnostic: str = ""


@dataclass(frozen=True, slots=True)
class FatalError:
    reason: str
    scope: FatalScope = FatalScope.RUN


RepairOutcome = Union[Success, Exhausted, FatalError]

Preparer = Callable[[Path, str], object]


def repair_instruction(target: str) -> str:
    return (
        f"Please make the minimal Bazel file changes necessary to build {target}. "
        "Do not touch non-Bazel files."
    )


def build_test_command(target: str) -> str:
    return f"bazel build {target}"


def files_to_consider(target: str) -> tuple[str, ...]:
    return ("MODULE.bazel", build_file_for(target))


def stash_label(target: str) -> str:
    return f"bldfix-temp-stash target {target}"


def commit_message(model: str, target: str) -> str:
    return f"bldfix: model {model} target {target}"


class RepairLoop:
    """State machine repairing one target in one session.

    ``run`` never raises for expected failures; every path ends in a
    :class:`Success`, :class:`Exhausted` or :class:`FatalError` value.
    """

    def __init__(
        self,
        *,
        build_system: BuildSystemPort,
        agent: RepairAgentPort,
        vcs: VersionControlPort,
        max_attempts: int = MAX_ATTEMPTS,
        prepare: Preparer | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._build_system = build_system
        self._agent = agent
        self._vcs = vcs
        self.max_attempts = max_attempts
        self._prepare = prepare
        self.cancel_event = cancel_event or threading.Event()

    # ------------------------------------------------------------------ logging
    @staticmethod
    def _log_invoke(session: Session, target: str, attempt: int, step: str) -> None:
        INVOCATION_LOGGER.info(
            "model=%s target=%s attempt=%d invoked=%s", session.model, target, attempt, step
        )

    @staticmethod
    def _log_complete(session: Session, target: str, attempt: int, step: str, ok: bool) -> None:
        INVOCATION_LOGGER.info(
            "model=%s target=%s attempt=%d completed=%s status=%s",
            session.model,
            target,
            attempt,
            step,
            "ok" if ok else "err",
        )

    # ------------------------------------------------------------------- steps
    def _query(self, session: Session, target: str, attempt: int) -> ValidationResult:
        self._log_invoke(session, target, attempt, "query")
        try:
            result = self._build_system.query(session.worktree_path, target)
        except BuildSystemError:
            self._log_complete(session, target, attempt, "query", False)
            raise
        self._log_complete(session, target, attempt, "query", result.ok)
        return result

    def _build(self, session: Session, target: str, attempt: int) -> ValidationResult:
        self._log_invoke(session, target, attempt, "build")
        try:
            result = self._build_system.build(session.worktree_path, target)
        except BuildSystemError:
            self._log_complete(session, target, attempt, "build", False)
            raise
        self._log_complete(session, target, attempt, "build", result.ok)
        return result

    def _validate(self, session: Session, target: str, attempt: int) -> AttemptRecord:
        """Run query then build; a bazel launch failure counts as a failed stage."""

        try:
            query = self._query(session, target, attempt)
        except BuildSystemError as error:
            return AttemptRecord(attempt, AttemptOutcome.QUERY_FAILED, str(error))
        if not query.ok:
            return AttemptRecord(attempt, AttemptOutcome.QUERY_FAILED, query.output)
        try:
            build = self._build(session, target, attempt)
        except BuildSystemError as error:
            return AttemptRecord(attempt, AttemptOutcome.BUILD_FAILED, str(error))
        if not build.ok:
            return AttemptRecord(attempt, AttemptOutcome.BUILD_FAILED, build.output)
        return AttemptRecord(attempt, AttemptOutcome.SUCCEEDED, build.output)

    def _precheck(self, session: Session, target: str) -> bool:
        record = self._validate(session, target, PRECHECK_ATTEMPT)
        if record.outcome is AttemptOutcome.SUCCEEDED:
            LOGGER.info(
                "bazel query and build succeeded for model %s target %s; skipping agent",
                session.model,
                target,
            )
            return True
        LOGGER.info(
            "Pre-check %s for model %s target %s:\n%s",
            record.outcome.value.replace("_", " "),
            session.model,
            target,
            record.diagnostic,
        )
        return False

    def _invoke_agent(self, session: Session, target: str, attempt: int) -> None:
        self._log_invoke(session, target, attempt, "agent")
        try:
            self._agent.repair(
                session.worktree_path,
                session.model,
                target,
                repair_instruction(target),
                build_test_command(target),
                files_to_consider(target),
            )
        except AgentInvocationError:
            self._log_complete(session, target, attempt, "agent", False)
            raise
        self._log_complete(session, target, attempt, "agent", True)
        LOGGER.info(
            "agent completed for model %s target %s (attempt %d/%d)",
            session.model,
            target,
            attempt,
            self.max_attempts,
        )

    def _rollback(self, session: Session, target: str, attempt: int) -> None:
        self._log_invoke(session, target, attempt, "stash")
        try:
            stashed = self._vcs.stash_all(session.worktree_path, stash_label(target))
        except GitError:
            self._log_complete(session, target, attempt, "stash", False)
            raise
        self._log_complete(session, target, attempt, "stash", True)
        if not stashed:
            LOGGER.info("Nothing to stash in %s after attempt %d", session.worktree_path, attempt)

    def _commit(self, session: Session, target: str, attempt: int) -> RepairOutcome:
        path = session.worktree_path
        step = "stage"
        try:
            self._log_invoke(session, target, attempt, step)
            self._vcs.stage_all(path)
            self._log_complete(session, target, attempt, step, True)

            step = "status"
            self._log_invoke(session, target, attempt, step)
            clean = self._vcs.status_is_clean(path)
            self._log_complete(session, target, attempt, step, True)
            if clean:
                LOGGER.info(
                    "No changes to commit in %s for model %s target %s", path, session.model, target
                )
                return Success(attempts=attempt, committed=False)

            step = "commit"
            message = commit_message(session.model, target)
            self._log_invoke(session, target, attempt, step)
            sha = self._vcs.commit(path, message)
            self._log_complete(session, target, attempt, step, True)
        except GitError as error:
            self._log_complete(session, target, attempt, step, False)
            LOGGER.error("git %s failed in %s: %s", step, path, error)
            return FatalError(f"git {step} failed in {path}: {error}", FatalScope.RUN)

        LOGGER.info("Committed changes in %s: %s", path, message)
        return Success(attempts=attempt, committed=True, commit_sha=sha)

    # --------------------------------------------------------------------- run
    def run(self, session: Session, target: str) -> RepairOutcome:
        """Repair ``target`` in ``session`` and return the outcome."""

        if self.cancel_event.is_set():
            return FatalError("cancelled", FatalScope.RUN)

        if self._prepare is not None:
            try:
                self._prepare(session.worktree_path, target)
            except OSError as error:
                return FatalError(
                    f"preparing {target} in {session.worktree_path} failed: {error}", FatalScope.TARGET
                )

        if self._precheck(session, target):
            return Success(attempts=PRECHECK_ATTEMPT)

        last_diagnostic = ""
        for attempt in range(1, self.max_attempts + 1):
            if self.cancel_event.is_set():
                return FatalError("cancelled", FatalScope.RUN)

            try:
                self._invoke_agent(session, target, attempt)
            except AgentInvocationError as error:
                LOGGER.error("%s", error)
                return FatalError(str(error), FatalScope.RUN)

            record = self._validate(session, target, attempt)
            if record.outcome is AttemptOutcome.SUCCEEDED:
                LOGGER.info("bazel build succeeded for model %s target %s", session.model, target)
                return self._commit(session, target, attempt)

            last_diagnostic = record.diagnostic
            LOGGER.warning(
                "bazel %s failed for model %s target %s (attempt %d/%d):\n%s",
                "query" if record.outcome is AttemptOutcome.QUERY_FAILED else "build",
                session.model,
                target,
                attempt,
                self.max_attempts,
                record.diagnostic,
            )

            try:
                self._rollback(session, target, attempt)
            except GitError as error:
                LOGGER.error("git stash failed in %s: %s", session.worktree_path, error)
                return FatalError(f"git stash failed in {session.worktree_path}: {error}", FatalScope.TARGET)

        LOGGER.warning(
            "maximum attempts (%d) reached for model %s target %s",
            self.max_attempts,
            session.model,
            target,
        )
        return Exhausted(attempts=self.max_attempts, last_diagnostic=last_diagnostic)


__all__ = [
    "MAX_ATTEMPTS",
    "AttemptOutcome",
    "AttemptRecord",
    "Exhausted",
    "FatalError",
    "FatalScope",
    "RepairLoop",
    "RepairOutcome",
    "Success",
    "commit_message",
    "files_to_consider",
    "repair_instruction",
    "stash_label",
    "build_test_command",
]
