"""Drive the repair loop over every configured model and target."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from .repair_loop import Exhausted, FatalError, FatalScope, RepairLoop, RepairOutcome, Success
from .schema import RunReport, TargetReport, TargetStatus, utc_now
from .session import SessionError, SessionManager

LOGGER = logging.getLogger(__name__)

_DETAIL_LIMIT = 2000


def _tail(text: str, limit: int = _DETAIL_LIMIT) -> str:
    stripped = text.strip()
    if len(stripped) <= limit:
        return stripped
    return "..." + stripped[-limit:]


class Orchestrator:
    """Run models in order, and each model's targets in order.

    A model that exhausts its attempts on a target, or hits a target-scoped
    fatal error, gives up on its remaining targets and the next model starts.
    Run-scoped fatal errors (including session provisioning failures) stop
    the whole run; whatever was not reached is reported as not attempted.
    """

    def __init__(
        self,
        *,
        models: Sequence[str],
        targets: Sequence[str],
        sessions: SessionManager,
        repair_loop: RepairLoop,
        parallel_models: int = 1,
    ) -> None:
        if parallel_models < 1:
            raise ValueError("parallel_models must be >= 1")
        self._models = tuple(models)
        self._targets = tuple(targets)
        self._sessions = sessions
        self._loop = repair_loop
        self._parallel_models = parallel_models
        self._cancel = repair_loop.cancel_event
        self._abort_lock = threading.Lock()

    @property
    def models(self) -> tuple[str, ...]:
        return self._models

    @property
    def targets(self) -> tuple[str, ...]:
        return self._targets

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def cancel(self) -> None:
        """Ask the run to stop before the next target or attempt."""
        self._cancel.set()

    def _abort(self, report: RunReport, reason: str) -> None:
        with self._abort_lock:
            self._cancel.set()
            if not report.aborted:
                report.aborted = True
                report.abort_reason = reason
                LOGGER.error("Aborting run: %s", reason)

    def _record(self, entry: TargetReport, outcome: RepairOutcome) -> None:
        if isinstance(outcome, Success):
            entry.status = TargetStatus.SUCCEEDED
            entry.attempts = outcome.attempts
            entry.committed = outcome.committed
            entry.commit_sha = outcome.commit_sha
        elif isinstance(outcome, Exhausted):
            entry.status = TargetStatus.EXHAUSTED
            entry.attempts = outcome.attempts
            entry.detail = _tail(outcome.last_diagnostic)
        else:
            entry.status = TargetStatus.FATAL
            entry.detail = outcome.reason

    def run_model(self, model: str, report: RunReport) -> None:
        """Provision ``model``'s session and work through the targets until one fails."""

        if self._cancel.is_set():
            return
        try:
            session = self._sessions.ensure(model)
        except SessionError as error:
            self._abort(report, str(error))
            return

        for target in self._targets:
            if self._cancel.is_set():
                return
            entry = report.entry(model, target)
            outcome = self._loop.run(session, target)
            self._record(entry, outcome)

            if isinstance(outcome, Success):
                LOGGER.info(
                    "model %s target %s succeeded after %d attempt(s)%s",
                    model,
                    target,
                    outcome.attempts,
                    "; committed" if outcome.committed else "",
                )
                continue

            if isinstance(outcome, Exhausted):
                LOGGER.warning(
                    "model %s did not build target %s in %d attempts; moving to next model",
                    model,
                    target,
                    outcome.attempts,
                )
                return

            assert isinstance(outcome, FatalError)
            if outcome.scope is FatalScope.RUN:
                self._abort(report, f"model {model} target {target}: {outcome.reason}")
                return
            LOGGER.error(
                "model %s target %s failed: %s; moving to next model", model, target, outcome.reason
            )
            return

    def run(self) -> RunReport:
        """Execute the full run and return a report covering every pair."""

        report = RunReport(
            base_branch=self._sessions.base_branch,
            targets=[TargetReport(model=model, target=target) for model in self._models for target in self._targets],
        )

        try:
            self._sessions.check_injective(self._models)
        except SessionError as error:
            self._abort(report, str(error))
            report.finished_at = utc_now()
            return report

        if self._parallel_models == 1 or len(self._models) <= 1:
            try:
                for model in self._models:
                    if self._cancel.is_set():
                        break
                    self.run_model(model, report)
            except BaseException:
                self._cancel.set()
                raise
        else:
            with ThreadPoolExecutor(max_workers=self._parallel_models, thread_name_prefix="bldfix-model") as pool:
                futures = [pool.submit(self.run_model, model, report) for model in self._models]
                try:
                    for future in futures:
                        future.result()
                except BaseException:
                    # Running workers stop at their next cancellation check.
                    self._cancel.set()
                    pool.shutdown(wait=True, cancel_futures=True)
                    raise

        report.finished_at = utc_now()
        LOGGER.info(
            "Run finished: %d succeeded, %d exhausted, %d fatal, %d not attempted",
            report.count(TargetStatus.SUCCEEDED),
            report.count(TargetStatus.EXHAUSTED),
            report.count(TargetStatus.FATAL),
            report.count(TargetStatus.NOT_ATTEMPTED),
        )
        return report


__all__ = ["Orchestrator"]
