"""Typed records describing the result of a repair run."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class TargetStatus(str, Enum):
    """Final state of one (model, target) pair."""

    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    FATAL = "fatal"
    NOT_ATTEMPTED = "not_attempted"


class TargetReport(RecordModel):
    """Outcome recorded for a single model and target."""

    model: str
    target: str
    status: TargetStatus = TargetStatus.NOT_ATTEMPTED
    attempts: int = 0
    committed: bool = False
    commit_sha: Optional[str] = None
    detail: str = ""


class RunReport(RecordModel):
    """Every configured (model, target) pair, in configuration order."""

    base_branch: str
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    aborted: bool = False
    abort_reason: str = ""
    targets: List[TargetReport] = Field(default_factory=list)

    def for_model(self, model: str) -> List[TargetReport]:
        return [entry for entry in self.targets if entry.model == model]

    def entry(self, model: str, target: str) -> TargetReport:
        for candidate in self.targets:
            if candidate.model == model and candidate.target == target:
                return candidate
        raise KeyError(f"No report entry for model {model} target {target}")

    def count(self, status: TargetStatus) -> int:
        return sum(1 for entry in self.targets if entry.status == status)

    @property
    def has_fatal(self) -> bool:
        return self.aborted or self.count(TargetStatus.FATAL) > 0

    def write(self, path: Path | str) -> Path:
        """Persist the report as JSON and return the written path."""
        destination = Path(path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return destination


__all__ = ["RecordModel", "RunReport", "TargetReport", "TargetStatus", "utc_now"]
