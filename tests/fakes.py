"""Scripted in-memory ports used by the unit tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from bldfix.ports import BuildSystemPort, RepairAgentPort, ValidationResult, VersionControlPort
from bldfix.tools.agent import AgentInvocationError
from bldfix.tools.vcs import GitError


@dataclass
class FakeWorktree:
    """Files written by the fake agent; empty means a clean tree."""

    dirty: Set[str] = field(default_factory=set)


class FakeVcs(VersionControlPort):
    """Records every call; branches and worktrees live in memory."""

    def __init__(self, *, base_branch: str = "main") -> None:
        self.base_branch = base_branch
        self.branches: Set[str] = {base_branch}
        self.worktrees: Dict[Path, str] = {}
        self.trees: Dict[Path, FakeWorktree] = {}
        self.calls: List[Tuple[str, str]] = []
        self.commits: List[Tuple[Path, str]] = []
        self.stashes: List[Tuple[Path, str]] = []
        self.fail_on: Dict[str, Exception] = {}

    def tree(self, path: Path) -> FakeWorktree:
        return self.trees.setdefault(Path(path), FakeWorktree())

    def _maybe_fail(self, op: str) -> None:
        error = self.fail_on.get(op)
        if error is not None:
            raise error

    def current_branch(self, repo_path: Path) -> str:
        self.calls.append(("current_branch", str(repo_path)))
        self._maybe_fail("current_branch")
        return self.base_branch

    def branch_exists(self, repo_path: Path, name: str) -> bool:
        self.calls.append(("branch_exists", name))
        self._maybe_fail("branch_exists")
        return name in self.branches

    def create_branch(self, repo_path: Path, name: str) -> None:
        self.calls.append(("create_branch", name))
        self._maybe_fail("create_branch")
        self.branches.add(name)

    def worktree_exists(self, path: Path) -> bool:
        return Path(path) in self.worktrees

    def add_worktree(self, repo_path: Path, path: Path, branch: str) -> None:
        self.calls.append(("add_worktree", str(path)))
        self._maybe_fail("add_worktree")
        if branch not in self.branches:
            raise GitError(f"invalid reference: {branch}")
        self.worktrees[Path(path)] = branch

    def stage_all(self, path: Path) -> None:
        self.calls.append(("stage_all", str(path)))
        self._maybe_fail("stage_all")

    def status_is_clean(self, path: Path) -> bool:
        self.calls.append(("status_is_clean", str(path)))
        self._maybe_fail("status_is_clean")
        return not self.tree(path).dirty

    def commit(self, path: Path, message: str) -> str | None:
        self.calls.append(("commit", message))
        self._maybe_fail("commit")
        self.commits.append((Path(path), message))
        self.tree(path).dirty.clear()
        return f"{len(self.commits):040x}"

    def stash_all(self, path: Path, label: str) -> bool:
        self.calls.append(("stash_all", label))
        self._maybe_fail("stash_all")
        tree = self.tree(path)
        if not tree.dirty:
            return False
        self.stashes.append((Path(path), label))
        tree.dirty.clear()
        return True


Scripted = Union[ValidationResult, Exception]


class FakeBuildSystem(BuildSystemPort):
    """Answers queries and builds from scripted per-call results.

    ``query_results`` and ``build_results`` are consumed in order; when a
    queue runs out the last result repeats.  An exception in a queue is
    raised instead of returned.
    """

    def __init__(
        self,
        *,
        query_results: Sequence[Scripted] = (ValidationResult(ok=True),),
        build_results: Sequence[Scripted] = (ValidationResult(ok=True),),
    ) -> None:
        self._queries = list(query_results)
        self._builds = list(build_results)
        self.calls: List[Tuple[str, str, str]] = []

    @staticmethod
    def _next(queue: List[Scripted]) -> ValidationResult:
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return result

    def query(self, path: Path, target: str) -> ValidationResult:
        self.calls.append(("query", str(path), target))
        return self._next(self._queries)

    def build(self, path: Path, target: str) -> ValidationResult:
        self.calls.append(("build", str(path), target))
        return self._next(self._builds)


@dataclass
class AgentCall:
    path: Path
    model: str
    target: str
    instruction: str
    test_command: str
    files: Tuple[str, ...]


class FakeAgent(RepairAgentPort):
    """Marks the worktree dirty on every call unless told otherwise."""

    def __init__(
        self,
        vcs: Optional[FakeVcs] = None,
        *,
        edits: bool = True,
        fail_on_call: Optional[int] = None,
        on_call: Optional[Callable[[AgentCall], None]] = None,
    ) -> None:
        self._vcs = vcs
        self.edits = edits
        self.fail_on_call = fail_on_call
        self.on_call = on_call
        self.calls: List[AgentCall] = []

    def repair(
        self,
        path: Path,
        model: str,
        target: str,
        instruction: str,
        test_command: str,
        files_to_consider: Sequence[str],
    ) -> None:
        call = AgentCall(Path(path), model, target, instruction, test_command, tuple(files_to_consider))
        self.calls.append(call)
        if self.on_call is not None:
            self.on_call(call)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise AgentInvocationError(f"aider failed for model {model} target {target}: exit code 1")
        if self.edits and self._vcs is not None:
            self._vcs.tree(path).dirty.add(f"edit-{len(self.calls)}")


FAIL = ValidationResult(ok=False, output="ERROR: no such target")
BUILD_FAIL = ValidationResult(ok=False, output="ERROR: missing dependency")
OK = ValidationResult(ok=True, output="INFO: Build completed successfully")
