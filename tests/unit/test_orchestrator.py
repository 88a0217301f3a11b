from __future__ import annotations

from pathlib import Path

import pytest

from fakes import BUILD_FAIL, FAIL, OK, FakeAgent, FakeBuildSystem, FakeVcs

from bldfix.orchestrator import Orchestrator
from bldfix.ports import ValidationResult
from bldfix.repair_loop import RepairLoop
from bldfix.schema import TargetStatus
from bldfix.session import SessionManager
from bldfix.tools.vcs import GitError


class TargetScriptedBuild(FakeBuildSystem):
    """Builds succeed only for targets listed in ``buildable``."""

    def __init__(self, buildable: set[str]) -> None:
        super().__init__()
        self.buildable = buildable

    def query(self, path: Path, target: str) -> ValidationResult:
        self.calls.append(("query", str(path), target))
        return OK

    def build(self, path: Path, target: str) -> ValidationResult:
        self.calls.append(("build", str(path), target))
        return OK if target in self.buildable else BUILD_FAIL


def _orchestrator(
    tmp_path: Path,
    *,
    models: list[str],
    targets: list[str],
    vcs: FakeVcs,
    build: FakeBuildSystem,
    agent: FakeAgent,
    parallel_models: int = 1,
) -> Orchestrator:
    sessions = SessionManager.for_repository(vcs, repo_path=tmp_path / "repo", worktree_root=tmp_path / "wt")
    loop = RepairLoop(build_system=build, agent=agent, vcs=vcs)
    return Orchestrator(
        models=models,
        targets=targets,
        sessions=sessions,
        repair_loop=loop,
        parallel_models=parallel_models,
    )


def test_exhausted_target_skips_remaining_targets_for_that_model(tmp_path: Path) -> None:
    vcs = FakeVcs()
    build = TargetScriptedBuild(buildable={"t1", "t4"})
    agent = FakeAgent(vcs)
    orchestrator = _orchestrator(
        tmp_path, models=["m1", "m2"], targets=["t1", "t3", "t4"], vcs=vcs, build=build, agent=agent
    )

    report = orchestrator.run()

    assert report.entry("m1", "t1").status == TargetStatus.SUCCEEDED
    assert report.entry("m1", "t3").status == TargetStatus.EXHAUSTED
    assert report.entry("m1", "t3").attempts == 5
    assert report.entry("m1", "t4").status == TargetStatus.NOT_ATTEMPTED
    assert report.entry("m2", "t1").status == TargetStatus.SUCCEEDED
    assert report.entry("m2", "t3").status == TargetStatus.EXHAUSTED
    assert not any(call[2] == "t4" and "main-m1" in call[1] for call in build.calls)
    assert report.aborted is False
    assert report.has_fatal is False


def test_pairs_run_in_configuration_order(tmp_path: Path) -> None:
    vcs = FakeVcs()
    build = FakeBuildSystem()
    agent = FakeAgent(vcs)
    orchestrator = _orchestrator(
        tmp_path, models=["m1", "m2"], targets=["a", "b"], vcs=vcs, build=build, agent=agent
    )

    report = orchestrator.run()

    queried = [(Path(call[1]).name, call[2]) for call in build.calls if call[0] == "query"]
    assert queried == [("main-m1", "a"), ("main-m1", "b"), ("main-m2", "a"), ("main-m2", "b")]
    assert [(entry.model, entry.target) for entry in report.targets] == [
        ("m1", "a"),
        ("m1", "b"),
        ("m2", "a"),
        ("m2", "b"),
    ]
    assert report.count(TargetStatus.SUCCEEDED) == 4
    assert report.base_branch == "main"
    assert report.finished_at is not None


def test_sessions_are_provisioned_once_per_model(tmp_path: Path) -> None:
    vcs = FakeVcs()
    orchestrator = _orchestrator(
        tmp_path,
        models=["vendor/m1", "m2"],
        targets=["a"],
        vcs=vcs,
        build=FakeBuildSystem(),
        agent=FakeAgent(vcs),
    )

    orchestrator.run()

    assert vcs.branches == {"main", "main-vendor-m1", "main-m2"}
    assert sorted(path.name for path in vcs.worktrees) == ["main-m2", "main-vendor-m1"]


def test_agent_failure_aborts_the_whole_run(tmp_path: Path) -> None:
    vcs = FakeVcs()
    build = FakeBuildSystem(query_results=[FAIL])
    agent = FakeAgent(vcs, fail_on_call=1)
    orchestrator = _orchestrator(
        tmp_path, models=["m1", "m2"], targets=["a", "b"], vcs=vcs, build=build, agent=agent
    )

    report = orchestrator.run()

    assert report.aborted is True
    assert "m1" in report.abort_reason and "aider failed" in report.abort_reason
    assert report.entry("m1", "a").status == TargetStatus.FATAL
    assert report.entry("m1", "b").status == TargetStatus.NOT_ATTEMPTED
    assert report.entry("m2", "a").status == TargetStatus.NOT_ATTEMPTED
    assert report.has_fatal is True
    assert len(agent.calls) == 1


def test_target_scoped_failure_moves_to_next_model(tmp_path: Path) -> None:
    vcs = FakeVcs()
    vcs.fail_on["stash_all"] = GitError("cannot stash")
    build = FakeBuildSystem(query_results=[FAIL])
    agent = FakeAgent(vcs)
    orchestrator = _orchestrator(
        tmp_path, models=["m1", "m2"], targets=["a", "b"], vcs=vcs, build=build, agent=agent
    )

    report = orchestrator.run()

    assert report.aborted is False
    assert report.entry("m1", "a").status == TargetStatus.FATAL
    assert report.entry("m1", "b").status == TargetStatus.NOT_ATTEMPTED
    assert report.entry("m2", "a").status == TargetStatus.FATAL
    assert report.has_fatal is True


def test_session_failure_aborts_run(tmp_path: Path) -> None:
    vcs = FakeVcs()
    vcs.fail_on["add_worktree"] = GitError("fatal: could not create directory")
    build = FakeBuildSystem()
    orchestrator = _orchestrator(
        tmp_path, models=["m1", "m2"], targets=["a"], vcs=vcs, build=build, agent=FakeAgent(vcs)
    )

    report = orchestrator.run()

    assert report.aborted is True
    assert "Error ensuring worktree" in report.abort_reason
    assert build.calls == []
    assert report.count(TargetStatus.NOT_ATTEMPTED) == 2


def test_colliding_models_abort_before_any_work(tmp_path: Path) -> None:
    vcs = FakeVcs()
    build = FakeBuildSystem()
    orchestrator = _orchestrator(
        tmp_path, models=["a/b", "a:b"], targets=["t"], vcs=vcs, build=build, agent=FakeAgent(vcs)
    )

    report = orchestrator.run()

    assert report.aborted is True
    assert "a-b" in report.abort_reason
    assert vcs.branches == {"main"}
    assert build.calls == []


def test_parallel_models_cover_every_pair(tmp_path: Path) -> None:
    vcs = FakeVcs()
    build = TargetScriptedBuild(buildable={"a"})
    orchestrator = _orchestrator(
        tmp_path,
        models=["m1", "m2", "m3"],
        targets=["a", "b", "c"],
        vcs=vcs,
        build=build,
        agent=FakeAgent(vcs),
        parallel_models=3,
    )

    report = orchestrator.run()

    for model in ("m1", "m2", "m3"):
        statuses = [entry.status for entry in report.for_model(model)]
        assert statuses == [TargetStatus.SUCCEEDED, TargetStatus.EXHAUSTED, TargetStatus.NOT_ATTEMPTED]
    assert len(vcs.worktrees) == 3


def test_cancel_before_run_leaves_everything_not_attempted(tmp_path: Path) -> None:
    vcs = FakeVcs()
    build = FakeBuildSystem()
    orchestrator = _orchestrator(tmp_path, models=["m1"], targets=["a"], vcs=vcs, build=build, agent=FakeAgent(vcs))

    orchestrator.cancel()
    report = orchestrator.run()

    assert report.entry("m1", "a").status == TargetStatus.NOT_ATTEMPTED
    assert build.calls == []


def test_interrupt_in_parallel_run_cancels_other_models(tmp_path: Path) -> None:
    vcs = FakeVcs()
    build = FakeBuildSystem(query_results=[FAIL])
    holder: list[Orchestrator] = []

    def interrupt_first_model(call) -> None:
        if call.model == "m1":
            raise KeyboardInterrupt
        # m2 waits until the interrupt has been seen by the run.
        holder[0].cancel_event.wait(timeout=5)

    agent = FakeAgent(vcs, on_call=interrupt_first_model)
    orchestrator = _orchestrator(
        tmp_path,
        models=["m1", "m2"],
        targets=["a"],
        vcs=vcs,
        build=build,
        agent=agent,
        parallel_models=2,
    )
    holder.append(orchestrator)

    with pytest.raises(KeyboardInterrupt):
        orchestrator.run()

    assert [call.model for call in agent.calls].count("m2") <= 1
    assert orchestrator.cancel_event.is_set()


def test_interrupt_in_sequential_run_sets_cancel(tmp_path: Path) -> None:
    vcs = FakeVcs()

    def interrupt(call) -> None:
        raise KeyboardInterrupt

    orchestrator = _orchestrator(
        tmp_path,
        models=["m1", "m2"],
        targets=["a"],
        vcs=vcs,
        build=FakeBuildSystem(query_results=[FAIL]),
        agent=FakeAgent(vcs, on_call=interrupt),
    )

    with pytest.raises(KeyboardInterrupt):
        orchestrator.run()

    assert orchestrator.cancel_event.is_set()
