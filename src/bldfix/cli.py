"""CLI commands for repairing Bazel targets with model-driven agents."""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

import typer

from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    RunConfig,
    default_config_data,
    load_config,
    write_config,
)
from .orchestrator import Orchestrator
from .repair_loop import RepairLoop
from .schema import RunReport, TargetStatus
from .session import SessionError, SessionManager
from .tools.agent import AiderAgent
from .tools.bazel import BazelBuildSystem
from .tools.scaffold import ScaffoldError, ensure_build_file, ensure_module_file
from .tools.vcs import GitError, GitRepository, GitVersionControl

APP_HELP = "Repair Bazel targets one model at a time, committing each fix on a per-model branch."
DEFAULT_LOG_NAME = "bld.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
INVOCATION_FORMAT = "%(asctime)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help=APP_HELP)


def configure_logging(log_path: Optional[Path], *, level: int = logging.INFO) -> None:
    """Send detailed logs to ``log_path`` and one-line invocation events to stderr.

    When the log file cannot be opened the detailed log falls back to stderr.
    """

    package_logger = logging.getLogger("bldfix")
    invocation_logger = logging.getLogger("bldfix.invocations")
    for logger in (package_logger, invocation_logger):
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
    package_logger.setLevel(level)
    invocation_logger.setLevel(logging.INFO)

    detail_handler: logging.Handler
    if log_path is None:
        detail_handler = logging.StreamHandler(sys.stderr)
    else:
        try:
            detail_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        except OSError as error:
            detail_handler = logging.StreamHandler(sys.stderr)
            typer.echo(
                f"Warning: could not open log file {log_path}: {error}; logging to stderr",
                err=True,
            )
    detail_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    package_logger.addHandler(detail_handler)

    if log_path is not None:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(INVOCATION_FORMAT))
        invocation_logger.addHandler(console)


def _resolve_wd(wd: Optional[str]) -> Path:
    """Resolve the repository working directory (``--wd``, ``$PWD``, then the process cwd)."""
    candidate = wd or os.environ.get("PWD")
    if candidate:
        return Path(candidate).resolve()
    try:
        return Path.cwd()
    except OSError as error:
        typer.echo(f"Error getting working directory: {error}", err=True)
        raise typer.Exit(code=1) from error


def _resolve_config_path(config: Optional[str], wd: Path) -> Optional[Path]:
    if config:
        return Path(config)
    candidate = wd / DEFAULT_CONFIG_NAME
    return candidate if candidate.exists() else None


def _load_run_config(config: Optional[str], wd: Path) -> RunConfig:
    try:
        return load_config(_resolve_config_path(config, wd))
    except ConfigError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=2) from error


def _discover_repository(start: Path, run_config: RunConfig) -> GitRepository:
    """Return the git repository containing ``start``, which may be a subdirectory."""
    try:
        return GitRepository.discover(
            start,
            executable=run_config.executables.git,
            timeout=run_config.timeouts.vcs,
        )
    except GitError as error:
        typer.echo(f"Error getting git repository: {error}", err=True)
        raise typer.Exit(code=1) from error


def build_orchestrator(run_config: RunConfig, repo_path: Path, *, worktree_root: Path) -> Orchestrator:
    """Wire the production adapters into an :class:`Orchestrator`."""

    timeouts = run_config.timeouts
    executables = run_config.executables
    vcs = GitVersionControl(executable=executables.git, timeout=timeouts.vcs)
    sessions = SessionManager.for_repository(vcs, repo_path=repo_path, worktree_root=worktree_root)
    loop = RepairLoop(
        build_system=BazelBuildSystem(
            executable=executables.bazel,
            query_timeout=timeouts.query,
            build_timeout=timeouts.build,
        ),
        agent=AiderAgent(executable=executables.agent, timeout=timeouts.agent),
        vcs=vcs,
        max_attempts=run_config.max_attempts,
        prepare=ensure_build_file if run_config.scaffold_build_files else None,
    )
    return Orchestrator(
        models=run_config.agent_models,
        targets=run_config.targets,
        sessions=sessions,
        repair_loop=loop,
        parallel_models=run_config.parallel_models,
    )


def _render_report(report: RunReport) -> None:
    """Display a concise per-model summary of the run."""
    typer.echo(f"Base branch: {report.base_branch}")
    current_model: Optional[str] = None
    for entry in report.targets:
        if entry.model != current_model:
            current_model = entry.model
            typer.echo(f"{current_model}:")
        line = f"  - {entry.target} -> {entry.status.value}"
        if entry.status in {TargetStatus.SUCCEEDED, TargetStatus.EXHAUSTED}:
            line += f" (attempts: {entry.attempts})"
        if entry.commit_sha:
            line += f" commit {entry.commit_sha[:7]}"
        typer.echo(line)
        if entry.status == TargetStatus.FATAL and entry.detail:
            typer.echo(f"      ! {entry.detail}")
    typer.echo(
        "Totals: "
        f"{report.count(TargetStatus.SUCCEEDED)} succeeded, "
        f"{report.count(TargetStatus.EXHAUSTED)} exhausted, "
        f"{report.count(TargetStatus.FATAL)} fatal, "
        f"{report.count(TargetStatus.NOT_ATTEMPTED)} not attempted"
    )
    if report.aborted:
        typer.echo(f"Run aborted: {report.abort_reason}")


def _config_option() -> Optional[str]:
    return typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to the run configuration (defaults to {DEFAULT_CONFIG_NAME} in the working directory).",
    )


def _wd_option() -> Optional[str]:
    return typer.Option(None, "--wd", help="Working directory inside the repository (defaults to $PWD).")


def _log_option() -> Optional[Path]:
    return typer.Option(Path(DEFAULT_LOG_NAME), "--log", help="Path to the detailed log file.")


@app.command()
def run(
    config: Optional[str] = _config_option(),
    wd: Optional[str] = _wd_option(),
    log: Optional[Path] = _log_option(),
    report_path: Optional[Path] = typer.Option(
        None,
        "--report",
        help="Write the run report as JSON to this path.",
    ),
    parallel_models: Optional[int] = typer.Option(
        None,
        "--parallel-models",
        min=1,
        help="Number of models to work on concurrently (overrides the configuration).",
    ),
) -> None:
    """Repair every configured target with every configured model."""
    configure_logging(log)
    repo_path = _resolve_wd(wd)
    run_config = _load_run_config(config, repo_path)
    if parallel_models is not None:
        run_config.parallel_models = parallel_models
    repo_root = _discover_repository(repo_path, run_config).root

    try:
        worktree_root = run_config.resolve_worktree_root()
        orchestrator = build_orchestrator(run_config, repo_root, worktree_root=worktree_root)
    except (ConfigError, SessionError) as error:
        LOGGER.error("%s", error)
        typer.echo(str(error), err=True)
        raise typer.Exit(code=1) from error

    try:
        report = orchestrator.run()
    except KeyboardInterrupt:
        orchestrator.cancel()
        typer.echo("Interrupted.", err=True)
        raise typer.Exit(code=1)

    _render_report(report)
    if report_path is not None:
        written = report.write(report_path)
        typer.echo(f"Report written to {written}")

    if report.has_fatal:
        raise typer.Exit(code=1)


@app.command()
def bootstrap(
    wd: Optional[str] = _wd_option(),
    config: Optional[str] = _config_option(),
    log: Optional[Path] = typer.Option(None, "--log", help="Path to the detailed log file."),
) -> None:
    """Create and commit an empty MODULE.bazel when the repository has none."""
    configure_logging(log)
    repo_path = _resolve_wd(wd)
    run_config = _load_run_config(config, repo_path)
    repo = _discover_repository(repo_path, run_config)
    try:
        bazel = BazelBuildSystem(
            executable=run_config.executables.bazel,
            query_timeout=run_config.timeouts.query,
        )
        result = ensure_module_file(repo, bazel)
    except (GitError, ScaffoldError) as error:
        typer.echo(f"error creating MODULE.bazel file if necessary: {error}", err=True)
        raise typer.Exit(code=1) from error

    if result.created:
        typer.echo("Created MODULE.bazel.")
    else:
        typer.echo("MODULE.bazel already present.")
    if result.committed:
        typer.echo("Committed MODULE.bazel and MODULE.bazel.lock.")
    if result.target_count is not None:
        typer.echo(f"Found {result.target_count} targets.")


@app.command()
def status(
    config: Optional[str] = _config_option(),
    wd: Optional[str] = _wd_option(),
) -> None:
    """Show the configured sessions and whether their branches and worktrees exist."""
    repo_path = _resolve_wd(wd)
    run_config = _load_run_config(config, repo_path)
    repo_path = _discover_repository(repo_path, run_config).root
    vcs = GitVersionControl(executable=run_config.executables.git, timeout=run_config.timeouts.vcs)
    try:
        worktree_root = run_config.resolve_worktree_root()
        sessions = SessionManager.for_repository(vcs, repo_path=repo_path, worktree_root=worktree_root)
        sessions.check_injective(run_config.agent_models)
    except (ConfigError, SessionError) as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=1) from error

    typer.echo(f"Repository: {repo_path}")
    typer.echo(f"Base branch: {sessions.base_branch}")
    typer.echo(f"Worktree root: {worktree_root}")
    for name, executable in (
        ("git", run_config.executables.git),
        ("bazel", run_config.executables.bazel),
        ("agent", run_config.executables.agent),
    ):
        found = "found" if shutil.which(executable) else "missing"
        typer.echo(f"Tool {name}: {executable} ({found})")

    typer.echo(f"Targets: {len(run_config.targets)}")
    typer.echo("Sessions:")
    for model in run_config.agent_models:
        session = sessions.session_for(model)
        try:
            branch = "yes" if vcs.branch_exists(repo_path, session.branch_name) else "no"
        except GitError:
            branch = "unknown"
        worktree = "yes" if vcs.worktree_exists(session.worktree_path) else "no"
        typer.echo(f"- {model}: branch {session.branch_name} [{branch}] worktree {session.worktree_path} [{worktree}]")


@app.command()
def init(
    wd: Optional[str] = _wd_option(),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration to the working directory."""
    repo_path = _resolve_wd(wd)
    config_path = repo_path / DEFAULT_CONFIG_NAME
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_config(config_path, default_config_data())
    typer.echo(f"Wrote default configuration to {config_path}")


if __name__ == "__main__":
    app()
