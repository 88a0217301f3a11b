"""External tool integrations used by the repair loop."""

from .agent import AgentInvocationError, AiderAgent
from .bazel import BazelBuildSystem, BuildSystemError, build_file_for, package_of
from .process import CommandResult, ProcessLaunchError, run_command
from .scaffold import ModuleBootstrapResult, ScaffoldError, ensure_build_file, ensure_module_file
from .vcs import GitError, GitRepository, GitVersionControl

__all__ = [
    "AgentInvocationError",
    "AiderAgent",
    "BazelBuildSystem",
    "BuildSystemError",
    "CommandResult",
    "GitError",
    "GitRepository",
    "GitVersionControl",
    "ModuleBootstrapResult",
    "ProcessLaunchError",
    "ScaffoldError",
    "build_file_for",
    "ensure_build_file",
    "ensure_module_file",
    "package_of",
    "run_command",
]
