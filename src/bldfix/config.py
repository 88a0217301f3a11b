"""Run configuration: the ordered model and target lists plus tool settings.

Configuration is an optional YAML file validated into :class:`RunConfig`.
Anything left out falls back to the defaults below, so a bare ``bldfix run``
repairs the stock target list with the stock model list.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_CONFIG_NAME = "bldfix.yaml"

DEFAULT_MODELS: tuple[str, ...] = (
    "anthropic/claude-sonnet-4",
    "google/gemini-2.5-flash",
    "openai/gpt-4.1-mini",
    "google/gemini-2.5-pro",
    "openai/gpt-5",
    "qwen/qwen3-coder",
    "openrouter/sonoma-sky-alpha",
    "deepseek/deepseek-chat-v3.1",
    "x-ai/grok-code-fast-1",
    "x-ai/grok-4",
)

DEFAULT_TARGETS: tuple[str, ...] = (
    "//crates/matcher:grep_matcher",
    "//crates/matcher:integration_test",
    "//crates/globset:globset",
    "//crates/cli:grep_cli",
    "//crates/regex:grep_regex",
    "//crates/searcher:grep_searcher",
    "//crates/pcre2:grep_pcre2",
    "//crates/ignore:ignore",
    "//crates/printer:grep_printer",
    "//crates/grep:grep",
    "//:ripgrep",
    "//:integration_test",
)

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "models": list(DEFAULT_MODELS),
    "targets": list(DEFAULT_TARGETS),
    "model_prefix": "openrouter/",
    "worktree_root": None,
    "max_attempts": 5,
    "parallel_models": 1,
    "scaffold_build_files": True,
    "timeouts": {
        "vcs": 120,
        "query": 600,
        "build": 3600,
        "agent": 3600,
    },
    "executables": {
        "git": "git",
        "bazel": "bazel",
        "agent": "aider",
    },
}


class ConfigError(RuntimeError):
    """Raised when the configuration file is missing, unreadable or invalid."""


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", protected_namespaces=())


class Timeouts(_Section):
    """Per-invocation timeouts in seconds; ``None`` waits forever."""

    vcs: Optional[float] = 120
    query: Optional[float] = 600
    build: Optional[float] = 3600
    agent: Optional[float] = 3600

    @field_validator("vcs", "query", "build", "agent")
    @classmethod
    def _positive(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("timeouts must be positive or null")
        return value


class Executables(_Section):
    git: str = "git"
    bazel: str = "bazel"
    agent: str = "aider"


class RunConfig(_Section):
    """Validated run configuration."""

    models: List[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    targets: List[str] = Field(default_factory=lambda: list(DEFAULT_TARGETS))
    model_prefix: str = "openrouter/"
    worktree_root: Optional[Path] = None
    max_attempts: int = 5
    parallel_models: int = 1
    scaffold_build_files: bool = True
    timeouts: Timeouts = Field(default_factory=Timeouts)
    executables: Executables = Field(default_factory=Executables)

    @field_validator("models", "targets")
    @classmethod
    def _non_empty_entries(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value]
        if any(not item for item in cleaned):
            raise ValueError("entries must be non-empty strings")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("entries must be unique")
        return cleaned

    @field_validator("max_attempts", "parallel_models")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @property
    def agent_models(self) -> List[str]:
        """Model identifiers as handed to the agent (prefix applied)."""
        return [f"{self.model_prefix}{model}" for model in self.models]

    def resolve_worktree_root(self, home: Path | None = None) -> Path:
        """Return the directory that holds every session worktree."""
        if self.worktree_root is not None:
            return Path(self.worktree_root).expanduser().resolve()
        try:
            base = home if home is not None else Path.home()
        except RuntimeError as error:
            raise ConfigError(f"Error getting user home directory: {error}") from error
        return base / "worktree"


def load_config(config_path: Path | None) -> RunConfig:
    """Load and validate ``config_path``; ``None`` yields the defaults."""
    if config_path is None:
        return RunConfig()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error
    except OSError as error:
        raise ConfigError(f"Failed to read config {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    try:
        return RunConfig.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {config_path}: {error}") from error


def default_config_data() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "DEFAULT_MODELS",
    "DEFAULT_TARGETS",
    "ConfigError",
    "Executables",
    "RunConfig",
    "Timeouts",
    "default_config_data",
    "load_config",
    "write_config",
]
