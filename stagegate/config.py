"""Configuration management for stagegate.

Loads configuration from:
1. stagegate.toml (defaults)
2. Environment variables (overrides)
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

CONFIG_FILENAME = "stagegate.toml"


@dataclass
class WorkflowConfig:
    """Workflow execution configuration."""

    workspace_dir: str = "."
    state_dir: str = ".stagegate"
    max_parallel_tasks: int = 4
    remote: str = "origin"


@dataclass
class GateConfig:
    """Approval gate configuration."""

    auto_approve: bool = False  # answer yes to every approval (non-interactive)
    approver: str = "user"  # recorded as decided_by for console answers


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "INFO"
    audit_file: str = "audit.jsonl"  # relative to workflow.state_dir


@dataclass
class Config:
    """Main configuration container."""

    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        workflow_data = data.get("workflow", {})
        gate_data = data.get("gate", {})
        logging_data = data.get("logging", {})

        return cls(
            workflow=WorkflowConfig(**workflow_data),
            gate=GateConfig(**gate_data),
            logging=LoggingConfig(**logging_data),
        )

    @property
    def workspace(self) -> Path:
        return Path(self.workflow.workspace_dir)

    @property
    def state_path(self) -> Path:
        return self.workspace / self.workflow.state_dir

    @property
    def audit_path(self) -> Path:
        return self.state_path / self.logging.audit_file


def find_config_file() -> Path | None:
    """Find stagegate.toml in current or parent directories.

    Returns:
        Path to stagegate.toml or None if not found.
    """
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_path = directory / CONFIG_FILENAME
        if config_path.exists():
            return config_path

    return None


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Optional explicit path to stagegate.toml

    Returns:
        Config object with merged settings.
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path, "rb") as f:
                config_data = tomllib.load(f)

    env_overrides = {
        "workflow": {
            "workspace_dir": os.getenv("STAGEGATE_WORKSPACE"),
            "max_parallel_tasks": _int_or_none(os.getenv("STAGEGATE_MAX_PARALLEL_TASKS")),
        },
        "gate": {
            "auto_approve": _bool_or_none(os.getenv("STAGEGATE_AUTO_APPROVE")),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL"),
        },
    }

    # Merge env overrides (only non-None values)
    for section, values in env_overrides.items():
        if section not in config_data:
            config_data[section] = {}
        for key, value in values.items():
            if value is not None:
                config_data[section][key] = value

    return Config.from_dict(config_data)


def _int_or_none(value: str | None) -> int | None:
    """Convert string to int, or return None."""
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _bool_or_none(value: str | None) -> bool | None:
    """Convert "1/true/yes" or "0/false/no" to bool, or return None."""
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return None


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance.

    Returns:
        Config object (loaded once, cached).
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Path | str | None = None) -> Config:
    """Force reload of configuration.

    Args:
        config_path: Optional explicit path to stagegate.toml

    Returns:
        Fresh Config object.
    """
    global _config
    _config = load_config(config_path)
    return _config
