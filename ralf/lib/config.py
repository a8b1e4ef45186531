"""
Project configuration for Ralf.

Loads .ralf/config.yaml to locate state files and hook handlers and to decide
which external commands act as executor and evaluator. If no config file
exists, returns defaults matching the plugin's historical layout.

Example .ralf/config.yaml:

    hook_timeout: 30
    hooks:
      on_task_completed: "scripts/notify.sh --done"
    executor:
      command: "claude -p --output-format json"
      timeout: 1800
    evaluator:
      command: "claude -p --output-format json"
"""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from ralf.lib.constants import CONFIG_FILE, DEFAULT_HOOK_TIMEOUT, HOOKS_DIR, STATE_FILE

logger = logging.getLogger(__name__)


DEFAULT_EXECUTOR_COMMAND = "claude -p --output-format json"

# Hook names accepted under the `hooks:` key
HOOK_NAMES = ("on_task_start", "on_task_completed", "on_task_blocked")


@dataclass
class RalfConfig:
    """Configuration from .ralf/config.yaml, resolved against the project directory."""
    project_dir: Path
    state_file: Path
    hooks_dir: Path
    hook_timeout: int = DEFAULT_HOOK_TIMEOUT
    hooks: dict[str, list[str]] = field(default_factory=dict)
    executor_command: list[str] = field(default_factory=lambda: shlex.split(DEFAULT_EXECUTOR_COMMAND))
    executor_timeout: Optional[int] = None
    evaluator_command: Optional[list[str]] = None
    evaluator_timeout: Optional[int] = None


def default_config(project_dir: Path) -> RalfConfig:
    return RalfConfig(
        project_dir=project_dir,
        state_file=project_dir / STATE_FILE,
        hooks_dir=project_dir / HOOKS_DIR,
    )


def _positive_int(value, key: str, default):
    """Return value if it is a positive integer, else warn and return default."""
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        logger.warning(f"Invalid {key} '{value}' in {CONFIG_FILE}, using {default}")
        return default
    return value


def _command(value, key: str) -> Optional[list[str]]:
    """Split a command string (or accept an argv list)."""
    if value is None:
        return None
    if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
        return value
    if isinstance(value, str) and value.strip():
        return shlex.split(value)
    logger.warning(f"Invalid command for {key} in {CONFIG_FILE}, ignoring")
    return None


def _section(data: dict, key: str) -> dict:
    """Return the mapping under key, or {} (with a warning) if it is something else."""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        logger.warning(f"Ignoring {key} in {CONFIG_FILE}: expected a mapping, got {type(value).__name__}")
        return {}
    return value


def _relative_path(project_dir: Path, value, key: str, default: Path) -> Path:
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        logger.warning(f"Invalid {key} '{value}' in {CONFIG_FILE}, using {default}")
        return default
    return project_dir / value


def load_config(project_dir: Path) -> RalfConfig:
    """Load .ralf/config.yaml and return RalfConfig.

    If the file doesn't exist or can't be parsed, returns defaults.
    """
    config = default_config(project_dir)
    config_path = project_dir / CONFIG_FILE
    if not config_path.exists():
        return config

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return config

    if not data:
        return config
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping at top level")
        return config

    config.state_file = _relative_path(project_dir, data.get("state_file"), "state_file", config.state_file)
    config.hooks_dir = _relative_path(project_dir, data.get("hooks_dir"), "hooks_dir", config.hooks_dir)
    config.hook_timeout = _positive_int(data.get("hook_timeout"), "hook_timeout", DEFAULT_HOOK_TIMEOUT)

    for name, command in _section(data, "hooks").items():
        if name not in HOOK_NAMES:
            logger.warning(f"Unknown hook '{name}' in {config_path}, expected one of {HOOK_NAMES}")
            continue
        cmd = _command(command, f"hooks.{name}")
        if cmd:
            config.hooks[name] = cmd

    executor = _section(data, "executor")
    cmd = _command(executor.get("command"), "executor.command")
    if cmd:
        config.executor_command = cmd
    config.executor_timeout = _positive_int(executor.get("timeout"), "executor.timeout", None)

    evaluator = _section(data, "evaluator")
    config.evaluator_command = _command(evaluator.get("command"), "evaluator.command")
    config.evaluator_timeout = _positive_int(evaluator.get("timeout"), "evaluator.timeout", None)

    return config
