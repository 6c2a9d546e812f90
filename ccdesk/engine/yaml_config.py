"""YAML configuration loader.

Layers a YAML file on top of the env-derived ControllerConfig. Keys
that are absent keep their env/default value.

Example YAML:
    controller:
      claude_command: /opt/claude/bin/claude
      approval_mode: auto-approve-safe
      deny_policy: skip_action
      history_limit: 50
      stall_timeout_seconds: 600
      kill_grace_seconds: 3

    project:
      path: ~/src/my-app

    logging:
      level: DEBUG
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

import yaml

from .config import ControllerConfig, _parse_deny_policy
from .permission_gate import parse_approval_mode

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".ccdesk"
CONFIG_FILENAME = "ccdesk.yaml"

_CONTROLLER_KEYS = {
    "claude_command": str,
    "approval_mode": parse_approval_mode,
    "deny_policy": _parse_deny_policy,
    "history_limit": int,
    "stall_timeout_seconds": float,
    "kill_grace_seconds": float,
    "data_dir": lambda v: Path(str(v)).expanduser(),
}


def discover_config(project_dir: Path) -> Path | None:
    """Return .ccdesk/ccdesk.yaml inside the project if it exists."""
    candidate = Path(project_dir) / CONFIG_DIRNAME / CONFIG_FILENAME
    if candidate.exists():
        logger.info("Auto-discovered config: %s", candidate)
        return candidate
    logger.debug("No config file at %s; using env/defaults", candidate)
    return None


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return value


def load_yaml_config(
    path: Path | str,
    base: ControllerConfig | None = None,
) -> ControllerConfig:
    """Parse a YAML config file and apply it over ``base``.

    Raises FileNotFoundError if the file is missing and ValueError
    (naming the offending key) for invalid values.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    config = base if base is not None else ControllerConfig.from_env()
    overrides: dict[str, Any] = {}

    controller = _section(raw, "controller")
    for key, value in controller.items():
        convert = _CONTROLLER_KEYS.get(key)
        if convert is None:
            logger.warning("Unknown controller config key '%s' in %s", key, path)
            continue
        try:
            overrides[key] = convert(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for controller.{key}: {exc}") from exc

    project = _section(raw, "project")
    if project.get("path"):
        overrides["project_dir"] = Path(str(project["path"])).expanduser()

    logging_section = _section(raw, "logging")
    if logging_section.get("level"):
        overrides["log_level"] = str(logging_section["level"]).upper()

    for key in raw:
        if key not in {"controller", "project", "logging"}:
            logger.warning("Unknown config section '%s' in %s", key, path)

    if overrides:
        logger.info(
            "Loaded config %s: %s", path, ", ".join(sorted(overrides)),
        )
    return dataclasses.replace(config, **overrides)
