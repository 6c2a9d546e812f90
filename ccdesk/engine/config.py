"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via CCDESK_* env vars,
or a YAML file (see yaml_config.py) layered on top.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .models import ApprovalMode, DenyPolicy
from .permission_gate import parse_approval_mode

logger = logging.getLogger(__name__)


def default_data_dir() -> Path:
    return Path.home() / ".ccdesk"


def _parse_deny_policy(value: str | DenyPolicy) -> DenyPolicy:
    if isinstance(value, DenyPolicy):
        return value
    key = (value or "").strip().lower().replace("-", "_")
    try:
        return DenyPolicy(key)
    except ValueError:
        valid = ", ".join(p.value for p in DenyPolicy)
        raise ValueError(
            f"Unknown deny policy {value!r} (expected one of: {valid})"
        ) from None


@dataclass
class ControllerConfig:
    """Session controller configuration."""

    # CLI binary name or path; resolved against the login-shell PATH.
    claude_command: str = "claude"
    approval_mode: ApprovalMode = ApprovalMode.ASK_EVERY_TIME
    deny_policy: DenyPolicy = DenyPolicy.SKIP_ACTION

    # Terminal turns kept per project.
    history_limit: int = 50

    # Force-stop a turn after this long without any event.
    # Set to 0 (or a negative value) to disable.
    stall_timeout_seconds: float = 0.0

    # SIGTERM -> SIGKILL escalation delay when stopping the CLI.
    kill_grace_seconds: float = 3.0

    data_dir: Path | None = None
    project_dir: Path | None = None

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.data_dir is None:
            self.data_dir = default_data_dir()
        else:
            self.data_dir = Path(self.data_dir).expanduser()
        if self.project_dir is not None:
            self.project_dir = Path(self.project_dir).expanduser()
        if self.history_limit < 1:
            raise ValueError("history_limit must be at least 1")

    @property
    def stall_timeout_enabled(self) -> bool:
        return self.stall_timeout_seconds > 0

    @property
    def log_dir(self) -> Path:
        return Path(self.data_dir) / "logs"

    @classmethod
    def from_env(cls) -> ControllerConfig:
        """Load configuration from CCDESK_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("CCDESK_")
        }
        if env_vars:
            logger.info(
                "ControllerConfig.from_env: CCDESK_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(env_vars.items())),
            )
        else:
            logger.debug("ControllerConfig.from_env: no CCDESK_* env vars set, using defaults")

        data_dir = os.getenv("CCDESK_DATA_DIR")
        project_dir = os.getenv("CCDESK_PROJECT_DIR")
        config = cls(
            claude_command=os.getenv("CCDESK_CLAUDE_COMMAND", cls.claude_command),
            approval_mode=parse_approval_mode(
                os.getenv("CCDESK_APPROVAL_MODE", cls.approval_mode.value)
            ),
            deny_policy=_parse_deny_policy(
                os.getenv("CCDESK_DENY_POLICY", cls.deny_policy.value)
            ),
            history_limit=int(os.getenv(
                "CCDESK_HISTORY_LIMIT", str(cls.history_limit)
            )),
            stall_timeout_seconds=float(os.getenv(
                "CCDESK_STALL_TIMEOUT", str(cls.stall_timeout_seconds)
            )),
            kill_grace_seconds=float(os.getenv(
                "CCDESK_KILL_GRACE", str(cls.kill_grace_seconds)
            )),
            data_dir=Path(data_dir) if data_dir else None,
            project_dir=Path(project_dir) if project_dir else None,
            log_level=os.getenv("CCDESK_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "ControllerConfig.from_env: command=%s approval=%s history=%d data_dir=%s",
            config.claude_command, config.approval_mode.value,
            config.history_limit, config.data_dir,
        )
        return config
