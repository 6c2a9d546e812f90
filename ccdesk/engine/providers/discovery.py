"""Locate the Claude Code CLI and build the environment it runs in.

Desktop launchers often start without the user's shell PATH, so the
search path is taken from a login shell first and falls back to the
usual per-user install locations.
"""
from __future__ import annotations

import functools
import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Variables set when running inside another Claude Code session; the CLI
# refuses to start a nested session when it sees them.
NESTED_SESSION_VARS = (
    "CLAUDECODE",
    "CLAUDE_CODE_SESSION",
    "CLAUDE_CODE_ENTRY_POINT",
    "CLAUDE_CODE_PACKAGE_DIR",
)

_VERSION_RE = re.compile(r"(\d+\.\d+\.\d+)")


@dataclass
class ClaudeInstallStatus:
    installed: bool
    version: str | None = None
    path: str | None = None


def _login_shell_path(shells: list[str]) -> str | None:
    for shell in shells:
        if not Path(shell).exists():
            continue
        try:
            result = subprocess.run(
                [shell, "-l", "-c", "echo $PATH"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError):
            logger.debug("Login shell %s failed to report PATH", shell, exc_info=True)
            continue
        if result.returncode == 0:
            shell_path = result.stdout.strip().splitlines()[-1:] or [""]
            if shell_path[0]:
                return shell_path[0]
    return None


@functools.lru_cache(maxsize=1)
def resolve_full_path() -> str:
    """PATH including user shell paths. Cached for the process lifetime."""
    current = os.environ.get("PATH", "")
    home = Path.home()

    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA", "")
        parts = [str(home / "AppData" / "Roaming" / "npm"), appdata, current]
        return os.pathsep.join(p for p in parts if p)

    if sys.platform == "darwin":
        shells = ["/bin/zsh", "/bin/bash"]
        extras = [
            home / ".local" / "bin",
            home / ".cargo" / "bin",
            Path("/usr/local/bin"),
            Path("/opt/homebrew/bin"),
        ]
    else:
        shells = ["/bin/bash", "/bin/zsh", "/bin/sh"]
        extras = [
            home / ".local" / "bin",
            home / ".cargo" / "bin",
            Path("/usr/local/bin"),
        ]

    shell_path = _login_shell_path(shells)
    if shell_path:
        return shell_path
    return os.pathsep.join([*(str(p) for p in extras), current])


def _candidates(command: str) -> list[str]:
    if sys.platform == "win32" and not Path(command).suffix:
        return [f"{command}.exe", f"{command}.cmd", f"{command}.ps1", command]
    return [command]


def find_claude_binary(command: str = "claude") -> str | None:
    """Absolute path of the CLI, or None if it cannot be found."""
    if not command:
        return None
    explicit = Path(command).expanduser()
    if explicit.is_absolute() or os.sep in command:
        return str(explicit) if explicit.exists() else None

    search_path = resolve_full_path()
    for candidate in _candidates(command):
        found = shutil.which(candidate, path=search_path)
        if found:
            return found
    return None


def build_clean_env(base: dict[str, str] | None = None) -> dict[str, str]:
    """Child environment: no nested-session markers, full PATH."""
    env = dict(os.environ if base is None else base)
    for var in NESTED_SESSION_VARS:
        env.pop(var, None)
    env["PATH"] = resolve_full_path()
    return env


def check_claude_installed(command: str = "claude") -> ClaudeInstallStatus:
    """Report whether the CLI is installed and which version it reports."""
    path = find_claude_binary(command)
    if path is None:
        return ClaudeInstallStatus(installed=False)

    version: str | None = None
    try:
        out = subprocess.check_output(
            [path, "--version"],
            text=True,
            stderr=subprocess.STDOUT,
            timeout=10,
            env=build_clean_env(),
        ).strip()
        match = _VERSION_RE.search(out)
        version = match.group(1) if match else (out or None)
    except (OSError, subprocess.SubprocessError):
        logger.debug("Could not resolve claude CLI version", exc_info=True)
        return ClaudeInstallStatus(installed=False, path=path)

    logger.info("Claude Code CLI %s at %s", version or "unknown", path)
    return ClaudeInstallStatus(installed=True, version=version, path=path)
