"""Project identity and lightweight project inspection.

Maps a project directory to a stable storage key under the data dir
and reports what Claude Code configuration the project carries.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

CLAUDE_CONFIG_DIR = ".claude"


def project_key(project_path: Path | str) -> str:
    """Stable, filesystem-safe identity for a project directory.

    Example: /home/user/myproject -> home-user-myproject
    """
    resolved = Path(project_path).expanduser().resolve()
    parts = [p for p in resolved.parts[1:] if p not in ("\\", "/")]
    key = "-".join(p.replace(":", "").replace(" ", "_") for p in parts)
    return key or "root"


@dataclass
class ProjectInfo:
    """What the agent will find when it runs in this directory."""
    path: Path
    name: str
    has_claude_config: bool = False
    agents: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return project_key(self.path)

    @property
    def suggestion(self) -> str | None:
        if not self.has_claude_config:
            return "No .claude/ config found. Add agents or skills to guide Claude Code."
        if not self.agents and not self.skills:
            return "Claude Code config found but no agents or skills."
        return None


def _list_markdown_stems(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    names = []
    for entry in sorted(directory.iterdir()):
        if entry.is_file() and entry.suffix == ".md":
            names.append(entry.stem)
        elif entry.is_dir() and (entry / "SKILL.md").exists():
            names.append(entry.name)
    return names


def analyze_project(path: Path | str) -> ProjectInfo:
    """Inspect a project directory. Raises NotADirectoryError if missing."""
    root = Path(path).expanduser().resolve()
    if not root.is_dir():
        raise NotADirectoryError(str(root))
    claude_dir = root / CLAUDE_CONFIG_DIR
    info = ProjectInfo(
        path=root,
        name=root.name or str(root),
        has_claude_config=claude_dir.is_dir(),
        agents=_list_markdown_stems(claude_dir / "agents"),
        skills=_list_markdown_stems(claude_dir / "skills"),
    )
    logger.debug(
        "Analyzed project %s: claude_config=%s agents=%d skills=%d",
        root, info.has_claude_config, len(info.agents), len(info.skills),
    )
    return info
