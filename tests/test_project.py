"""Tests for project identity and inspection."""

from __future__ import annotations

import pytest

from ccdesk.shared.services.project import analyze_project, project_key


def test_project_key_is_stable_and_path_based(tmp_path) -> None:
    project = tmp_path / "my app"
    project.mkdir()

    key = project_key(project)

    assert key == project_key(str(project) + "/")
    assert key.endswith("my_app")
    assert "/" not in key
    assert key != project_key(tmp_path)


def test_analyze_project_without_claude_config(tmp_path) -> None:
    info = analyze_project(tmp_path)

    assert info.path == tmp_path.resolve()
    assert info.has_claude_config is False
    assert info.agents == []
    assert "No .claude/ config" in info.suggestion


def test_analyze_project_lists_agents_and_skills(tmp_path) -> None:
    agents = tmp_path / ".claude" / "agents"
    agents.mkdir(parents=True)
    (agents / "reviewer.md").write_text("# reviewer\n", encoding="utf-8")
    (agents / "notes.txt").write_text("ignored\n", encoding="utf-8")
    skill = tmp_path / ".claude" / "skills" / "deploy"
    skill.mkdir(parents=True)
    (skill / "SKILL.md").write_text("# deploy\n", encoding="utf-8")

    info = analyze_project(tmp_path)

    assert info.has_claude_config is True
    assert info.agents == ["reviewer"]
    assert info.skills == ["deploy"]
    assert info.suggestion is None
    assert info.key == project_key(tmp_path)


def test_analyze_missing_project(tmp_path) -> None:
    with pytest.raises(NotADirectoryError):
        analyze_project(tmp_path / "missing")
