"""Tests for ai/skills.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from switchyard.ai.skills import (
    Skill,
    build_skill_messages,
    extract_mentions,
    load_workspace_skills,
    parse_skill_file,
)


def write_skill(root: Path, slug: str, text: str) -> Path:
    directory = root / "skills" / slug
    directory.mkdir(parents=True)
    path = directory / "SKILL.md"
    path.write_text(text, encoding="utf-8")
    return path


class TestMentions:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("use @style", ["style"]),
            ("@Style then @deploy-notes and @style again", ["style", "deploy-notes"]),
            ("mail me at dev@example.com", []),
            ("@@double", []),
            ("nothing here", []),
        ],
    )
    def test_extract_mentions(self, text: str, expected: list[str]) -> None:
        assert extract_mentions(text) == expected

    def test_build_messages_in_mention_order(self) -> None:
        skills = [Skill(slug="a", name="Alpha", content="alpha body"), Skill(slug="b", name="Beta", content="beta body")]

        messages = build_skill_messages("@b first, then @a, and @zzz", skills)

        assert [message.role for message in messages] == ["system", "system"]
        assert messages[0].text == '<skill name="Beta">\nbeta body\n</skill>'
        assert messages[1].text.startswith('<skill name="Alpha">')


class TestSkillFiles:
    def test_frontmatter_sets_name_and_description(self, tmp_path: Path) -> None:
        path = write_skill(tmp_path, "release", "---\nname: Release Notes\ndescription: How we write them\n---\n\nBe brief.\n")

        skill = parse_skill_file(path)

        assert skill == Skill(slug="release", name="Release Notes", description="How we write them", content="Be brief.")

    def test_without_frontmatter_slug_is_the_name(self, tmp_path: Path) -> None:
        skill = parse_skill_file(write_skill(tmp_path, "Plain", "Just text."))
        assert skill.slug == "plain"
        assert skill.name == "plain"
        assert skill.content == "Just text."

    def test_invalid_frontmatter_is_ignored(self, tmp_path: Path) -> None:
        skill = parse_skill_file(write_skill(tmp_path, "broken", "---\nname: [unclosed\n---\nBody"))
        assert skill.name == "broken"
        assert skill.content == "Body"

    def test_load_workspace_skills(self, tmp_path: Path) -> None:
        write_skill(tmp_path, "b-skill", "B")
        write_skill(tmp_path, "a-skill", "A")
        (tmp_path / "skills" / "empty").mkdir()
        (tmp_path / "skills" / "README.md").write_text("not a skill", encoding="utf-8")

        skills = load_workspace_skills(tmp_path)

        assert [skill.slug for skill in skills] == ["a-skill", "b-skill"]

    def test_missing_skills_directory(self, tmp_path: Path) -> None:
        assert load_workspace_skills(tmp_path) == []
