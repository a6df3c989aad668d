"""Workspace skills mentioned inline as ``@slug``.

Skills live in ``<workspace>/skills/<slug>/SKILL.md``. A YAML frontmatter
block may provide ``name`` and ``description``; the rest of the file is the
skill body injected into the conversation when the user mentions it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Sequence, Union

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .types import Message

__all__ = [
    "Skill",
    "SkillLoader",
    "SKILL_FILENAME",
    "extract_mentions",
    "build_skill_messages",
    "load_workspace_skills",
    "parse_skill_file",
]

LOGGER = logging.getLogger(__name__)

SKILL_FILENAME = "SKILL.md"
_MENTION_PATTERN = re.compile(r"(?<![\w@])@([a-z0-9][a-z0-9_-]*)")


@dataclass(slots=True, frozen=True)
class Skill:
    slug: str
    name: str
    description: str = ""
    content: str = ""

    def to_message(self) -> Message:
        """Wrap the skill body in a system message for one model call."""
        return Message.system(f'<skill name="{self.name}">\n{self.content.strip()}\n</skill>')


SkillLoader = Callable[[Path], Union[Sequence[Skill], Awaitable[Sequence[Skill]]]]


# ---------------------------------------------------------------------------
# Mentions
# ---------------------------------------------------------------------------
def extract_mentions(text: str) -> list[str]:
    """Return the distinct ``@slug`` mentions in ``text`` in first-seen order."""

    seen: list[str] = []
    for match in _MENTION_PATTERN.finditer((text or "").lower()):
        slug = match.group(1)
        if slug not in seen:
            seen.append(slug)
    return seen


def build_skill_messages(text: str, skills: Iterable[Skill]) -> list[Message]:
    """Resolve the mentions in ``text`` against ``skills``.

    Unknown mentions are ignored; each known skill contributes one system
    message, in mention order.
    """

    by_slug = {skill.slug.lower(): skill for skill in skills}
    messages: list[Message] = []
    for slug in extract_mentions(text):
        skill = by_slug.get(slug)
        if skill is None:
            LOGGER.debug("No skill named @%s in workspace", slug)
            continue
        messages.append(skill.to_message())
    return messages


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
def _split_frontmatter(text: str) -> tuple[Optional[str], str]:
    """Return (frontmatter_block, body) from ``text`` if fenced frontmatter exists."""

    working = (text or "").lstrip("\ufeff")
    if not working.startswith("---"):
        return None, working

    lines = working.splitlines()
    if not lines or lines[0].strip() != "---":
        return None, working

    closing_index = None
    for idx, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            closing_index = idx
            break
    if closing_index is None:
        return None, working

    block = "\n".join(lines[1:closing_index])
    body = "\n".join(lines[closing_index + 1 :]).lstrip("\r\n")
    return block, body


def _parse_frontmatter_block(block: Optional[str], source: Path) -> Dict[str, Any]:
    if not block:
        return {}
    parser = YAML(typ="safe")
    parser.allow_duplicate_keys = False
    try:
        loaded = parser.load(block) or {}
    except YAMLError as exc:
        LOGGER.warning("Ignoring invalid frontmatter in %s: %s", source, exc)
        return {}
    if isinstance(loaded, dict):
        return dict(loaded)
    return {}


def parse_skill_file(path: Path, slug: str | None = None) -> Skill:
    """Read one ``SKILL.md`` file; the slug defaults to its directory name."""

    raw_text = path.read_text(encoding="utf-8")
    block, body = _split_frontmatter(raw_text)
    metadata = _parse_frontmatter_block(block, path)
    resolved_slug = (slug or path.parent.name).lower()
    name = metadata.get("name")
    description = metadata.get("description")
    return Skill(
        slug=resolved_slug,
        name=str(name) if name else resolved_slug,
        description=str(description) if description else "",
        content=body,
    )


def load_workspace_skills(workspace_root: Path) -> list[Skill]:
    """Load every skill under ``<workspace_root>/skills``.

    Unreadable skill files are logged and skipped.
    """

    skills_dir = Path(workspace_root) / "skills"
    if not skills_dir.is_dir():
        return []
    skills: list[Skill] = []
    for entry in sorted(skills_dir.iterdir()):
        skill_file = entry / SKILL_FILENAME
        if not entry.is_dir() or not skill_file.is_file():
            continue
        try:
            skills.append(parse_skill_file(skill_file))
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Unable to read skill %s: %s", skill_file, exc)
    return skills
