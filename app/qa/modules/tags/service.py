"""
Tagging service: parses tag values, attaches them to questions and keeps
``Tag.frequency`` in step with the number of questions using each tag.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update

from app.qa.modules.tags.models import Tag

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qa.modules.questions.models import Question

logger = logging.getLogger(__name__)

MAX_TAG_LENGTH = 64
_SPLIT_RE = re.compile(r"[,，]")  # ASCII and full-width comma


def parse_tag_values(raw: str | list[str] | tuple[str, ...] | None) -> list[str]:
    """
    Normalize tag input into an ordered, de-duplicated list of names.

    Accepts a comma separated string (form field) or a list of strings.
    Duplicates are detected case-insensitively; the first spelling wins.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        parts = _SPLIT_RE.split(raw)
    else:
        parts = [p for item in raw for p in _SPLIT_RE.split(item or "")]

    seen: set[str] = set()
    out: list[str] = []
    for part in parts:
        name = " ".join(part.split())[:MAX_TAG_LENGTH]
        if not name:
            continue
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(name)
    return out


def _get_or_create_tags(s: "Session", names: list[str]) -> list[Tag]:
    if not names:
        return []
    lowered = [n.lower() for n in names]
    existing = {t.name.lower(): t for t in s.scalars(select(Tag).where(func.lower(Tag.name).in_(lowered))).all()}
    tags: list[Tag] = []
    for name in names:
        tag = existing.get(name.lower())
        if tag is None:
            tag = Tag(name=name, frequency=0)
            s.add(tag)
            existing[name.lower()] = tag
        tags.append(tag)
    s.flush()
    return tags


def _bump_frequency(s: "Session", tag_ids: list[int], delta: int) -> None:
    if not tag_ids:
        return
    s.execute(
        update(Tag)
        .where(Tag.id.in_(tag_ids))
        .values(frequency=Tag.frequency + delta)
        .execution_options(synchronize_session="fetch")
    )


def set_question_tags(s: "Session", question: "Question", values: list[str]) -> list[Tag]:
    """
    Replace the tags on ``question`` with ``values``.

    Frequencies go up for newly attached tags and down for detached ones.
    """
    new_tags = _get_or_create_tags(s, values)
    old_ids = {t.id for t in question.tags}
    new_ids = {t.id for t in new_tags}

    _bump_frequency(s, sorted(new_ids - old_ids), 1)
    _bump_frequency(s, sorted(old_ids - new_ids), -1)
    question.tags = new_tags

    logger.debug(
        "question=%s tags attached=%s detached=%s",
        question.id,
        sorted(new_ids - old_ids),
        sorted(old_ids - new_ids),
    )
    return new_tags


def detach_all_tags(s: "Session", question: "Question") -> None:
    _bump_frequency(s, sorted(t.id for t in question.tags), -1)
    question.tags = []


def get_tag_by_name(s: "Session", name: str) -> Tag | None:
    name = " ".join((name or "").split())
    if not name:
        return None
    return s.scalars(select(Tag).where(func.lower(Tag.name) == name.lower())).first()


def autocomplete_tags(s: "Session", prefix: str, limit: int = 10) -> list[str]:
    prefix = " ".join((prefix or "").split())
    if not prefix:
        return []
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    rows = s.scalars(
        select(Tag.name)
        .where(Tag.name.ilike(f"{escaped}%", escape="\\"))
        .where(Tag.frequency > 0)
        .order_by(Tag.frequency.desc(), Tag.name.asc())
        .limit(limit)
    ).all()
    return list(rows)
