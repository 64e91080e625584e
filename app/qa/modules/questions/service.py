from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, delete, false, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from app.qa.audit import record_event
from app.qa.errors import AuthorizationError, NotFoundError, ValidationError
from app.qa.modules.questions.models import (
    EDITABLE_STATUSES,
    STATUS_DRAFT,
    STATUS_PUBLISHED,
    STATUS_RESOLVED,
    STATUSES,
    VOTE_TARGET_ANSWER,
    VOTE_TARGET_QUESTION,
    Answer,
    Favorite,
    Question,
    Vote,
)
from app.qa.modules.questions.utils import slugify
from app.qa.modules.tags.models import Tag, question_tags
from app.qa.modules.tags.service import detach_all_tags, parse_tag_values, set_question_tags
from app.qa.policy import authorize
from app.qa.utils import Page, paginate, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qa.models import User

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255

ANSWER_ORDER_SUPPORTS = "supports"
ANSWER_ORDER_NEW = "new"
ANSWER_ORDERS = (ANSWER_ORDER_SUPPORTS, ANSWER_ORDER_NEW)

QUESTION_ORDERS = ("new", "hottest", "votes", "unanswered")
DEFAULT_QUESTION_ORDER = "new"

VOTE_UP = "up"
VOTE_NEUTRAL = "neutral"
VOTE_DIRECTIONS = (VOTE_UP, VOTE_NEUTRAL)


@dataclass
class QuestionView:
    question: Question
    answers: Page
    answer_order: str
    best_answer: Answer | None
    is_favorite: bool
    favorite_count: int


def _now() -> datetime:
    return datetime.utcnow()


def _require_user(user: "User | None", action: str) -> "User":
    if not user or not user.is_active:
        raise AuthorizationError(action, "You must be signed in to perform this action.")
    return user


def _bump_counter(s: "Session", model: type, row_id: int, column: str, delta: int) -> None:
    """Single-statement ``column = column + delta``; never read-modify-write."""
    col = getattr(model, column)
    s.execute(
        update(model)
        .where(model.id == row_id)
        .values({column: col + delta})
        .execution_options(synchronize_session="fetch")
    )


# ---------- Lookups ----------

def get_question(s: "Session", question_id: int | str | None) -> Question:
    qid = parse_int(question_id)
    question = s.get(Question, qid) if qid is not None else None
    if question is None:
        raise NotFoundError("Question", question_id)
    return question


def get_visible_question(s: "Session", question_id: int | str | None, user: "User | None") -> Question:
    """Like ``get_question``, but another user's draft does not exist."""
    question = get_question(s, question_id)
    _ensure_visible(question, user, question_id)
    return question


def _ensure_visible(question: Question, user: "User | None", ref: object = None) -> None:
    if question.is_draft and not (user and user.id == question.user_id):
        raise NotFoundError("Question", question.id if ref is None else ref)


def get_answer(s: "Session", answer_id: int | str | None) -> Answer:
    aid = parse_int(answer_id)
    answer = s.get(Answer, aid) if aid is not None else None
    if answer is None:
        raise NotFoundError("Answer", answer_id)
    return answer


# ---------- Validation ----------

def validate_question_payload(payload: dict) -> dict[str, list[str]]:
    """Validate question create/update payload. Returns {field: [messages]}."""
    errors: dict[str, list[str]] = {}
    title = (payload.get("title") or "").strip()
    if not title:
        errors.setdefault("title", []).append("Title is required.")
    elif len(title) > TITLE_MAX_LENGTH:
        errors.setdefault("title", []).append(f"Title must be at most {TITLE_MAX_LENGTH} characters.")

    if not (payload.get("content") or "").strip():
        errors.setdefault("content", []).append("Content is required.")

    if not parse_tag_values(payload.get("tags")):
        errors.setdefault("tags", []).append("At least one tag is required.")

    status = (payload.get("status") or "").strip()
    if status and status not in EDITABLE_STATUSES:
        errors.setdefault("status", []).append(f"Invalid status. Must be one of: {', '.join(EDITABLE_STATUSES)}")
    return errors


def validate_answer_payload(payload: dict) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if not (payload.get("content") or "").strip():
        errors.setdefault("content", []).append("Content is required.")
    return errors


# ---------- Questions ----------

def create_question(s: "Session", payload: dict, user: "User | None") -> Question:
    """Create a question authored by ``user``; slug is derived here and never again."""
    author = _require_user(user, "question.create")
    errors = validate_question_payload(payload)
    if errors:
        raise ValidationError(errors)

    title = payload["title"].strip()
    now = _now()
    question = Question(
        user_id=author.id,
        title=title,
        slug=slugify(title),
        content=payload["content"].strip(),
        answer_count=0,
        view_count=0,
        vote_count=0,
        status=(payload.get("status") or "").strip() or STATUS_PUBLISHED,
        created_at=now,
        updated_at=now,
    )
    s.add(question)
    s.flush()

    tags = set_question_tags(s, question, parse_tag_values(payload.get("tags")))

    record_event(
        s,
        actor=author,
        action="question.create",
        entity_type="Question",
        entity_id=str(question.id),
        metadata={"title": question.title, "status": question.status, "tags": [t.name for t in tags]},
    )
    logger.info("question.create id=%s user_id=%s status=%s", question.id, author.id, question.status)
    return question


def update_question(s: "Session", question: Question, payload: dict, user: "User | None") -> Question:
    """Author-only edit. The slug stays what it was at creation."""
    authorize(user, "question.update", question)
    errors = validate_question_payload(payload)
    if errors:
        raise ValidationError(errors)

    changes: dict[str, Any] = {}

    new_title = payload["title"].strip()
    if new_title != question.title:
        changes["title"] = {"old": question.title, "new": new_title}
        question.title = new_title

    new_content = payload["content"].strip()
    if new_content != question.content:
        changes["content"] = True
        question.content = new_content

    # Resolved is owned by accept_answer; the form only toggles Draft/Published.
    new_status = (payload.get("status") or "").strip()
    if new_status and not question.is_resolved and new_status != question.status:
        changes["status"] = {"old": question.status, "new": new_status}
        question.status = new_status

    old_tags = [t.name for t in question.tags]
    new_tags = [t.name for t in set_question_tags(s, question, parse_tag_values(payload.get("tags")))]
    if sorted(old_tags) != sorted(new_tags):
        changes["tags"] = {"old": old_tags, "new": new_tags}

    question.updated_at = _now()

    record_event(
        s,
        actor=user,
        action="question.edit",
        entity_type="Question",
        entity_id=str(question.id),
        metadata={"title": question.title, "changes": changes},
    )
    return question


def view_question(
    s: "Session",
    question_id: int | str,
    user: "User | None",
    answers_order: str | None = None,
    page: int | None = 1,
    per_page: int = 20,
) -> QuestionView:
    """
    Load a question page.

    Non-author views (anonymous included) bump ``view_count`` by one with a
    single UPDATE. Drafts are only visible to their author.
    """
    question = get_visible_question(s, question_id, user)
    if not (user and user.id == question.user_id):
        _bump_counter(s, Question, question.id, "view_count", 1)

    best_answer = None
    if question.is_resolved:
        best_answer = s.scalars(
            select(Answer)
            .where(Answer.question_id == question.id)
            .where(Answer.adopted_at.isnot(None))
        ).first()

    order_key, clauses = answer_order(answers_order)
    stmt = select(Answer).where(Answer.question_id == question.id).order_by(*clauses)
    answers = paginate(s, stmt, page, per_page)

    return QuestionView(
        question=question,
        answers=answers,
        answer_order=order_key,
        best_answer=best_answer,
        is_favorite=is_favorite(s, question, user),
        favorite_count=favorite_count(s, question),
    )


def delete_question(s: "Session", question: Question, user: "User | None") -> None:
    """Author-only. Removes answers, favorites, votes and tag links in the same transaction."""
    authorize(user, "question.delete", question)

    answer_ids = select(Answer.id).where(Answer.question_id == question.id)
    s.execute(
        delete(Vote)
        .where(
            or_(
                and_(Vote.target_type == VOTE_TARGET_QUESTION, Vote.target_id == question.id),
                and_(Vote.target_type == VOTE_TARGET_ANSWER, Vote.target_id.in_(answer_ids)),
            )
        )
        .execution_options(synchronize_session=False)
    )
    s.execute(delete(Favorite).where(Favorite.question_id == question.id).execution_options(synchronize_session="fetch"))
    s.execute(delete(Answer).where(Answer.question_id == question.id).execution_options(synchronize_session="fetch"))
    detach_all_tags(s, question)

    record_event(
        s,
        actor=user,
        action="question.delete",
        entity_type="Question",
        entity_id=str(question.id),
        metadata={"title": question.title},
    )
    s.delete(question)
    s.flush()
    logger.info("question.delete id=%s user_id=%s", question.id, user.id if user else None)


# ---------- Answers ----------

def answer_order(key: str | None) -> tuple[str, list]:
    """
    Sort specification for a question's answers.

    ``supports``: most supported first, earliest first among ties.
    ``new``: newest first. Anything else falls back to ``supports``.
    """
    k = (key or "").strip().lower()
    if k == ANSWER_ORDER_NEW:
        return ANSWER_ORDER_NEW, [Answer.created_at.desc(), Answer.id.desc()]
    return ANSWER_ORDER_SUPPORTS, [Answer.supports.desc(), Answer.created_at.asc(), Answer.id.asc()]


def create_answer(s: "Session", question_id: int | str, payload: dict, user: "User | None") -> Answer:
    question = get_visible_question(s, question_id, user)
    author = _require_user(user, "answer.create")
    errors = validate_answer_payload(payload)
    if errors:
        raise ValidationError(errors)

    now = _now()
    answer = Answer(
        question_id=question.id,
        user_id=author.id,
        content=payload["content"].strip(),
        supports=0,
        adopted_at=None,
        created_at=now,
        updated_at=now,
    )
    s.add(answer)
    s.flush()
    _bump_counter(s, Question, question.id, "answer_count", 1)

    record_event(
        s,
        actor=author,
        action="answer.create",
        entity_type="Answer",
        entity_id=str(answer.id),
        metadata={"question_id": question.id},
    )
    logger.info("answer.create id=%s question_id=%s user_id=%s", answer.id, question.id, author.id)
    return answer


def update_answer(s: "Session", answer: Answer, payload: dict, user: "User | None") -> Answer:
    authorize(user, "answer.update", answer)
    errors = validate_answer_payload(payload)
    if errors:
        raise ValidationError(errors)

    answer.content = payload["content"].strip()
    answer.updated_at = _now()

    record_event(
        s,
        actor=user,
        action="answer.edit",
        entity_type="Answer",
        entity_id=str(answer.id),
        metadata={"question_id": answer.question_id},
    )
    return answer


def delete_answer(s: "Session", answer: Answer, user: "User | None") -> None:
    """Author-only; an adopted answer being removed re-opens the question."""
    authorize(user, "answer.delete", answer)
    question = answer.question
    was_adopted = answer.is_adopted

    s.execute(
        delete(Vote)
        .where(Vote.target_type == VOTE_TARGET_ANSWER, Vote.target_id == answer.id)
        .execution_options(synchronize_session=False)
    )
    record_event(
        s,
        actor=user,
        action="answer.delete",
        entity_type="Answer",
        entity_id=str(answer.id),
        metadata={"question_id": question.id, "was_adopted": was_adopted},
    )
    s.delete(answer)
    s.flush()
    _bump_counter(s, Question, question.id, "answer_count", -1)

    if was_adopted and question.is_resolved:
        question.status = STATUS_PUBLISHED
        question.updated_at = _now()


def accept_answer(s: "Session", answer: Answer, user: "User | None") -> Answer:
    """
    Mark ``answer`` as the adopted answer of its question.

    Only the question's author may do this. Any previously adopted answer of
    the same question is cleared, so exactly one stays adopted, and the
    question moves to Resolved.

    The question row is locked (``FOR UPDATE`` where supported) and the clear
    matches on ``adopted_at IS NOT NULL`` rather than on ids read earlier, so
    an accept committed by another transaction in between is still cleared.
    A partial unique index on ``answers(question_id)`` backs this up.
    """
    authorize(user, "answer.accept", answer)
    question = answer.question

    if question.is_draft:
        raise ValidationError({"status": ["Publish the question before accepting an answer."]})
    if answer.is_adopted and question.is_resolved:
        return answer

    s.execute(select(Question.id).where(Question.id == question.id).with_for_update())
    previous_ids = list(
        s.scalars(
            select(Answer.id)
            .where(Answer.question_id == question.id)
            .where(Answer.adopted_at.isnot(None))
            .where(Answer.id != answer.id)
        ).all()
    )

    now = _now()
    # Clear before set: the unique index rejects two adopted rows even mid-statement.
    s.execute(
        update(Answer)
        .where(Answer.question_id == question.id)
        .where(Answer.adopted_at.isnot(None))
        .where(Answer.id != answer.id)
        .values(adopted_at=None)
        .execution_options(synchronize_session="fetch")
    )
    s.execute(
        update(Answer)
        .where(Answer.id == answer.id)
        .values(adopted_at=now)
        .execution_options(synchronize_session="fetch")
    )
    question.status = STATUS_RESOLVED
    question.updated_at = now

    record_event(
        s,
        actor=user,
        action="answer.accept",
        entity_type="Answer",
        entity_id=str(answer.id),
        metadata={"question_id": question.id, "replaced_answer_ids": previous_ids},
    )
    logger.info("answer.accept id=%s question_id=%s replaced=%s", answer.id, question.id, previous_ids)
    return answer


# ---------- Favorites ----------

def is_favorite(s: "Session", question: Question, user: "User | None") -> bool:
    if not user:
        return False
    stmt = select(Favorite.id).where(Favorite.user_id == user.id, Favorite.question_id == question.id)
    return s.scalar(select(stmt.exists())) or False


def favorite_count(s: "Session", question: Question) -> int:
    return s.scalar(select(func.count(Favorite.id)).where(Favorite.question_id == question.id)) or 0


def toggle_favorite(s: "Session", question: Question, user: "User | None") -> bool:
    """Add the favorite if missing, remove it if present. Returns the new state."""
    owner = _require_user(user, "question.favorite")
    _ensure_visible(question, owner)
    existing = s.scalars(
        select(Favorite).where(Favorite.user_id == owner.id, Favorite.question_id == question.id)
    ).one_or_none()

    if existing is not None:
        s.delete(existing)
        s.flush()
        favorited = False
    else:
        try:
            with s.begin_nested():
                s.add(Favorite(user_id=owner.id, question_id=question.id, created_at=_now()))
        except IntegrityError:
            # A concurrent request added it first; the pair is favorited either way.
            logger.info("favorite already present user_id=%s question_id=%s", owner.id, question.id)
        favorited = True

    record_event(
        s,
        actor=owner,
        action="question.favorite" if favorited else "question.unfavorite",
        entity_type="Question",
        entity_id=str(question.id),
    )
    return favorited


# ---------- Votes ----------

def _vote_target(target: Question | Answer) -> tuple[str, type, str]:
    if isinstance(target, Question):
        return VOTE_TARGET_QUESTION, Question, "vote_count"
    if isinstance(target, Answer):
        return VOTE_TARGET_ANSWER, Answer, "supports"
    raise TypeError(f"Cannot vote on {type(target).__name__}")


def current_count(s: "Session", target: Question | Answer) -> int:
    """Stored vote total (``vote_count`` or ``supports``), read back from the database."""
    _, model, column = _vote_target(target)
    return s.scalar(select(getattr(model, column)).where(model.id == target.id)) or 0


def has_voted(s: "Session", target: Question | Answer, user: "User | None") -> bool:
    if not user:
        return False
    target_type, _, _ = _vote_target(target)
    stmt = select(Vote.id).where(
        Vote.user_id == user.id, Vote.target_type == target_type, Vote.target_id == target.id
    )
    return s.scalar(select(stmt.exists())) or False


def vote(s: "Session", target: Question | Answer, user: "User | None", direction: str = VOTE_UP) -> bool:
    """
    Record or withdraw a user's vote on a question or answer.

    A user holds at most one vote per target: a repeated ``up`` changes
    nothing, ``neutral`` withdraws an existing vote. Returns True when the
    counter moved.
    """
    voter = _require_user(user, "vote")
    direction = (direction or VOTE_UP).strip().lower()
    if direction not in VOTE_DIRECTIONS:
        raise ValidationError({"direction": [f"Invalid direction. Must be one of: {', '.join(VOTE_DIRECTIONS)}"]})

    target_type, model, column = _vote_target(target)
    _ensure_visible(target if isinstance(target, Question) else target.question, voter)

    existing = s.scalars(
        select(Vote).where(
            Vote.user_id == voter.id, Vote.target_type == target_type, Vote.target_id == target.id
        )
    ).one_or_none()

    if direction == VOTE_UP:
        if existing is not None:
            return False
        try:
            with s.begin_nested():
                s.add(Vote(user_id=voter.id, target_type=target_type, target_id=target.id, created_at=_now()))
        except IntegrityError:
            return False
        delta = 1
    else:
        if existing is None:
            return False
        s.delete(existing)
        s.flush()
        delta = -1

    _bump_counter(s, model, target.id, column, delta)
    record_event(
        s,
        actor=voter,
        action=f"{target_type}.vote",
        entity_type=model.__name__,
        entity_id=str(target.id),
        metadata={"direction": direction},
    )
    return True


# ---------- Listing ----------

def question_order(key: str | None) -> tuple[str, list]:
    k = (key or "").strip().lower()
    if k not in QUESTION_ORDERS:
        k = DEFAULT_QUESTION_ORDER
    newest = [Question.created_at.desc(), Question.id.desc()]
    if k == "hottest":
        return k, [Question.view_count.desc(), *newest]
    if k == "votes":
        return k, [Question.vote_count.desc(), *newest]
    return k, newest


def _filter_by_tag(stmt, tag_name: str):
    return (
        stmt.join(question_tags, question_tags.c.question_id == Question.id)
        .join(Tag, Tag.id == question_tags.c.tag_id)
        .where(func.lower(Tag.name) == tag_name.strip().lower())
    )


def search_questions(
    s: "Session",
    params: dict,
    order: str | None = None,
    page: int | None = 1,
    per_page: int = 20,
    user: "User | None" = None,
) -> tuple[str, Page]:
    """
    Filtered, ordered, paginated question listing.

    ``params`` may carry ``q`` (text search), ``status``, ``user_id`` and
    ``tag``. Drafts stay hidden unless ``status=Draft`` is asked for, and
    then only ``user``'s own drafts are listed.
    """
    order_key, clauses = question_order(order)
    stmt = select(Question)

    search = (params.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        stmt = stmt.where(Question.title.ilike(like) | Question.content.ilike(like))

    status = (params.get("status") or "").strip()
    if status == STATUS_DRAFT:
        stmt = stmt.where(Question.status == STATUS_DRAFT)
        stmt = stmt.where(Question.user_id == user.id if user else false())
    elif status in STATUSES:
        stmt = stmt.where(Question.status == status)
    else:
        stmt = stmt.where(Question.status != STATUS_DRAFT)

    user_id = parse_int(params.get("user_id"))
    if user_id is not None:
        stmt = stmt.where(Question.user_id == user_id)

    tag = (params.get("tag") or "").strip()
    if tag:
        stmt = _filter_by_tag(stmt, tag)

    if order_key == "unanswered":
        stmt = stmt.where(Question.answer_count == 0)

    return order_key, paginate(s, stmt.order_by(*clauses), page, per_page)


def list_by_tag(s: "Session", tag: str, page: int | None = 1, per_page: int = 20) -> Page:
    """Published questions carrying ``tag``, newest first."""
    stmt = (
        _filter_by_tag(select(Question), tag)
        .where(Question.status == STATUS_PUBLISHED)
        .order_by(Question.created_at.desc(), Question.id.desc())
    )
    return paginate(s, stmt, page, per_page)
