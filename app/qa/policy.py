"""
Ownership policy.

Every authorization decision in the forum goes through ``can``; routes use
``require_login`` for the "must be signed in" gate and services call
``authorize`` before mutating anything owned by someone else.
"""
from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, Any

from flask import g, redirect, request, url_for

from app.qa.errors import AuthorizationError

if TYPE_CHECKING:
    from app.qa.models import User


def _is_question_author(user: "User", question: Any) -> bool:
    return question is not None and question.user_id == user.id


def _is_answer_author(user: "User", answer: Any) -> bool:
    return answer is not None and answer.user_id == user.id


def _is_answer_question_author(user: "User", answer: Any) -> bool:
    return answer is not None and _is_question_author(user, answer.question)


_RULES: dict[str, Callable[["User", Any], bool]] = {
    "question.update": _is_question_author,
    "question.delete": _is_question_author,
    "answer.update": _is_answer_author,
    "answer.delete": _is_answer_author,
    "answer.accept": _is_answer_question_author,
}

ACTIONS = frozenset(_RULES)


def can(user: "User | None", action: str, entity: Any) -> bool:
    if not user or not user.is_active:
        return False
    rule = _RULES.get(action)
    if rule is None:
        raise ValueError(f"Unknown action: {action!r}")
    return rule(user, entity)


def authorize(user: "User | None", action: str, entity: Any) -> None:
    if not can(user, action, entity):
        raise AuthorizationError(action)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        # Unauthenticated → redirect to login.
        if not user or not user.is_active:
            nxt = request.full_path or request.path
            # Avoid trailing '?' from full_path when there is no query string.
            if nxt.endswith("?"):
                nxt = nxt[:-1]
            return redirect(url_for("auth.login_get", next=nxt))
        return fn(*args, **kwargs)

    return wrapped
