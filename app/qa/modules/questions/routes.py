from __future__ import annotations

from flask import Blueprint, current_app, flash, g, jsonify, redirect, render_template, request, url_for

from app.qa.db import db_session
from app.qa.errors import ValidationError
from app.qa.models import User
from app.qa.modules.questions.models import EDITABLE_STATUSES
from app.qa.modules.questions.service import (
    ANSWER_ORDERS,
    QUESTION_ORDERS,
    VOTE_UP,
    accept_answer,
    create_answer,
    create_question,
    current_count,
    delete_answer,
    delete_question,
    favorite_count,
    get_answer,
    get_question,
    get_visible_question,
    list_by_tag,
    search_questions,
    toggle_favorite,
    update_answer,
    update_question,
    view_question,
    vote,
)
from app.qa.policy import authorize, require_login
from app.qa.security import wants_json

bp = Blueprint("questions", __name__)


def _current_user() -> User | None:
    return getattr(g, "current_user", None)


def _page_arg() -> int:
    page = request.args.get("page", 1, type=int) or 1
    return page if page > 0 else 1


def _question_payload() -> dict:
    return {
        "title": request.form.get("title"),
        "content": request.form.get("content"),
        "tags": request.form.get("tags"),
        "status": request.form.get("status"),
    }


def _vote_direction() -> str:
    if request.is_json:
        data = request.get_json(silent=True) or {}
        return str(data.get("direction") or VOTE_UP)
    return request.form.get("direction") or VOTE_UP


# ---------- List ----------
@bp.get("/")
def index():
    s = db_session()
    params = {
        "q": request.args.get("q"),
        "status": request.args.get("status"),
        "user_id": request.args.get("user_id"),
        "tag": request.args.get("tag"),
    }
    order, page = search_questions(
        s,
        params,
        order=request.args.get("order", "new"),
        page=_page_arg(),
        per_page=current_app.config["QUESTIONS_PER_PAGE"],
        user=_current_user(),
    )
    return render_template(
        "questions/index.html",
        page=page,
        order=order,
        orders=QUESTION_ORDERS,
        params=params,
    )


@bp.get("/tag/<path:tag>")
def tag(tag: str):
    s = db_session()
    page = list_by_tag(s, tag, page=_page_arg(), per_page=current_app.config["QUESTIONS_PER_PAGE"])
    return render_template("questions/tag.html", tag=tag, page=page)


# ---------- New ----------
@bp.get("/new")
@require_login
def new_get():
    return render_template("questions/form.html", form={}, errors={}, statuses=EDITABLE_STATUSES, question=None)


@bp.post("/new")
@require_login
def new_post():
    s = db_session()
    payload = _question_payload()
    try:
        question = create_question(s, payload, _current_user())
    except ValidationError as e:
        s.rollback()
        return render_template(
            "questions/form.html", form=payload, errors=e.errors, statuses=EDITABLE_STATUSES, question=None
        )
    s.commit()

    flash("Question submitted.", "success")
    return redirect(url_for("questions.view", question_id=question.id))


# ---------- View ----------
@bp.get("/<int:question_id>")
def view(question_id: int):
    s = db_session()
    user = _current_user()
    qv = view_question(
        s,
        question_id,
        user,
        answers_order=request.args.get("answers", "supports"),
        page=_page_arg(),
        per_page=current_app.config["ANSWERS_PER_PAGE"],
    )
    s.commit()
    return render_template("questions/view.html", view=qv, answer_orders=ANSWER_ORDERS)


# ---------- Edit ----------
@bp.get("/<int:question_id>/edit")
@require_login
def edit_get(question_id: int):
    s = db_session()
    question = get_question(s, question_id)
    authorize(_current_user(), "question.update", question)
    form = {
        "title": question.title,
        "content": question.content,
        "tags": question.tag_values,
        "status": question.status,
    }
    return render_template("questions/form.html", form=form, errors={}, statuses=EDITABLE_STATUSES, question=question)


@bp.post("/<int:question_id>/edit")
@require_login
def edit_post(question_id: int):
    s = db_session()
    question = get_question(s, question_id)
    payload = _question_payload()
    try:
        update_question(s, question, payload, _current_user())
    except ValidationError as e:
        s.rollback()
        return render_template(
            "questions/form.html", form=payload, errors=e.errors, statuses=EDITABLE_STATUSES, question=question
        )
    s.commit()

    flash("Question updated.", "success")
    return redirect(url_for("questions.view", question_id=question.id))


# ---------- Delete ----------
@bp.post("/<int:question_id>/delete")
@require_login
def delete(question_id: int):
    s = db_session()
    question = get_question(s, question_id)
    delete_question(s, question, _current_user())
    s.commit()

    flash("Question deleted.", "success")
    return redirect(url_for("questions.index"))


# ---------- Answers ----------
@bp.get("/<int:question_id>/answer")
@require_login
def answer_get(question_id: int):
    s = db_session()
    question = get_visible_question(s, question_id, _current_user())
    return render_template("questions/answer_form.html", question=question, answer=None, form={}, errors={})


@bp.post("/<int:question_id>/answer")
@require_login
def answer_post(question_id: int):
    s = db_session()
    payload = {"content": request.form.get("content")}
    try:
        answer = create_answer(s, question_id, payload, _current_user())
    except ValidationError as e:
        s.rollback()
        question = get_visible_question(s, question_id, _current_user())
        return render_template(
            "questions/answer_form.html", question=question, answer=None, form=payload, errors=e.errors
        )
    s.commit()

    flash("Answer submitted.", "success")
    return redirect(url_for("questions.view", question_id=question_id, _anchor=f"answer-{answer.id}"))


@bp.get("/answers/<int:answer_id>/edit")
@require_login
def answer_edit_get(answer_id: int):
    s = db_session()
    answer = get_answer(s, answer_id)
    authorize(_current_user(), "answer.update", answer)
    return render_template(
        "questions/answer_form.html",
        question=answer.question,
        answer=answer,
        form={"content": answer.content},
        errors={},
    )


@bp.post("/answers/<int:answer_id>/edit")
@require_login
def answer_edit_post(answer_id: int):
    s = db_session()
    answer = get_answer(s, answer_id)
    payload = {"content": request.form.get("content")}
    try:
        update_answer(s, answer, payload, _current_user())
    except ValidationError as e:
        s.rollback()
        return render_template(
            "questions/answer_form.html", question=answer.question, answer=answer, form=payload, errors=e.errors
        )
    s.commit()

    flash("Answer updated.", "success")
    return redirect(url_for("questions.view", question_id=answer.question_id, _anchor=f"answer-{answer.id}"))


@bp.post("/answers/<int:answer_id>/delete")
@require_login
def answer_delete(answer_id: int):
    s = db_session()
    answer = get_answer(s, answer_id)
    question_id = answer.question_id
    delete_answer(s, answer, _current_user())
    s.commit()

    flash("Answer deleted.", "success")
    return redirect(url_for("questions.view", question_id=question_id))


@bp.post("/answers/<int:answer_id>/correct")
@require_login
def answer_correct(answer_id: int):
    s = db_session()
    answer = get_answer(s, answer_id)
    try:
        accept_answer(s, answer, _current_user())
    except ValidationError as e:
        s.rollback()
        for msg in e.messages():
            flash(msg, "danger")
        return redirect(url_for("questions.view", question_id=answer.question_id))
    s.commit()

    flash("Answer accepted.", "success")
    return redirect(url_for("questions.view", question_id=answer.question_id, _anchor=f"answer-{answer.id}"))


# ---------- Favorites / votes ----------
# JSON for fetch() callers; plain form posts get a flash and go back to the question.
def _vote_response(changed: bool, count: int, question_id: int, anchor: str | None = None):
    if wants_json():
        return jsonify({"ok": True, "changed": changed, "count": count})
    flash("Vote recorded." if changed else "Nothing to change.", "success" if changed else "info")
    return redirect(url_for("questions.view", question_id=question_id, _anchor=anchor))


def _vote_error(e: ValidationError, question_id: int):
    if wants_json():
        return jsonify({"ok": False, "errors": e.errors}), 400
    for msg in e.messages():
        flash(msg, "danger")
    return redirect(url_for("questions.view", question_id=question_id))


@bp.post("/<int:question_id>/favorite")
@require_login
def favorite(question_id: int):
    s = db_session()
    question = get_question(s, question_id)
    favorited = toggle_favorite(s, question, _current_user())
    s.commit()
    if not wants_json():
        flash("Added to favorites." if favorited else "Removed from favorites.", "success")
        return redirect(url_for("questions.view", question_id=question.id))
    return jsonify({"ok": True, "favorited": favorited, "count": favorite_count(s, question)})


@bp.post("/<int:question_id>/vote")
@require_login
def question_vote(question_id: int):
    s = db_session()
    question = get_question(s, question_id)
    try:
        changed = vote(s, question, _current_user(), _vote_direction())
    except ValidationError as e:
        s.rollback()
        return _vote_error(e, question_id)
    s.commit()
    return _vote_response(changed, current_count(s, question), question.id)


@bp.post("/answers/<int:answer_id>/vote")
@require_login
def answer_vote(answer_id: int):
    s = db_session()
    answer = get_answer(s, answer_id)
    try:
        changed = vote(s, answer, _current_user(), _vote_direction())
    except ValidationError as e:
        s.rollback()
        return _vote_error(e, answer.question_id)
    s.commit()
    return _vote_response(changed, current_count(s, answer), answer.question_id, f"answer-{answer.id}")
