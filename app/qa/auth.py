from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy import func, or_, select
from werkzeug.security import check_password_hash

from app.qa.audit import record_event
from app.qa.db import db_session
from app.qa.models import User

bp = Blueprint("auth", __name__)

# Per-IP failed-login window, in-process only.
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
LOGIN_RATE_LIMIT = 5
LOGIN_RATE_WINDOW = timedelta(minutes=5)


def _rate_limited(ip: str) -> bool:
    cutoff = datetime.utcnow() - LOGIN_RATE_WINDOW
    recent = [t for t in _login_attempts[ip] if t > cutoff]
    _login_attempts[ip] = recent
    return len(recent) >= LOGIN_RATE_LIMIT


def _safe_next(nxt: str) -> str | None:
    # Local paths only; "//host" would be an open redirect.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def load_current_user() -> None:
    """
    Resolve ``g.current_user`` from the signed session cookie and stamp a
    ``g.request_id`` used to correlate audit rows and log lines.
    """
    g.request_id = getattr(g, "request_id", None) or uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    user_id = session.get("user_id")
    if not user_id:
        return
    user = db_session().get(User, int(user_id))
    if user is None or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user


@bp.get("/login")
def login_get():
    return render_template("auth/login.html", next=(request.args.get("next") or "").strip())


@bp.post("/login")
def login_post():
    """Sign in by email or username."""
    identifier = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _rate_limited(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))
    _login_attempts[ip].append(datetime.utcnow())

    s = db_session()
    user = s.scalars(
        select(User).where(or_(User.email == identifier, func.lower(User.username) == identifier))
    ).first()
    if user is None or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(s, actor=None, action="auth.login_failed", entity_type="User", entity_id=identifier)
        s.commit()
        current_app.logger.info("Login failed (identifier=%s request_id=%s)", identifier, g.request_id)
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get", next=nxt) if nxt else url_for("auth.login_get"))

    session["user_id"] = user.id
    _login_attempts.pop(ip, None)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return redirect(_safe_next(nxt) or url_for("questions.index"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("questions.index"))
