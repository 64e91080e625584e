from flask import Blueprint, current_app, redirect, url_for
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.qa.db import ENGINE_KEY

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return redirect(url_for("questions.index"))


@bp.get("/health")
def health():
    """Readiness: confirms the database answers a trivial query."""
    try:
        with current_app.extensions[ENGINE_KEY].connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        current_app.logger.exception("Health check: database unreachable")
        return {"ok": False, "db": False}, 503
    return {"ok": True, "db": True}


@bp.get("/healthz")
def healthz():
    """Liveness probe. No DB access."""
    return "ok", 200
