"""
Session-bound CSRF tokens.

Every state-changing request must echo the session token back, either as the
``X-CSRF-Token`` header (fetch-style favorite/vote calls), a ``csrf_token``
form field, or a ``csrf_token`` key in a JSON body.
"""
from __future__ import annotations

import logging
import secrets

from flask import Request, g, jsonify, render_template, request, session

logger = logging.getLogger(__name__)

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
UNGUARDED_PATHS = ("/static/", "/health", "/healthz")
EXEMPT_BLUEPRINTS = frozenset({"auth"})


def ensure_csrf_token() -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def _submitted_token(req: Request) -> str | None:
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    if not token and req.is_json:
        token = (req.get_json(silent=True) or {}).get(CSRF_SESSION_KEY)
    return token


def validate_csrf(req: Request) -> bool:
    token = _submitted_token(req)
    expected = session.get(CSRF_SESSION_KEY)
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def wants_json() -> bool:
    if request.is_json:
        return True
    best = request.accept_mimetypes.best_match(["application/json", "text/html"])
    return best == "application/json" and request.accept_mimetypes[best] > request.accept_mimetypes["text/html"]


def csrf_protect():
    """``before_request`` hook rejecting unsafe requests without a matching token."""
    if request.path.startswith(UNGUARDED_PATHS):
        return None
    ensure_csrf_token()
    session.permanent = True
    if request.method not in UNSAFE_METHODS or request.blueprint in EXEMPT_BLUEPRINTS:
        return None
    if validate_csrf(request):
        return None

    logger.warning(
        "CSRF rejected: %s %s request_id=%s",
        request.method,
        request.path,
        getattr(g, "request_id", None),
    )
    message = "CSRF token missing or invalid."
    if wants_json():
        return jsonify({"ok": False, "error": message}), 400
    return render_template("errors/400.html", message=message), 400
