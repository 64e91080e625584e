from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.qa.db import db_session
from app.qa.modules.tags.service import autocomplete_tags

bp = Blueprint("tags", __name__)


@bp.get("/auto-complete")
def auto_complete():
    s = db_session()
    prefix = (request.args.get("query") or "").strip()
    limit = request.args.get("limit", 10, type=int)
    limit = max(1, min(limit, 50))
    return jsonify({"query": prefix, "suggestions": autocomplete_tags(s, prefix, limit=limit)})
