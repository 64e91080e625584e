from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from flask import g, has_request_context, request

from app.qa.models import AuditEvent

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qa.models import User

logger = logging.getLogger("app.qa.audit")


def _client_ip() -> str | None:
    # First hop of X-Forwarded-For when behind the platform proxy.
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    return first or request.remote_addr


def record_event(
    s: "Session",
    *,
    actor: "User | None",
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Add an audit row to ``s``; it is written with the caller's transaction,
    so a rolled-back operation leaves no trail. Usable outside a request.
    """
    in_request = has_request_context()
    if request_id is None and in_request:
        request_id = getattr(g, "request_id", None)

    event = AuditEvent(
        request_id=request_id,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        client_ip=_client_ip() if in_request else None,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(event)
    logger.debug("audit %s %s:%s actor=%s", action, entity_type, entity_id, event.actor_user_id)
    return event
