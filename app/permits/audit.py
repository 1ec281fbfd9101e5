from __future__ import annotations

import json
from typing import Any

from flask import g, has_app_context, has_request_context, request
from sqlalchemy.orm import Session

from app.permits.models import ActivityLog, AuditEvent, User


def _request_id(explicit: str | None = None) -> str | None:
    if explicit:
        return explicit
    if has_app_context():
        return getattr(g, "request_id", None)
    return None


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only security audit event helper.
    """
    ev = AuditEvent(
        request_id=_request_id(request_id),
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
        client_ip=request.remote_addr if has_request_context() else None,
    )
    s.add(ev)
    return ev


def record_activity(
    s: Session,
    *,
    project_id: int,
    actor: User | None,
    activity_type: str,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog:
    """
    Append one project timeline entry.

    Callers record once per logical change, never once per row written.
    """
    entry = ActivityLog(
        project_id=project_id,
        user_id=actor.id if actor else None,
        activity_type=activity_type,
        description=description,
        request_id=_request_id(),
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(entry)
    return entry


def list_activities(s: Session, project_id: int, *, limit: int | None = None) -> list[ActivityLog]:
    q = (
        s.query(ActivityLog)
        .filter(ActivityLog.project_id == project_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()


def activity_to_dict(entry: ActivityLog) -> dict:
    return {
        "id": entry.id,
        "project_id": entry.project_id,
        "user_id": entry.user_id,
        "activity_type": entry.activity_type,
        "description": entry.description,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "metadata": json.loads(entry.metadata_json) if entry.metadata_json else None,
    }
