import os
import re
from datetime import date, datetime, time, timedelta

from flask import Blueprint, g, jsonify, request
from sqlalchemy import text
from werkzeug.security import generate_password_hash

from app.permits.audit import record_event
from app.permits.auth import user_to_dict
from app.permits.db import db_session
from app.permits.errors import ConflictError, NotFoundError, ValidationError
from app.permits.models import AuditEvent, Role, User
from app.permits.rbac import require_permission
from app.permits.utils import change_event, json_payload

bp = Blueprint("admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _is_valid_email(email: str) -> bool:
    pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
    return bool(re.match(pattern, email))


def user_summary(user: User) -> dict:
    """Directory entry used by pickers (no role detail)."""
    return {"id": user.id, "email": user.email, "full_name": user.full_name}


@bp.get("/status")
@require_permission("admin.view")
def status():
    s = db_session()
    result = {
        "env": (os.environ.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "smtp_configured": bool((os.environ.get("SMTP_HOST") or "").strip()),
    }
    try:
        s.execute(text("SELECT 1"))
        result["db_connected"] = True
    except Exception as e:
        result["db_error"] = str(e)
    return jsonify(result)


@bp.get("/users")
@require_permission("stakeholders.view")
def users_list():
    s = db_session()
    q = s.query(User).filter(User.is_active.is_(True))
    search = (request.args.get("q") or "").strip().lower()
    if search:
        like = f"%{search}%"
        q = q.filter((User.email.like(like)) | (User.full_name.ilike(like)))
    users = q.order_by(User.full_name.asc(), User.email.asc()).all()
    return jsonify({"users": [user_summary(u) for u in users]})


@bp.post("/users")
@require_permission("admin.edit")
def users_create():
    s = db_session()
    u = _current_user()
    payload = json_payload()

    email = payload.get("email") or ""
    full_name = payload.get("full_name") or ""
    password = payload.get("password") or ""
    if not all(isinstance(v, str) for v in (email, full_name, password)):
        raise ValidationError("email, full_name and password must be strings.")
    email = email.strip().lower()
    full_name = full_name.strip()
    role_keys = payload.get("roles") or ["stakeholder"]

    errors = []
    if not email:
        errors.append("Email is required.")
    elif not _is_valid_email(email):
        errors.append("Invalid email format.")
    if not password:
        errors.append("Password is required.")
    elif len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    roles = []
    if not isinstance(role_keys, list) or not all(isinstance(k, str) for k in role_keys):
        errors.append("roles must be a list of strings.")
    else:
        roles = s.query(Role).filter(Role.key.in_(role_keys)).all()
        unknown = sorted(set(role_keys) - {r.key for r in roles})
        if unknown:
            errors.append(f"Unknown roles: {', '.join(map(str, unknown))}")
    if errors:
        raise ValidationError.from_list(errors)

    if s.query(User).filter(User.email == email).one_or_none():
        raise ConflictError("An account with this email already exists.")

    new_user = User(
        email=email,
        full_name=full_name,
        password_hash=generate_password_hash(password),
        is_active=True,
    )
    new_user.roles.extend(roles)
    s.add(new_user)
    s.flush()

    record_event(
        s,
        actor=u,
        action="user.create",
        entity_type="User",
        entity_id=str(new_user.id),
        metadata={"email": email, "roles": [r.key for r in new_user.roles]},
    )
    s.commit()
    return jsonify({"user": user_to_dict(new_user), "event": change_event("user", new_user.id, "created")}), 201


@bp.patch("/users/<int:user_id>")
@require_permission("admin.edit")
def users_update(user_id: int):
    s = db_session()
    u = _current_user()
    user = s.get(User, user_id)
    if not user:
        raise NotFoundError("User not found.")
    if user.id == u.id:
        raise ValidationError("You cannot modify your own account from this endpoint.")

    payload = json_payload()
    before = {"is_active": user.is_active, "roles": sorted(r.key for r in user.roles)}

    if "is_active" in payload:
        if not isinstance(payload["is_active"], bool):
            raise ValidationError("is_active must be true or false.")
        user.is_active = payload["is_active"]
    if "roles" in payload:
        role_keys = payload["roles"]
        if not isinstance(role_keys, list) or not all(isinstance(k, str) for k in role_keys):
            raise ValidationError("roles must be a list of strings.")
        roles = s.query(Role).filter(Role.key.in_(role_keys)).all()
        unknown = sorted(set(role_keys) - {r.key for r in roles})
        if unknown:
            raise ValidationError(f"Unknown roles: {', '.join(map(str, unknown))}")
        user.roles.clear()
        user.roles.extend(roles)

    after = {"is_active": user.is_active, "roles": sorted(r.key for r in user.roles)}
    record_event(
        s,
        actor=u,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"before": before, "after": after},
    )
    s.commit()
    return jsonify({"user": user_to_dict(user), "event": change_event("user", user.id, "updated")})


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """
    Security audit trail (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    errors = []
    if (request.args.get("date_from") or "").strip() and not date_from:
        errors.append("date_from must be YYYY-MM-DD")
    if (request.args.get("date_to") or "").strip() and not date_to:
        errors.append("date_to must be YYYY-MM-DD")
    if errors:
        raise ValidationError.from_list(errors)

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return jsonify({
        "events": [
            {
                "id": e.id,
                "created_at": e.created_at.isoformat() if e.created_at else None,
                "action": e.action,
                "actor_user_email": e.actor_user_email,
                "entity_type": e.entity_type,
                "entity_id": e.entity_id,
                "reason": e.reason,
                "client_ip": e.client_ip,
            }
            for e in events
        ]
    })
