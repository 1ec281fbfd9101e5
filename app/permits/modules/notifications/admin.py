from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.permits.db import db_session
from app.permits.modules.notifications.service import (
    get_notification_or_404,
    list_notifications,
    mark_read,
    notification_to_dict,
)
from app.permits.rbac import require_permission
from app.permits.utils import change_event

bp = Blueprint("notifications", __name__)


@bp.get("/notifications")
@require_permission("notifications.view")
def notifications_list():
    s = db_session()
    unread_only = request.args.get("unread") in ("1", "true", "yes")
    items = list_notifications(s, g.current_user, unread_only=unread_only)
    return jsonify({
        "notifications": [notification_to_dict(n) for n in items],
        "unread_count": sum(1 for n in items if not n.is_read),
    })


@bp.patch("/notifications/<int:notification_id>/read")
@require_permission("notifications.view")
def notifications_mark_read(notification_id: int):
    s = db_session()
    n = get_notification_or_404(s, notification_id)
    mark_read(s, n, g.current_user)
    s.commit()
    return jsonify({"notification": notification_to_dict(n), "event": change_event("notification", n.id, "updated")})
