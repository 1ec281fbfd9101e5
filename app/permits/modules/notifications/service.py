from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from app.permits import mailer
from app.permits.errors import AuthorizationError, NotFoundError
from app.permits.modules.notifications.models import Notification
from app.permits.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.permits.models import User

logger = logging.getLogger(__name__)


def notify(
    s: "Session",
    *,
    user: "User",
    type: str,
    title: str,
    message: str,
    metadata: dict[str, Any] | None = None,
    email: bool = True,
) -> tuple[Notification | None, bool]:
    """
    Create an in-app notification, then try to e-mail a copy.

    Both halves are side effects of some primary change: a failure is
    logged and reported through the return value (notification or None,
    e-mail sent) so the caller's transaction carries on.
    """
    n = Notification(
        user_id=user.id,
        type=type,
        title=title,
        message=message,
        is_read=False,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    try:
        with s.begin_nested():
            s.add(n)
    except SQLAlchemyError:
        logger.exception("Notification for user %s (%s) could not be stored", user.id, type)
        n = None

    emailed = False
    if email:
        body = f"{message}\n\n{mailer.app_url('/')}"
        emailed = mailer.send_email(user.email, title, body)
    return n, emailed


def list_notifications(s: "Session", user: "User", *, unread_only: bool = False) -> list[Notification]:
    q = s.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def get_notification_or_404(s: "Session", notification_id: int) -> Notification:
    n = s.get(Notification, notification_id)
    if not n:
        raise NotFoundError("Notification not found.")
    return n


def mark_read(s: "Session", notification: Notification, user: "User") -> Notification:
    if notification.user_id != user.id:
        raise AuthorizationError("This notification belongs to another user.")
    notification.is_read = True
    return notification


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "user_id": n.user_id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "is_read": n.is_read,
        "metadata": json.loads(n.metadata_json) if n.metadata_json else None,
        "created_at": iso(n.created_at),
    }
