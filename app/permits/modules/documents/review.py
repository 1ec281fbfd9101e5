"""
Document review transitions.

    pending_review -> approved        checklist must be complete
    pending_review -> rejected        reason required
    approved       -> pending_review  revert; prior comments quoted
    rejected       -> pending_review  re-open; prior comments kept
    pending_review -> pending_review  save checklist progress

approved <-> rejected is allowed directly and follows the same rules as
leaving pending_review.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.permits.audit import record_activity
from app.permits.constants import (
    DOCUMENT_STATUS_APPROVED,
    DOCUMENT_STATUS_PENDING,
    DOCUMENT_STATUS_REJECTED,
    DOCUMENT_STATUSES,
    category_label,
)
from app.permits.errors import PreconditionFailed, ValidationError
from app.permits.modules.documents.checklist import (
    apply_updates,
    is_complete,
    load_checklist,
    save_checklist,
    serialize,
)
from app.permits.modules.notifications.service import notify

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.permits.models import User
    from app.permits.modules.documents.models import Document

logger = logging.getLogger(__name__)

REVERT_NOTE = "Reverted from Approved status for additional review."

_STATUS_WORDS = {
    DOCUMENT_STATUS_APPROVED: "approved",
    DOCUMENT_STATUS_REJECTED: "rejected",
    DOCUMENT_STATUS_PENDING: "returned to review",
}


def review_document(
    s: "Session",
    document: "Document",
    *,
    status: str,
    reviewer: "User",
    comment: str | None = None,
    checklist_updates: Any = None,
) -> "Document":
    if comment is not None and not isinstance(comment, str):
        raise ValidationError("comments must be a string.")
    status = status.strip() if isinstance(status, str) else ""
    if status not in DOCUMENT_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(DOCUMENT_STATUSES)}")

    prior_status = document.status
    prior_comments = document.comments
    note = (comment or "").strip() or None
    checklist = apply_updates(load_checklist(document), checklist_updates)

    if status == DOCUMENT_STATUS_APPROVED:
        if not is_complete(checklist):
            raise PreconditionFailed("All checklist items must be completed before approving this document.")
        save_checklist(s, document, checklist)
        comments = serialize(checklist, note)
    elif status == DOCUMENT_STATUS_REJECTED:
        if not note:
            raise PreconditionFailed("A reason is required to reject a document.")
        if checklist_updates:
            save_checklist(s, document, checklist)
        comments = note
    elif prior_status == DOCUMENT_STATUS_APPROVED:
        parts = [REVERT_NOTE]
        if note:
            parts.append(note)
        parts.append(f"Previous comments: {prior_comments or ''}")
        comments = "\n\n".join(parts)
    elif prior_status == DOCUMENT_STATUS_REJECTED:
        comments = "\n\n".join(p for p in (note, prior_comments) if p) or None
    else:
        save_checklist(s, document, checklist)
        comments = serialize(checklist, note)

    document.status = status
    document.reviewed_by_user_id = reviewer.id
    document.reviewed_at = datetime.utcnow()
    document.comments = comments

    if status != prior_status:
        _record_transition(s, document, prior_status, reviewer, note)
    else:
        logger.debug("Document %s review saved without status change (%s)", document.id, status)
    return document


def _record_transition(s: "Session", document: "Document", prior_status: str, reviewer: "User", note: str | None) -> None:
    from app.permits.models import User

    word = _STATUS_WORDS[document.status]
    label = f'"{document.file_name}" ({category_label(document.category)}, version {document.version})'
    description = f"{reviewer.display_name} {word} {label}"
    if document.status == DOCUMENT_STATUS_REJECTED and note:
        description = f"{description}: {note}"

    record_activity(
        s,
        project_id=document.project_id,
        actor=reviewer,
        activity_type=f"document_{document.status}",
        description=description,
        metadata={"document_id": document.id, "from": prior_status, "to": document.status},
    )

    if document.uploaded_by_user_id == reviewer.id:
        return
    uploader = s.get(User, document.uploaded_by_user_id)
    if not uploader or not uploader.is_active:
        return
    notify(
        s,
        user=uploader,
        type=f"document_{document.status}",
        title=f"Document {word}",
        message=f"Your document {label} was {word} by {reviewer.display_name}.",
        metadata={"project_id": document.project_id, "document_id": document.id, "status": document.status},
    )
