from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from typing import TYPE_CHECKING

from flask import current_app, has_app_context
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from werkzeug.utils import secure_filename

from app.permits.audit import record_activity
from app.permits.constants import DOCUMENT_CATEGORIES, DOCUMENT_STATUS_PENDING, category_label
from app.permits.errors import AuthorizationError, ConflictError, NotFoundError, PayloadTooLarge, ValidationError
from app.permits.modules.documents.models import Document
from app.permits.rbac import user_has_permission
from app.permits.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.permits.models import User
    from app.permits.modules.projects.models import Project

logger = logging.getLogger(__name__)

DEFAULT_VERSION_ASSIGN_RETRIES = 5


def file_digest_and_size(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def sanitize_upload_filename(filename: str) -> str:
    fn = secure_filename(filename or "")
    return fn or "document.bin"


def decode_content(raw) -> bytes:
    """Base64 (optionally a data: URL) -> bytes."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("content is required.")
    data = raw.strip()
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("content must be base64 encoded.") from e


def validate_upload_payload(payload: dict) -> list[str]:
    errors = []
    for field in ("category", "file_name", "file_type", "content"):
        value = payload.get(field)
        if value is not None and not isinstance(value, str):
            errors.append(f"{field} must be a string.")
    if errors:
        return errors

    category = (payload.get("category") or "").strip()
    if category not in DOCUMENT_CATEGORIES:
        errors.append(f"Invalid category. Must be one of: {', '.join(DOCUMENT_CATEGORIES)}")
    if not (payload.get("file_name") or "").strip():
        errors.append("file_name is required.")
    if not payload.get("content"):
        errors.append("content is required.")
    file_size = payload.get("file_size")
    if file_size is not None and (not isinstance(file_size, int) or isinstance(file_size, bool) or file_size < 0):
        errors.append("file_size must be a non-negative integer.")
    return errors


def check_upload_size(size: int | None, max_bytes: int) -> None:
    if size is not None and size > max_bytes:
        raise PayloadTooLarge(f"File exceeds the {max_bytes // (1024 * 1024)} MB upload limit.")


def next_version(s: "Session", project_id: int, category: str, file_name: str) -> int:
    current = s.execute(
        select(func.max(Document.version)).where(
            Document.project_id == project_id,
            Document.category == category,
            Document.file_name == file_name,
        )
    ).scalar()
    return (current or 0) + 1


def _version_assign_retries() -> int:
    if has_app_context():
        return int(current_app.config.get("VERSION_ASSIGN_RETRIES") or DEFAULT_VERSION_ASSIGN_RETRIES)
    return DEFAULT_VERSION_ASSIGN_RETRIES


def create_document(
    s: "Session",
    *,
    project: "Project",
    category: str,
    file_name: str,
    file_type: str | None,
    content: bytes,
    user: "User",
    file_size: int | None = None,
    comments: str | None = None,
    activity_type: str = "document_uploaded",
    description: str | None = None,
) -> Document:
    """
    Store a new version of (project, category, file_name).

    Version = max existing + 1. The insert runs in a SAVEPOINT so a
    concurrent upload of the same key that wins the unique constraint only
    costs a retry, not the request transaction.
    """
    digest, actual_size = file_digest_and_size(content)
    retries = _version_assign_retries()

    doc = None
    for attempt in range(1, retries + 1):
        version = next_version(s, project.id, category, file_name)
        candidate = Document(
            project_id=project.id,
            category=category,
            file_name=file_name,
            file_type=(file_type or "").strip() or "application/octet-stream",
            file_size=file_size if file_size is not None else actual_size,
            content=content,
            sha256=digest,
            status=DOCUMENT_STATUS_PENDING,
            version=version,
            uploaded_by_user_id=user.id,
            comments=comments,
        )
        try:
            with s.begin_nested():
                s.add(candidate)
        except IntegrityError:
            logger.warning(
                "Version %s of %s/%s/%s taken concurrently (attempt %s/%s)",
                version, project.id, category, file_name, attempt, retries,
            )
            continue
        doc = candidate
        break

    if doc is None:
        raise ConflictError("Could not assign a document version; please retry the upload.")

    record_activity(
        s,
        project_id=project.id,
        actor=user,
        activity_type=activity_type,
        description=description or f'Uploaded "{file_name}" to {category_label(category)} (version {doc.version})',
        metadata={"document_id": doc.id, "category": category, "version": doc.version, "sha256": digest},
    )
    return doc


def list_documents(s: "Session", project_id: int, *, category: str | None = None) -> list[Document]:
    q = s.query(Document).filter(Document.project_id == project_id)
    if category:
        q = q.filter(Document.category == category)
    return q.order_by(Document.uploaded_at.desc(), Document.id.desc()).all()


def get_document_or_404(s: "Session", document_id: int) -> Document:
    doc = s.get(Document, document_id)
    if not doc:
        raise NotFoundError("Document not found.")
    return doc


def list_versions(s: "Session", document: Document) -> list[Document]:
    return (
        s.query(Document)
        .filter(
            Document.project_id == document.project_id,
            Document.category == document.category,
            Document.file_name == document.file_name,
        )
        .order_by(Document.version.desc())
        .all()
    )


def current_by_category(s: "Session", project_id: int) -> list[tuple[str, Document | None]]:
    """Highest-version document per category, in the fixed category order."""
    current: dict[str, Document] = {}
    rows = (
        s.query(Document)
        .filter(Document.project_id == project_id)
        .order_by(Document.version.desc(), Document.uploaded_at.desc(), Document.id.desc())
        .all()
    )
    for doc in rows:
        current.setdefault(doc.category, doc)
    return [(category, current.get(category)) for category in DOCUMENT_CATEGORIES]


def _ensure_can_delete(document: Document, user: "User") -> None:
    if document.uploaded_by_user_id != user.id and not user_has_permission(user, "documents.delete"):
        raise AuthorizationError("You don't have permission to delete this document.")


def _delete(s: "Session", document: Document, user: "User") -> None:
    record_activity(
        s,
        project_id=document.project_id,
        actor=user,
        activity_type="document_deleted",
        description=f'Deleted "{document.file_name}" version {document.version} from {category_label(document.category)}',
        metadata={"document_id": document.id, "category": document.category, "version": document.version},
    )
    s.delete(document)


def delete_document(s: "Session", document: Document, user: "User") -> None:
    _ensure_can_delete(document, user)
    _delete(s, document, user)
    s.flush()


def delete_documents(s: "Session", project: "Project", document_ids, user: "User") -> list[int]:
    """Delete several documents of one project; nothing is deleted unless all can be."""
    if not isinstance(document_ids, list) or not document_ids:
        raise ValidationError("document_ids must be a non-empty list.")
    if any(not isinstance(i, int) or isinstance(i, bool) for i in document_ids):
        raise ValidationError("document_ids must contain integers.")

    ids = list(dict.fromkeys(document_ids))
    docs = {d.id: d for d in s.query(Document).filter(Document.id.in_(ids)).all()}
    missing = [i for i in ids if i not in docs]
    if missing:
        raise NotFoundError(f"Documents not found: {', '.join(str(i) for i in missing)}")
    foreign = [i for i in ids if docs[i].project_id != project.id]
    if foreign:
        raise ValidationError(f"Documents do not belong to this project: {', '.join(str(i) for i in foreign)}")
    for i in ids:
        _ensure_can_delete(docs[i], user)

    for i in ids:
        _delete(s, docs[i], user)
    s.flush()
    return ids


def document_to_dict(doc: Document, *, include_content: bool = False) -> dict:
    return {
        "id": doc.id,
        "project_id": doc.project_id,
        "category": doc.category,
        "file_name": doc.file_name,
        "file_type": doc.file_type,
        "file_size": doc.file_size,
        "sha256": doc.sha256,
        "status": doc.status,
        "version": doc.version,
        "uploaded_by_user_id": doc.uploaded_by_user_id,
        "uploaded_at": iso(doc.uploaded_at),
        "reviewed_by_user_id": doc.reviewed_by_user_id,
        "reviewed_at": iso(doc.reviewed_at),
        "comments": doc.comments,
        "content": base64.b64encode(doc.content).decode("ascii") if include_content else None,
    }
