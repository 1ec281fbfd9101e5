from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.orm import Session

from app.permits.constants import DOCUMENT_CATEGORIES, DOCUMENT_STATUS_APPROVED, category_label
from app.permits.db import db_session
from app.permits.errors import AuthorizationError, PreconditionFailed, ValidationError
from app.permits.models import User
from app.permits.modules.documents.checklist import apply_updates, checklist_to_dict, load_checklist, save_checklist
from app.permits.modules.documents.cover_letter import generate_cover_letter
from app.permits.modules.documents.models import Document
from app.permits.modules.documents.review import review_document
from app.permits.modules.documents.service import (
    check_upload_size,
    create_document,
    current_by_category,
    decode_content,
    delete_document,
    delete_documents,
    document_to_dict,
    get_document_or_404,
    list_documents,
    list_versions,
    sanitize_upload_filename,
    validate_upload_payload,
)
from app.permits.modules.projects.service import ensure_project_access, get_project_or_404
from app.permits.rbac import require_permission
from app.permits.utils import change_event, json_payload

bp = Blueprint("documents", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _project_for(s: Session, project_id: int):
    project = get_project_or_404(s, project_id)
    ensure_project_access(s, project, _current_user())
    return project


def _document_for(s: Session, document_id: int) -> Document:
    doc = get_document_or_404(s, document_id)
    _project_for(s, doc.project_id)
    return doc


@bp.get("/projects/<int:project_id>/documents")
@require_permission("documents.view")
def documents_list(project_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    category = (request.args.get("category") or "").strip() or None
    if category and category not in DOCUMENT_CATEGORIES:
        raise ValidationError(f"Invalid category. Must be one of: {', '.join(DOCUMENT_CATEGORIES)}")
    docs = list_documents(s, project.id, category=category)
    return jsonify({"documents": [document_to_dict(d) for d in docs]})


@bp.get("/projects/<int:project_id>/documents/category/<category>")
@require_permission("documents.view")
def documents_by_category(project_id: int, category: str):
    if category not in DOCUMENT_CATEGORIES:
        raise ValidationError(f"Invalid category. Must be one of: {', '.join(DOCUMENT_CATEGORIES)}")
    s = db_session()
    project = _project_for(s, project_id)
    docs = list_documents(s, project.id, category=category)
    return jsonify({"documents": [document_to_dict(d) for d in docs]})


@bp.get("/projects/<int:project_id>/documents/current")
@require_permission("documents.view")
def documents_current(project_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    summary = [
        {
            "category": category,
            "label": category_label(category),
            "document": document_to_dict(doc) if doc else None,
        }
        for category, doc in current_by_category(s, project.id)
    ]
    return jsonify({"categories": summary})


@bp.post("/projects/<int:project_id>/documents")
@require_permission("documents.upload")
def documents_upload(project_id: int):
    s = db_session()
    u = _current_user()
    project = _project_for(s, project_id)
    payload = json_payload()

    errors = validate_upload_payload(payload)
    if errors:
        raise ValidationError.from_list(errors)

    max_bytes = int(current_app.config["UPLOAD_MAX_BYTES"])
    check_upload_size(payload.get("file_size"), max_bytes)
    content = decode_content(payload.get("content"))
    check_upload_size(len(content), max_bytes)

    doc = create_document(
        s,
        project=project,
        category=payload["category"].strip(),
        file_name=sanitize_upload_filename(payload["file_name"]),
        file_type=payload.get("file_type"),
        file_size=payload.get("file_size"),
        content=content,
        user=u,
    )
    s.commit()
    current_app.logger.info(
        "Document %s uploaded to project %s: %s v%s (%s bytes)",
        doc.id, project.id, doc.file_name, doc.version, doc.file_size,
    )
    return jsonify({"document": document_to_dict(doc), "event": change_event("document", doc.id, "created")}), 201


@bp.post("/projects/<int:project_id>/documents/bulk-delete")
@require_permission("documents.upload")
def documents_bulk_delete(project_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    ids = delete_documents(s, project, json_payload().get("document_ids"), _current_user())
    s.commit()
    return jsonify({"deleted": ids, "event": change_event("document", None, "deleted")})


@bp.delete("/projects/<int:project_id>/documents/<int:document_id>")
@require_permission("documents.upload")
def documents_delete_in_project(project_id: int, document_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    doc = get_document_or_404(s, document_id)
    if doc.project_id != project.id:
        raise AuthorizationError("Document does not belong to this project.")
    delete_document(s, doc, _current_user())
    s.commit()
    return jsonify({"deleted": [document_id], "event": change_event("document", document_id, "deleted")})


@bp.delete("/documents/<int:document_id>")
@require_permission("documents.upload")
def documents_delete(document_id: int):
    s = db_session()
    doc = _document_for(s, document_id)
    delete_document(s, doc, _current_user())
    s.commit()
    return jsonify({"deleted": [document_id], "event": change_event("document", document_id, "deleted")})


@bp.get("/documents/<int:document_id>")
@require_permission("documents.view")
def documents_detail(document_id: int):
    s = db_session()
    doc = _document_for(s, document_id)
    return jsonify({"document": document_to_dict(doc, include_content=True)})


@bp.get("/documents/<int:document_id>/versions")
@require_permission("documents.view")
def documents_versions(document_id: int):
    s = db_session()
    doc = _document_for(s, document_id)
    return jsonify({"versions": [document_to_dict(d) for d in list_versions(s, doc)]})


@bp.patch("/documents/<int:document_id>")
@require_permission("documents.review")
def documents_review(document_id: int):
    s = db_session()
    u = _current_user()
    doc = _document_for(s, document_id)
    payload = json_payload()
    review_document(
        s,
        doc,
        status=payload.get("status") or "",
        reviewer=u,
        comment=payload.get("comments"),
        checklist_updates=payload.get("checklist"),
    )
    s.commit()
    current_app.logger.info("Document %s reviewed by %s: %s", doc.id, u.email, doc.status)
    return jsonify({
        "document": document_to_dict(doc),
        "checklist": checklist_to_dict(load_checklist(doc)),
        "event": change_event("document", doc.id, "updated"),
    })


@bp.get("/documents/<int:document_id>/checklist")
@require_permission("documents.view")
def documents_checklist_get(document_id: int):
    s = db_session()
    doc = _document_for(s, document_id)
    return jsonify({"checklist": checklist_to_dict(load_checklist(doc))})


@bp.put("/documents/<int:document_id>/checklist")
@require_permission("documents.review")
def documents_checklist_put(document_id: int):
    s = db_session()
    doc = _document_for(s, document_id)
    if doc.status == DOCUMENT_STATUS_APPROVED:
        raise PreconditionFailed("Return the document to review before changing its checklist.")
    checklist = apply_updates(load_checklist(doc), json_payload().get("items"))
    save_checklist(s, doc, checklist)
    s.commit()
    return jsonify({"checklist": checklist_to_dict(checklist), "event": change_event("document", doc.id, "updated")})


@bp.post("/projects/<int:project_id>/cover-letter")
@require_permission("documents.upload")
def documents_cover_letter(project_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    doc = generate_cover_letter(s, project, json_payload(), _current_user())
    s.commit()
    return jsonify({"document": document_to_dict(doc), "event": change_event("document", doc.id, "created")}), 201
