from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from app.permits.audit import record_activity
from app.permits.constants import PROJECT_STATUSES
from app.permits.errors import AuthorizationError, NotFoundError, ValidationError
from app.permits.models import ActivityLog
from app.permits.modules.projects.models import Project
from app.permits.rbac import user_has_permission
from app.permits.utils import iso, parse_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.permits.models import User

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("name", "facility_address", "jurisdiction", "client_name")
_OPTIONAL_FIELDS = ("jurisdiction_address", "contact_email", "contact_phone", "zip_code")


def generate_permit_number(now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    return f"HPS-{now.year}-{random.randint(1000, 9999)}"


def validate_project_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate project create/update payload. Returns list of errors."""
    errors = []
    for field in _REQUIRED_FIELDS + _OPTIONAL_FIELDS:
        value = payload.get(field)
        if value is not None and not isinstance(value, str):
            errors.append(f"{field} must be a string.")
        elif field in _REQUIRED_FIELDS and not (partial and field not in payload) and not (value or "").strip():
            errors.append(f"{field} is required.")
    # on update an explicit status must name a real one; NULL is not allowed
    if "status" in payload and (partial or payload["status"] is not None):
        status = payload["status"]
        if not isinstance(status, str) or status.strip() not in PROJECT_STATUSES:
            errors.append(f"Invalid status. Must be one of: {', '.join(PROJECT_STATUSES)}")
    if payload.get("deadline"):
        try:
            parse_datetime(payload.get("deadline"))
        except ValueError:
            errors.append("deadline must be an ISO date.")
    return errors


def get_project_or_404(s: "Session", project_id: int) -> Project:
    project = s.get(Project, project_id)
    if not project:
        raise NotFoundError("Project not found.")
    return project


def is_project_member(s: "Session", project: Project, user: "User") -> bool:
    from app.permits.modules.stakeholders.models import ProjectStakeholder

    if project.created_by_user_id == user.id:
        return True
    member = (
        s.query(ProjectStakeholder.id)
        .filter(ProjectStakeholder.project_id == project.id, ProjectStakeholder.user_id == user.id)
        .first()
    )
    return member is not None


def ensure_project_access(s: "Session", project: Project, user: "User") -> None:
    if user_has_permission(user, "projects.view_all"):
        return
    if not is_project_member(s, project, user):
        raise AuthorizationError("You do not have access to this project.")


def list_projects(s: "Session", user: "User") -> list[Project]:
    from app.permits.modules.stakeholders.models import ProjectStakeholder

    q = s.query(Project)
    if not user_has_permission(user, "projects.view_all"):
        member_of = select(ProjectStakeholder.project_id).where(ProjectStakeholder.user_id == user.id)
        q = q.filter((Project.created_by_user_id == user.id) | (Project.id.in_(member_of)))
    return q.order_by(Project.created_at.desc(), Project.id.desc()).all()


def create_project(s: "Session", payload: dict, user: "User") -> Project:
    errors = validate_project_payload(payload)
    if errors:
        raise ValidationError.from_list(errors)

    project = Project(
        name=str(payload["name"]).strip(),
        facility_address=str(payload["facility_address"]).strip(),
        jurisdiction=str(payload["jurisdiction"]).strip(),
        client_name=str(payload["client_name"]).strip(),
        status=(payload.get("status") or "not_started").strip(),
        deadline=parse_datetime(payload.get("deadline")),
        permit_number=generate_permit_number(),
        created_by_user_id=user.id,
    )
    for field in _OPTIONAL_FIELDS:
        setattr(project, field, (str(payload.get(field) or "")).strip() or None)
    s.add(project)
    s.flush()

    record_activity(
        s,
        project_id=project.id,
        actor=user,
        activity_type="project_created",
        description=f'Project "{project.name}" was created',
        metadata={"permit_number": project.permit_number},
    )
    return project


def update_project(s: "Session", project: Project, payload: dict, user: "User") -> Project:
    """Update an existing project (last write wins)."""
    errors = validate_project_payload(payload, partial=True)
    if errors:
        raise ValidationError.from_list(errors)

    changes = {}
    for field in _REQUIRED_FIELDS + _OPTIONAL_FIELDS + ("status",):
        if field not in payload:
            continue
        new_value = (str(payload.get(field) or "")).strip() or None
        if new_value != getattr(project, field):
            changes[field] = {"old": getattr(project, field), "new": new_value}
            setattr(project, field, new_value)

    if "deadline" in payload:
        new_deadline = parse_datetime(payload.get("deadline"))
        if new_deadline != project.deadline:
            changes["deadline"] = {"old": iso(project.deadline), "new": iso(new_deadline)}
            project.deadline = new_deadline

    if changes:
        record_activity(
            s,
            project_id=project.id,
            actor=user,
            activity_type="project_updated",
            description=f'Project "{project.name}" was updated',
            metadata={"changes": changes},
        )
    return project


def delete_project(s: "Session", project: Project, user: "User") -> dict[str, int]:
    """
    Delete a project and every row it owns in one transaction.

    Any failure rolls the whole cascade back and propagates; the caller
    commits on success.
    """
    from app.permits.modules.commodities.models import Commodity
    from app.permits.modules.documents.models import Document, DocumentChecklistItem
    from app.permits.modules.stakeholders.models import ProjectStakeholder, StakeholderTask

    if project.created_by_user_id != user.id and not user_has_permission(user, "projects.delete"):
        raise AuthorizationError("You don't have permission to delete this project.")

    pid = project.id
    stakeholder_ids = select(ProjectStakeholder.id).where(ProjectStakeholder.project_id == pid)
    document_ids = select(Document.id).where(Document.project_id == pid)
    steps = (
        ("tasks", delete(StakeholderTask).where(StakeholderTask.stakeholder_id.in_(stakeholder_ids))),
        ("stakeholders", delete(ProjectStakeholder).where(ProjectStakeholder.project_id == pid)),
        ("checklist_items", delete(DocumentChecklistItem).where(DocumentChecklistItem.document_id.in_(document_ids))),
        ("documents", delete(Document).where(Document.project_id == pid)),
        ("activities", delete(ActivityLog).where(ActivityLog.project_id == pid)),
        ("commodities", delete(Commodity).where(Commodity.project_id == pid)),
    )

    counts: dict[str, int] = {}
    try:
        for name, stmt in steps:
            counts[name] = s.execute(stmt.execution_options(synchronize_session=False)).rowcount
        s.delete(project)
        s.flush()
    except SQLAlchemyError:
        s.rollback()
        logger.exception("Project delete rolled back (project_id=%s)", pid)
        raise

    logger.info("Project %s deleted by user %s: %s", pid, user.id, counts)
    return counts


def project_to_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "facility_address": project.facility_address,
        "jurisdiction": project.jurisdiction,
        "jurisdiction_address": project.jurisdiction_address,
        "client_name": project.client_name,
        "contact_email": project.contact_email,
        "contact_phone": project.contact_phone,
        "permit_number": project.permit_number,
        "zip_code": project.zip_code,
        "status": project.status,
        "deadline": iso(project.deadline),
        "created_at": iso(project.created_at),
        "created_by_user_id": project.created_by_user_id,
    }
