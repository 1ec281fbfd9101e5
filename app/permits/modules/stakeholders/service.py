from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.permits import mailer
from app.permits.audit import record_activity
from app.permits.constants import DOCUMENT_CATEGORIES, STAKEHOLDER_ROLES, TASK_STATUSES, TASK_TYPES
from app.permits.errors import NotFoundError, ValidationError
from app.permits.models import User
from app.permits.modules.notifications.service import notify
from app.permits.modules.stakeholders.models import ProjectStakeholder, StakeholderTask
from app.permits.utils import dump_json_list, iso, load_json_list, parse_datetime

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.permits.modules.projects.models import Project

logger = logging.getLogger(__name__)


def _role_words(roles: list[str]) -> str:
    return ", ".join(r.replace("_", " ") for r in roles) or "stakeholder"


def validate_membership_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    if not partial and not isinstance(payload.get("user_id"), int):
        errors.append("user_id is required.")
    roles = payload.get("roles")
    if "roles" in payload or not partial:
        if not isinstance(roles, list) or not roles or not all(isinstance(r, str) for r in roles):
            errors.append("roles must be a non-empty list of strings.")
        else:
            unknown = [r for r in roles if r not in STAKEHOLDER_ROLES]
            if unknown:
                errors.append(f"Unknown roles: {', '.join(map(str, unknown))}")
    categories = payload.get("assigned_categories")
    if categories is not None:
        if not isinstance(categories, list) or not all(isinstance(c, str) for c in categories):
            errors.append("assigned_categories must be a list of strings.")
        else:
            unknown = [c for c in categories if c not in DOCUMENT_CATEGORIES]
            if unknown:
                errors.append(f"Unknown categories: {', '.join(map(str, unknown))}")
    return errors


def get_stakeholder_or_404(s: "Session", stakeholder_id: int) -> ProjectStakeholder:
    sh = s.get(ProjectStakeholder, stakeholder_id)
    if not sh:
        raise NotFoundError("Stakeholder not found.")
    return sh


def list_stakeholders(s: "Session", project_id: int) -> list[ProjectStakeholder]:
    return (
        s.query(ProjectStakeholder)
        .filter(ProjectStakeholder.project_id == project_id)
        .order_by(ProjectStakeholder.added_at.asc(), ProjectStakeholder.id.asc())
        .all()
    )


def _find_member(s: "Session", project_id: int, user_id: int) -> ProjectStakeholder | None:
    return (
        s.query(ProjectStakeholder)
        .filter(ProjectStakeholder.project_id == project_id, ProjectStakeholder.user_id == user_id)
        .one_or_none()
    )


def add_stakeholder(s: "Session", project: "Project", payload: dict, actor: User) -> tuple[ProjectStakeholder, bool]:
    """
    Attach a user to a project. Returns (stakeholder, created).

    Adding someone who is already a member returns the existing row
    unchanged and writes nothing.
    """
    errors = validate_membership_payload(payload)
    if errors:
        raise ValidationError.from_list(errors)

    user = s.get(User, payload["user_id"])
    if not user or not user.is_active:
        raise NotFoundError("User not found.")

    existing = _find_member(s, project.id, user.id)
    if existing:
        return existing, False

    sh = ProjectStakeholder(
        project_id=project.id,
        user_id=user.id,
        roles_json=dump_json_list(payload["roles"]),
        assigned_categories_json=dump_json_list(payload.get("assigned_categories")),
        added_by_user_id=actor.id,
    )
    try:
        with s.begin_nested():
            s.add(sh)
    except IntegrityError:
        existing = _find_member(s, project.id, user.id)
        if existing is None:
            raise
        return existing, False

    roles = load_json_list(sh.roles_json)
    record_activity(
        s,
        project_id=project.id,
        actor=actor,
        activity_type="stakeholder_added",
        description=f"{user.display_name} was added as a stakeholder with roles: {_role_words(roles)}",
        metadata={"stakeholder_id": sh.id, "user_id": user.id, "roles": roles},
    )
    return sh, True


def update_stakeholder(s: "Session", sh: ProjectStakeholder, payload: dict, actor: User) -> ProjectStakeholder:
    errors = validate_membership_payload(payload, partial=True)
    if errors:
        raise ValidationError.from_list(errors)

    changes = {}
    if "roles" in payload:
        roles_json = dump_json_list(payload["roles"])
        if roles_json != sh.roles_json:
            changes["roles"] = load_json_list(roles_json)
            sh.roles_json = roles_json
    if "assigned_categories" in payload:
        categories_json = dump_json_list(payload["assigned_categories"])
        if categories_json != sh.assigned_categories_json:
            changes["assigned_categories"] = load_json_list(categories_json)
            sh.assigned_categories_json = categories_json

    if changes:
        record_activity(
            s,
            project_id=sh.project_id,
            actor=actor,
            activity_type="stakeholder_updated",
            description=f"{sh.user.display_name}'s stakeholder details were updated",
            metadata={"stakeholder_id": sh.id, "changes": changes},
        )
    return sh


def remove_stakeholder(s: "Session", sh: ProjectStakeholder, actor: User) -> int:
    """Remove a member and their tasks. Returns the number of tasks removed."""
    task_count = len(sh.tasks)
    record_activity(
        s,
        project_id=sh.project_id,
        actor=actor,
        activity_type="stakeholder_removed",
        description=f"{sh.user.display_name} was removed from the project",
        metadata={"stakeholder_id": sh.id, "user_id": sh.user_id, "tasks_removed": task_count},
    )
    s.delete(sh)
    s.flush()
    return task_count


def candidate_users(s: "Session", project_id: int) -> list[User]:
    members = select(ProjectStakeholder.user_id).where(ProjectStakeholder.project_id == project_id)
    return (
        s.query(User)
        .filter(User.is_active.is_(True), User.id.not_in(members))
        .order_by(User.full_name.asc(), User.email.asc())
        .all()
    )


def validate_task_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    task_type = payload.get("task_type")
    if "task_type" in payload or not partial:
        if task_type not in TASK_TYPES:
            errors.append(f"Invalid task_type. Must be one of: {', '.join(TASK_TYPES)}")
    description = payload.get("description")
    if description is not None and not isinstance(description, str):
        errors.append("description must be a string.")
    elif not partial and not (description or "").strip():
        errors.append("description is required.")
    category = payload.get("document_category")
    if category not in (None, "") and category not in DOCUMENT_CATEGORIES:
        errors.append(f"Invalid document_category. Must be one of: {', '.join(DOCUMENT_CATEGORIES)}")
    status = payload.get("status")
    if "status" in payload and status not in TASK_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}")
    if payload.get("due_date"):
        try:
            parse_datetime(payload.get("due_date"))
        except ValueError:
            errors.append("due_date must be an ISO date.")
    return errors


def get_task_or_404(s: "Session", task_id: int) -> StakeholderTask:
    task = s.get(StakeholderTask, task_id)
    if not task:
        raise NotFoundError("Task not found.")
    return task


def list_project_tasks(s: "Session", project_id: int) -> list[StakeholderTask]:
    return (
        s.query(StakeholderTask)
        .join(ProjectStakeholder, StakeholderTask.stakeholder_id == ProjectStakeholder.id)
        .filter(ProjectStakeholder.project_id == project_id)
        .order_by(StakeholderTask.created_at.desc(), StakeholderTask.id.desc())
        .all()
    )


def assign_task(
    s: "Session",
    sh: ProjectStakeholder,
    payload: dict,
    actor: User,
    *,
    project_name: str | None = None,
) -> StakeholderTask:
    """
    Create a task for a stakeholder and tell them about it.

    The in-app notification and the e-mail are best-effort;
    notification_sent records whether the e-mail went out.
    """
    errors = validate_task_payload(payload)
    if errors:
        raise ValidationError.from_list(errors)

    description = payload["description"].strip()
    task_type = payload["task_type"]
    task = StakeholderTask(
        stakeholder_id=sh.id,
        task_type=task_type,
        document_category=payload.get("document_category") or None,
        description=description,
        status="pending",
        due_date=parse_datetime(payload.get("due_date")),
        notification_sent=False,
        created_by_user_id=actor.id,
    )
    sh.tasks.append(task)
    s.flush()

    assignee = sh.user
    record_activity(
        s,
        project_id=sh.project_id,
        actor=actor,
        activity_type="task_assigned",
        description=f"Task assigned to {assignee.display_name}: {description}",
        metadata={"task_id": task.id, "stakeholder_id": sh.id, "task_type": task_type},
    )

    project_name = project_name or f"Project {sh.project_id}"
    notify(
        s,
        user=assignee,
        type="task_assigned",
        title="Task Assigned",
        message=f"You have been assigned a new task: {description}",
        metadata={
            "project_id": sh.project_id,
            "task_id": task.id,
            "task_type": task_type,
            "assigned_by": actor.display_name,
        },
        email=False,
    )
    body = (
        f"{assignee.display_name},\n\n"
        f"{description}\n\n"
        f"Assigned by: {actor.display_name}\n"
        f"Project: {project_name}\n"
        f"Task Type: {task_type}\n\n"
        f"Please log in to view more details: {mailer.app_url('/')}"
    )
    task.notification_sent = mailer.send_email(assignee.email, f"{project_name}: Task Assigned", body)
    if not task.notification_sent:
        logger.info("Task %s assigned without e-mail to %s", task.id, assignee.email)
    return task


def update_task(s: "Session", task: StakeholderTask, payload: dict, actor: User) -> StakeholderTask:
    errors = validate_task_payload(payload, partial=True)
    if errors:
        raise ValidationError.from_list(errors)

    changes = {}
    for field in ("task_type", "document_category", "status"):
        if field in payload and payload[field] != getattr(task, field):
            changes[field] = {"old": getattr(task, field), "new": payload[field]}
            setattr(task, field, payload[field])
    if "description" in payload:
        description = (payload.get("description") or "").strip()
        if not description:
            raise ValidationError("description is required.")
        if description != task.description:
            changes["description"] = {"old": task.description, "new": description}
            task.description = description
    if "due_date" in payload:
        due = parse_datetime(payload.get("due_date"))
        if due != task.due_date:
            changes["due_date"] = {"old": iso(task.due_date), "new": iso(due)}
            task.due_date = due

    if "status" in changes:
        task.completed_at = datetime.utcnow() if task.status == "completed" else None

    if changes:
        record_activity(
            s,
            project_id=task.stakeholder.project_id,
            actor=actor,
            activity_type="task_updated",
            description=f"Task updated: {task.description}",
            metadata={"task_id": task.id, "changes": changes},
        )
    return task


def delete_task(s: "Session", task: StakeholderTask, actor: User) -> None:
    record_activity(
        s,
        project_id=task.stakeholder.project_id,
        actor=actor,
        activity_type="task_deleted",
        description=f"Task deleted: {task.description}",
        metadata={"task_id": task.id, "stakeholder_id": task.stakeholder_id},
    )
    s.delete(task)
    s.flush()


def stakeholder_to_dict(sh: ProjectStakeholder) -> dict:
    return {
        "id": sh.id,
        "project_id": sh.project_id,
        "user_id": sh.user_id,
        "user": {"id": sh.user.id, "email": sh.user.email, "full_name": sh.user.full_name},
        "roles": load_json_list(sh.roles_json),
        "assigned_categories": load_json_list(sh.assigned_categories_json),
        "added_by_user_id": sh.added_by_user_id,
        "added_at": iso(sh.added_at),
    }


def task_to_dict(task: StakeholderTask) -> dict:
    return {
        "id": task.id,
        "stakeholder_id": task.stakeholder_id,
        "task_type": task.task_type,
        "document_category": task.document_category,
        "description": task.description,
        "status": task.status,
        "due_date": iso(task.due_date),
        "notification_sent": task.notification_sent,
        "created_by_user_id": task.created_by_user_id,
        "created_at": iso(task.created_at),
        "completed_at": iso(task.completed_at),
    }
