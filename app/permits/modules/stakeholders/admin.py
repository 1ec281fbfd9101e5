from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.orm import Session

from app.permits.admin import user_summary
from app.permits.db import db_session
from app.permits.errors import ValidationError
from app.permits.models import User
from app.permits.modules.projects.models import Project
from app.permits.modules.projects.service import ensure_project_access, get_project_or_404
from app.permits.modules.stakeholders.models import ProjectStakeholder, StakeholderTask
from app.permits.modules.stakeholders.service import (
    add_stakeholder,
    assign_task,
    candidate_users,
    delete_task,
    get_stakeholder_or_404,
    get_task_or_404,
    list_project_tasks,
    list_stakeholders,
    remove_stakeholder,
    stakeholder_to_dict,
    task_to_dict,
    update_stakeholder,
    update_task,
)
from app.permits.rbac import require_permission
from app.permits.utils import change_event, json_payload

bp = Blueprint("stakeholders", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _project_for(s: Session, project_id: int) -> Project:
    project = get_project_or_404(s, project_id)
    ensure_project_access(s, project, _current_user())
    return project


def _stakeholder_for(s: Session, stakeholder_id: int) -> tuple[ProjectStakeholder, Project]:
    sh = get_stakeholder_or_404(s, stakeholder_id)
    return sh, _project_for(s, sh.project_id)


def _task_for(s: Session, task_id: int) -> StakeholderTask:
    task = get_task_or_404(s, task_id)
    _project_for(s, task.stakeholder.project_id)
    return task


@bp.get("/projects/<int:project_id>/stakeholders")
@require_permission("stakeholders.view")
def stakeholders_list(project_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    return jsonify({"stakeholders": [stakeholder_to_dict(sh) for sh in list_stakeholders(s, project.id)]})


@bp.get("/projects/<int:project_id>/stakeholders/candidates")
@require_permission("stakeholders.manage")
def stakeholders_candidates(project_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    return jsonify({"users": [user_summary(u) for u in candidate_users(s, project.id)]})


@bp.post("/projects/<int:project_id>/stakeholders")
@require_permission("stakeholders.manage")
def stakeholders_add(project_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    sh, created = add_stakeholder(s, project, json_payload(), _current_user())
    s.commit()
    operation = "created" if created else "unchanged"
    body = {"stakeholder": stakeholder_to_dict(sh), "event": change_event("stakeholder", sh.id, operation)}
    return jsonify(body), (201 if created else 200)


@bp.put("/stakeholders/<int:stakeholder_id>")
@require_permission("stakeholders.manage")
def stakeholders_update(stakeholder_id: int):
    s = db_session()
    sh, _project = _stakeholder_for(s, stakeholder_id)
    update_stakeholder(s, sh, json_payload(), _current_user())
    s.commit()
    return jsonify({"stakeholder": stakeholder_to_dict(sh), "event": change_event("stakeholder", sh.id, "updated")})


@bp.delete("/stakeholders/<int:stakeholder_id>")
@require_permission("stakeholders.manage")
def stakeholders_remove(stakeholder_id: int):
    s = db_session()
    sh, _project = _stakeholder_for(s, stakeholder_id)
    tasks_removed = remove_stakeholder(s, sh, _current_user())
    s.commit()
    return jsonify({
        "deleted": stakeholder_id,
        "tasks_removed": tasks_removed,
        "event": change_event("stakeholder", stakeholder_id, "deleted"),
    })


@bp.get("/projects/<int:project_id>/tasks")
@require_permission("tasks.view")
def tasks_for_project(project_id: int):
    s = db_session()
    project = _project_for(s, project_id)
    return jsonify({"tasks": [task_to_dict(t) for t in list_project_tasks(s, project.id)]})


@bp.get("/stakeholders/<int:stakeholder_id>/tasks")
@require_permission("tasks.view")
def tasks_for_stakeholder(stakeholder_id: int):
    s = db_session()
    sh, _project = _stakeholder_for(s, stakeholder_id)
    return jsonify({"tasks": [task_to_dict(t) for t in sh.tasks]})


def _assign(s: Session, sh: ProjectStakeholder, project: Project, payload: dict):
    u = _current_user()
    task = assign_task(s, sh, payload, u, project_name=payload.get("project_name") or project.name)
    s.commit()
    current_app.logger.info(
        "Task %s (%s) assigned to stakeholder %s by %s (emailed=%s)",
        task.id, task.task_type, sh.id, u.email, task.notification_sent,
    )
    return jsonify({"task": task_to_dict(task), "event": change_event("task", task.id, "created")}), 201


@bp.post("/stakeholders/<int:stakeholder_id>/tasks")
@require_permission("tasks.assign")
def tasks_create(stakeholder_id: int):
    s = db_session()
    sh, project = _stakeholder_for(s, stakeholder_id)
    return _assign(s, sh, project, json_payload())


@bp.post("/tasks/assign")
@require_permission("tasks.assign")
def tasks_assign():
    s = db_session()
    payload = json_payload()
    stakeholder_id = payload.get("stakeholder_id")
    if not isinstance(stakeholder_id, int):
        raise ValidationError("stakeholder_id is required.")
    sh, project = _stakeholder_for(s, stakeholder_id)
    if payload.get("project_id") is not None and payload.get("project_id") != project.id:
        raise ValidationError("Stakeholder does not belong to this project.")
    return _assign(s, sh, project, payload)


@bp.put("/tasks/<int:task_id>")
@require_permission("tasks.update")
def tasks_update(task_id: int):
    s = db_session()
    task = _task_for(s, task_id)
    update_task(s, task, json_payload(), _current_user())
    s.commit()
    return jsonify({"task": task_to_dict(task), "event": change_event("task", task.id, "updated")})


@bp.delete("/tasks/<int:task_id>")
@require_permission("tasks.assign")
def tasks_delete(task_id: int):
    s = db_session()
    task = _task_for(s, task_id)
    delete_task(s, task, _current_user())
    s.commit()
    return jsonify({"deleted": task_id, "event": change_event("task", task_id, "deleted")})
