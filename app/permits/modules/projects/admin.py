from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.permits.audit import activity_to_dict, list_activities
from app.permits.db import db_session
from app.permits.models import User
from app.permits.modules.projects.service import (
    create_project,
    delete_project,
    ensure_project_access,
    get_project_or_404,
    list_projects,
    project_to_dict,
    update_project,
)
from app.permits.rbac import require_permission
from app.permits.utils import change_event, json_payload

bp = Blueprint("projects", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/projects")
@require_permission("projects.view")
def projects_list():
    s = db_session()
    projects = list_projects(s, _current_user())
    return jsonify({"projects": [project_to_dict(p) for p in projects]})


@bp.post("/projects")
@require_permission("projects.create")
def projects_create():
    s = db_session()
    u = _current_user()
    project = create_project(s, json_payload(), u)
    s.commit()
    current_app.logger.info("Project %s created by %s (%s)", project.id, u.email, project.permit_number)
    return jsonify({"project": project_to_dict(project), "event": change_event("project", project.id, "created")}), 201


@bp.get("/projects/<int:project_id>")
@require_permission("projects.view")
def projects_detail(project_id: int):
    s = db_session()
    project = get_project_or_404(s, project_id)
    ensure_project_access(s, project, _current_user())
    return jsonify({"project": project_to_dict(project)})


@bp.patch("/projects/<int:project_id>")
@require_permission("projects.edit")
def projects_update(project_id: int):
    s = db_session()
    u = _current_user()
    project = get_project_or_404(s, project_id)
    ensure_project_access(s, project, u)
    update_project(s, project, json_payload(), u)
    s.commit()
    return jsonify({"project": project_to_dict(project), "event": change_event("project", project.id, "updated")})


@bp.delete("/projects/<int:project_id>")
@require_permission("projects.view")
def projects_delete(project_id: int):
    s = db_session()
    u = _current_user()
    project = get_project_or_404(s, project_id)
    ensure_project_access(s, project, u)
    counts = delete_project(s, project, u)
    s.commit()
    return jsonify({"deleted": counts, "event": change_event("project", project_id, "deleted")})


@bp.get("/projects/<int:project_id>/activities")
@require_permission("projects.view")
def projects_activities(project_id: int):
    s = db_session()
    project = get_project_or_404(s, project_id)
    ensure_project_access(s, project, _current_user())
    limit = request.args.get("limit", type=int)
    entries = list_activities(s, project.id, limit=limit)
    return jsonify({"activities": [activity_to_dict(e) for e in entries]})
