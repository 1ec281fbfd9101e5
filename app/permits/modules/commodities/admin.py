from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.permits.db import db_session
from app.permits.modules.commodities.service import add_commodities, commodity_to_dict, list_commodities
from app.permits.modules.projects.service import ensure_project_access, get_project_or_404
from app.permits.rbac import require_permission
from app.permits.utils import change_event, json_payload

bp = Blueprint("commodities", __name__)


@bp.get("/projects/<int:project_id>/commodities")
@require_permission("projects.view")
def commodities_list(project_id: int):
    s = db_session()
    project = get_project_or_404(s, project_id)
    ensure_project_access(s, project, g.current_user)
    return jsonify({"commodities": [commodity_to_dict(c) for c in list_commodities(s, project.id)]})


@bp.post("/projects/<int:project_id>/commodities")
@require_permission("projects.edit")
def commodities_add(project_id: int):
    s = db_session()
    project = get_project_or_404(s, project_id)
    ensure_project_access(s, project, g.current_user)
    c = add_commodities(s, project, json_payload(), g.current_user)
    s.commit()
    return jsonify({"commodity": commodity_to_dict(c), "event": change_event("commodity", c.id, "created")}), 201
