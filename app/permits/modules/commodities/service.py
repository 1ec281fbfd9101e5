from __future__ import annotations

from typing import TYPE_CHECKING

from app.permits.audit import record_activity
from app.permits.constants import COMMODITY_CLASSIFICATIONS, COMMODITY_TYPES, STORAGE_METHODS
from app.permits.errors import ValidationError
from app.permits.modules.commodities.models import Commodity
from app.permits.utils import dump_json_list, iso, load_json_list

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.permits.models import User
    from app.permits.modules.projects.models import Project


def validate_commodity_payload(payload: dict) -> list[str]:
    errors = []
    types = payload.get("commodity_types")
    if not isinstance(types, list) or not types or not all(isinstance(t, str) for t in types):
        errors.append("Select at least one commodity type.")
    else:
        unknown = [t for t in types if t not in COMMODITY_TYPES]
        if unknown:
            errors.append(f"Unknown commodity types: {', '.join(map(str, unknown))}")
    if not isinstance(payload.get("storage_method"), str) or payload["storage_method"] not in STORAGE_METHODS:
        errors.append(f"storage_method must be one of: {', '.join(sorted(STORAGE_METHODS))}")
    if not isinstance(payload.get("classification"), str) or payload["classification"] not in COMMODITY_CLASSIFICATIONS:
        errors.append(f"classification must be one of: {', '.join(sorted(COMMODITY_CLASSIFICATIONS))}")
    return errors


def add_commodities(s: "Session", project: "Project", payload: dict, user: "User") -> Commodity:
    errors = validate_commodity_payload(payload)
    if errors:
        raise ValidationError.from_list(errors)

    c = Commodity(
        project_id=project.id,
        commodity_types_json=dump_json_list(payload["commodity_types"]),
        storage_method=payload["storage_method"],
        classification=payload["classification"],
        created_by_user_id=user.id,
    )
    s.add(c)
    s.flush()
    record_activity(
        s,
        project_id=project.id,
        actor=user,
        activity_type="commodities_added",
        description="Commodities information was added to the project",
        metadata={"commodity_id": c.id, "classification": c.classification},
    )
    return c


def list_commodities(s: "Session", project_id: int) -> list[Commodity]:
    return (
        s.query(Commodity)
        .filter(Commodity.project_id == project_id)
        .order_by(Commodity.created_at.desc(), Commodity.id.desc())
        .all()
    )


def commodity_to_dict(c: Commodity) -> dict:
    return {
        "id": c.id,
        "project_id": c.project_id,
        "commodity_types": load_json_list(c.commodity_types_json),
        "storage_method": c.storage_method,
        "classification": c.classification,
        "created_by_user_id": c.created_by_user_id,
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
