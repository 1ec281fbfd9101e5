from __future__ import annotations

import json
from datetime import date, datetime

from flask import request

from app.permits.errors import ValidationError


def json_payload() -> dict:
    """Request body as a dict; anything else is a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def dump_json_list(values) -> str:
    return json.dumps(sorted(set(values or [])))


def load_json_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return list(value) if isinstance(value, list) else []


def parse_datetime(s: str | None) -> datetime | None:
    """Accept YYYY-MM-DD or a full ISO timestamp."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    if len(s) == 10:
        return datetime.combine(date.fromisoformat(s), datetime.min.time())
    return datetime.fromisoformat(s.replace("Z", "+00:00")).replace(tzinfo=None)


def iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def change_event(entity: str, entity_id: int | None, operation: str) -> dict:
    """Structured change signal returned with mutating responses."""
    return {"entity": entity, "id": entity_id, "operation": operation}
