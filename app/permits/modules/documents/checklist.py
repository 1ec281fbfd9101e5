"""
Review checklists.

Each document category carries a fixed, ordered checklist that has to be
fully ticked before a document can be approved. Checklist state is stored
as DocumentChecklistItem rows; the text form below is what gets written
into Document.comments and is still readable for documents reviewed
before the rows existed.

Text form:

    <optional reviewer note>

    Site Plan Checklist:
    [x] Streets and overall building outline
    [ ] Fire hydrant locations
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from app.permits.errors import ValidationError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.permits.modules.documents.models import Document


_ITEM_RE = re.compile(r"^\[([ xX])\] (.*)$")


@dataclass
class ChecklistItem:
    id: str
    label: str
    checked: bool = False


@dataclass
class Checklist:
    title: str
    items: list[ChecklistItem] = field(default_factory=list)
    note: str | None = None


CHECKLIST_TEMPLATES: dict[str, tuple[str, tuple[tuple[str, str], ...]]] = {
    "site_plan": (
        "Site Plan Checklist",
        (
            ("site_streets", "Streets and overall building outline"),
            ("site_hydrants", "Fire hydrant locations"),
            ("site_access", "Fire department access roadways"),
            ("site_key_plan", "Key plan showing project area"),
            ("site_address", "Correct building address and suite/subaddress"),
        ),
    ),
    "facility_plan": (
        "Building/Floor Plan Checklist",
        (
            ("facility_racking", "Proposed racking layout and any existing racks"),
            ("facility_doors", "Fire department access doors"),
            ("facility_valves", "Fire department hose valves"),
            ("facility_pump", "Fire pump / riser room"),
            ("facility_water", "Valves controlling sprinkler water supply"),
            ("facility_smoke", "Smoke removal and curtain board systems"),
            ("facility_extinguishers", "Portable fire extinguishers"),
        ),
    ),
    "egress_plan": (
        "Egress Plan Checklist",
        (
            ("egress_aisles", "Aisle layout with widths shown"),
            ("egress_exits", "Exit access doors, exit doors, and exit discharge points"),
            ("egress_deadend", "Dead-end aisles ≤ 20 ft in Group M, ≤ 50 ft in other occupancies"),
            ("egress_signs", "Exit sign locations (IBC 1013)"),
            ("egress_lighting", "Emergency egress lighting (avg 1 fc / min 0.1 fc at floor)"),
        ),
    ),
    "structural_plans": (
        "Racking/Structural Plan Checklist",
        (
            ("structural_aisles", "Aisle widths dimensioned"),
            ("structural_types", "Rack types and heights identified"),
            ("structural_volume", "Maximum pile volume for each storage array"),
            ("structural_shelves", "Shelf type (solid, slatted, wire grid, or open)"),
            ("structural_flue", "Transverse and longitudinal flue space dimensions"),
            ("structural_tiers", "Number of tiers"),
            ("structural_height", "Floor-to-top-shelf height and floor-to-top-of-storage height"),
            ("structural_clearances", "Clearances to sprinkler deflectors, bottom of joists, and roof deck"),
            ("structural_calcs", "Signed and sealed by a licensed structural engineer"),
            ("structural_seismic", "Seismic design per ASCE 7 § 15.5.3"),
            ("structural_anchors", "Load combinations and anchor design included"),
            ("structural_inspection", '"Storage Racks (IBC 1705.12.7)" box checked in inspection agreement'),
        ),
    ),
    "commodities": (
        "Commodity Description Checklist",
        (
            ("commodity_class", "Commodity class per IFC Table 3203.8"),
            ("commodity_packaging", "Packaging method (loose, boxed, shrink-wrapped, bins, banded, etc.)"),
        ),
    ),
    "fire_protection": (
        "Fire Protection Checklist",
        (
            ("fire_system", "Sprinkler system type and NFPA standard"),
            ("fire_density", "Design density / curve"),
            ("fire_head", "Sprinkler head type (ESFR, CMSA, etc.)"),
            ("fire_detection", "Detection system description"),
            ("fire_smoke", "Smoke removal / curtain board specifications"),
            ("fire_hydraulic", "Photo of hydraulic calculation placard"),
            ("fire_compliance", "Conformance with IFC §§ 3206–3209"),
            ("fire_hose", "1½ in. hose outlet at each fire department access door (NFPA 13 § 8.17.5)"),
        ),
    ),
    "special_inspection": (
        "Special Inspection Checklist",
        (
            ("special_agency", "Inspection agency named"),
            ("special_signatures", "Required signatures and stamp complete"),
        ),
    ),
    "cover_letter": (
        "Cover Letter Checklist",
        (
            ("cover_header", "Proper header and contact information"),
            ("cover_project", "Project details correctly stated"),
            ("cover_documents", "Lists all documents included in submission"),
            ("cover_signature", "Includes signature block"),
            ("cover_valuation", "Valuation includes rack materials (new or used) + labor"),
            ("cover_permits", "Separate electrical permit listed if wiring needed"),
        ),
    ),
}

_GENERAL_ITEMS = (
    ("general_complete", "Document is complete"),
    ("general_legible", "Document is legible"),
    ("general_accurate", "Information appears accurate"),
)


def _general_title(category: str) -> str:
    words = (category or "").replace("_", " ").split(" ")
    return " ".join(w[:1].upper() + w[1:] for w in words).strip() + " Checklist"


def _label_key(label: str) -> str:
    return label.strip().casefold()


def render(category: str) -> Checklist:
    """Fresh, all-unchecked checklist for a category."""
    title, items = CHECKLIST_TEMPLATES.get(category) or (_general_title(category), _GENERAL_ITEMS)
    return Checklist(title=title, items=[ChecklistItem(id=item_id, label=label) for item_id, label in items])


def serialize(checklist: Checklist, note: str | None = None) -> str:
    note = note if note is not None else checklist.note
    lines = [f"[{'x' if item.checked else ' '}] {item.label}" for item in checklist.items]
    body = "\n".join(lines)
    if checklist.title:
        body = f"{checklist.title}:\n{body}"
    if note and note.strip():
        return f"{note}\n\n{body}"
    return body


def parse(text: str | None) -> Checklist | None:
    """
    Read a checklist back out of comment text.

    Returns None when the text has no "[x] " / "[ ] " lines. Parsed items
    carry no ids; pair them with a template through merge().
    """
    if not text:
        return None
    lines = text.split("\n")
    first = next((i for i, line in enumerate(lines) if _ITEM_RE.match(line)), None)
    if first is None:
        return None

    title = ""
    note_lines = lines[:first]
    if first > 0:
        title = lines[first - 1].strip()
        note_lines = lines[: first - 1]
        if title.endswith(":"):
            title = title[:-1]

    items = []
    for line in lines[first:]:
        m = _ITEM_RE.match(line)
        if m:
            items.append(ChecklistItem(id="", label=m.group(2), checked=m.group(1) != " "))

    note = "\n".join(note_lines).strip() or None
    return Checklist(title=title, items=items, note=note)


def merge(template: Checklist, parsed: Checklist | None) -> Checklist:
    """Carry checked flags from parsed onto template items, matching labels case-insensitively."""
    if parsed is None:
        return replace(template, items=[replace(i) for i in template.items])
    checked = {_label_key(i.label): i.checked for i in parsed.items}
    return Checklist(
        title=template.title,
        items=[replace(i, checked=checked.get(_label_key(i.label), False)) for i in template.items],
        note=parsed.note,
    )


def is_complete(checklist: Checklist) -> bool:
    return bool(checklist.items) and all(i.checked for i in checklist.items)


def load_checklist(document: "Document") -> Checklist:
    """Current checklist state of a document: persisted rows first, legacy comment text second."""
    template = render(document.category)
    if document.checklist_items:
        by_key = {row.item_key: row.checked for row in document.checklist_items}
        return Checklist(
            title=template.title,
            items=[replace(i, checked=by_key.get(i.id, False)) for i in template.items],
        )
    parsed = parse(document.comments)
    merged = merge(template, parsed)
    merged.note = None
    return merged


def apply_updates(checklist: Checklist, updates: Any) -> Checklist:
    """
    Apply item updates to a checklist.

    Accepts either a mapping of item id -> bool or a list of
    {"id" | "label", "checked"} objects.
    """
    if not updates:
        return checklist
    if isinstance(updates, Mapping):
        pairs: Iterable[tuple[str | None, str | None, Any]] = ((k, None, v) for k, v in updates.items())
    elif isinstance(updates, list):
        pairs = []
        for raw in updates:
            if not isinstance(raw, Mapping):
                raise ValidationError("Checklist items must be objects.")
            pairs.append((raw.get("id"), raw.get("label"), raw.get("checked")))
    else:
        raise ValidationError("checklist must be an object or a list.")

    by_id = {i.id: i for i in checklist.items}
    by_label = {_label_key(i.label): i for i in checklist.items}
    errors = []
    for item_id, label, checked in pairs:
        if not isinstance(item_id or "", str) or not isinstance(label or "", str):
            errors.append("Checklist item id and label must be strings.")
            continue
        item = by_id.get(item_id) if item_id else by_label.get(_label_key(label or ""))
        if item is None:
            errors.append(f"Unknown checklist item: {item_id or label}")
            continue
        if not isinstance(checked, bool):
            errors.append(f"checked must be true or false for {item.id}.")
            continue
        item.checked = checked
    if errors:
        raise ValidationError.from_list(errors)
    return checklist


def save_checklist(s: "Session", document: "Document", checklist: Checklist) -> None:
    """Upsert one DocumentChecklistItem row per checklist item."""
    from app.permits.modules.documents.models import DocumentChecklistItem

    existing = {row.item_key: row for row in document.checklist_items}
    for position, item in enumerate(checklist.items):
        row = existing.get(item.id)
        if row is None:
            row = DocumentChecklistItem(item_key=item.id, label=item.label, position=position)
            document.checklist_items.append(row)
        row.label = item.label
        row.position = position
        row.checked = item.checked
    s.flush()


def checklist_to_dict(checklist: Checklist) -> dict:
    return {
        "title": checklist.title,
        "items": [{"id": i.id, "label": i.label, "checked": i.checked} for i in checklist.items],
        "complete": is_complete(checklist),
    }
