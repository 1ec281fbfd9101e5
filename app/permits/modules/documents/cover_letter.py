from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

from app.permits.constants import DOCUMENT_STATUS_APPROVED, DOCUMENT_STATUS_PENDING, category_label
from app.permits.modules.documents.service import create_document, list_documents

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.permits.models import User
    from app.permits.modules.documents.models import Document
    from app.permits.modules.projects.models import Project

# request key -> project attribute
OVERRIDABLE_FIELDS = {
    "project_name": "name",
    "customer_name": "client_name",
    "facility_address": "facility_address",
    "jurisdiction": "jurisdiction",
    "jurisdiction_address": "jurisdiction_address",
    "contact_email": "contact_email",
    "contact_phone": "contact_phone",
}


def letter_details(project: "Project", overrides: dict | None = None) -> dict[str, str | None]:
    overrides = overrides or {}
    details = {}
    for key, attr in OVERRIDABLE_FIELDS.items():
        value = (str(overrides.get(key) or "")).strip()
        details[key] = value or getattr(project, attr)
    details["permit_number"] = project.permit_number
    return details


def render_cover_letter(details: dict, documents: list["Document"], today: date | None = None) -> str:
    today = today or date.today()
    lines = [
        "Cover Letter - High-Piled Storage Permit Application",
        f"{today.strftime('%B')} {today.day}, {today.year}",
        "",
        f"To: {details.get('jurisdiction') or 'Local Authority Having Jurisdiction'}",
    ]
    if details.get("jurisdiction_address"):
        lines.append(details["jurisdiction_address"])
    lines += [
        f"Re: High-Piled Storage Permit for {details.get('project_name')}",
        f"Permit Number: {details.get('permit_number') or 'To be assigned'}",
        f"Facility Address: {details.get('facility_address')}",
        f"Owner/Tenant: {details.get('customer_name')}",
        "",
        "To Whom It May Concern:",
        "",
        "Please find attached the complete set of documents for the High-Piled Storage Permit "
        f"application for {details.get('project_name')}.",
        "",
        "The following documents are included in this submission:",
        "",
    ]
    lines += [f"- {category_label(d.category)}: {d.file_name}" for d in documents] or ["- (none)"]
    lines += [
        "",
        "If you require any additional information or clarification, please contact us at your "
        "earliest convenience.",
    ]
    contact = [v for v in (details.get("contact_email"), details.get("contact_phone")) if v]
    if contact:
        lines.append(f"Contact: {' / '.join(contact)}")
    lines += ["", "Sincerely,", "Intralog Permit Services Team"]
    return "\n".join(lines)


def submitted_documents(s: "Session", project_id: int) -> list["Document"]:
    """Latest version of each file that is approved or awaiting review, in upload order."""
    latest: dict[tuple[str, str], Document] = {}
    for doc in list_documents(s, project_id):
        if doc.category == "cover_letter":
            continue
        key = (doc.category, doc.file_name)
        if key not in latest or doc.version > latest[key].version:
            latest[key] = doc
    docs = [d for d in latest.values() if d.status in (DOCUMENT_STATUS_APPROVED, DOCUMENT_STATUS_PENDING)]
    return sorted(docs, key=lambda d: (d.uploaded_at, d.id))


def generate_cover_letter(s: "Session", project: "Project", payload: dict, user: "User") -> "Document":
    details = letter_details(project, payload)
    text = render_cover_letter(details, submitted_documents(s, project.id))
    safe_name = "".join(c if c.isalnum() else "_" for c in (details.get("project_name") or "project"))
    return create_document(
        s,
        project=project,
        category="cover_letter",
        file_name=f"CoverLetter_{safe_name}.txt",
        file_type="text/plain",
        content=text.encode("utf-8"),
        user=user,
        comments="Generated cover letter",
        activity_type="cover_letter_generated",
        description="Cover letter was generated for this project",
    )
