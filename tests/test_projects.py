import base64
import re

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.sql.dml import Delete
from werkzeug.security import generate_password_hash

from app.permits import create_app
from app.permits.db import session_scope
from app.permits.models import ActivityLog, Base, User
from app.permits.modules.commodities.models import Commodity
from app.permits.modules.documents.models import Document, DocumentChecklistItem
from app.permits.modules.projects.models import Project
from app.permits.modules.projects.service import generate_permit_number
from app.permits.modules.stakeholders.models import ProjectStakeholder, StakeholderTask
from app.permits.rbac import seed_roles_and_permissions


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.delenv("SMTP_HOST", raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = seed_roles_and_permissions(s)
        for email, name, role in (
            ("specialist@example.com", "Sam Specialist", "specialist"),
            ("owner@example.com", "Olive Owner", "stakeholder"),
            ("other@example.com", "Oscar Other", "stakeholder"),
        ):
            u = User(email=email, full_name=name, password_hash=generate_password_hash("pw"))
            u.roles.append(roles[role])
            s.add(u)

    return app.test_client()


def _login(client, email):
    r = client.post("/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200
    return {"X-CSRF-Token": r.json["csrf_token"]}


_PROJECT = {
    "name": "Fresno DC",
    "facility_address": "1 Dock St, Fresno CA",
    "jurisdiction": "City of Fresno",
    "jurisdiction_address": "2600 Fresno St",
    "client_name": "Acme Logistics",
    "contact_email": "ops@acme.example",
}


def _create_project(client, headers, **overrides):
    r = client.post("/api/projects", json={**_PROJECT, **overrides}, headers=headers)
    assert r.status_code == 201
    return r.json["project"]["id"]


def _populate(client, headers, pid):
    """One of everything a project owns."""
    with session_scope(client.application) as s:
        other_id = s.query(User).filter(User.email == "other@example.com").one().id
    r = client.post(f"/api/projects/{pid}/stakeholders", json={"user_id": other_id, "roles": ["contractor"]}, headers=headers)
    sh_id = r.json["stakeholder"]["id"]
    client.post(f"/api/stakeholders/{sh_id}/tasks", json={"task_type": "other", "description": "Call"}, headers=headers)
    r = client.post(
        f"/api/projects/{pid}/documents",
        json={"category": "special_inspection", "file_name": "si.pdf", "content": base64.b64encode(b"si").decode()},
        headers=headers,
    )
    doc_id = r.json["document"]["id"]
    client.put(f"/api/documents/{doc_id}/checklist", json={"items": {"special_agency": True}}, headers=headers)
    client.post(
        f"/api/projects/{pid}/commodities",
        json={"commodity_types": ["paper"], "storage_method": "racks", "classification": "class_iv"},
        headers=headers,
    )


def _counts(client, pid):
    with session_scope(client.application) as s:
        return {
            "project": s.query(Project).filter(Project.id == pid).count(),
            "stakeholders": s.query(ProjectStakeholder).filter(ProjectStakeholder.project_id == pid).count(),
            "tasks": s.query(StakeholderTask).count(),
            "documents": s.query(Document).filter(Document.project_id == pid).count(),
            "checklist_items": s.query(DocumentChecklistItem).count(),
            "activities": s.query(ActivityLog).filter(ActivityLog.project_id == pid).count(),
            "commodities": s.query(Commodity).filter(Commodity.project_id == pid).count(),
        }


def test_permit_number_format():
    assert re.fullmatch(r"HPS-\d{4}-\d{4}", generate_permit_number())
    assert generate_permit_number().startswith("HPS-")


def test_create_and_list_projects(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    r = client.get(f"/api/projects/{pid}")
    project = r.json["project"]
    assert project["status"] == "not_started"
    assert re.fullmatch(r"HPS-\d{4}-\d{4}", project["permit_number"])
    assert project["zip_code"] is None

    r = client.get(f"/api/projects/{pid}/activities")
    entry = r.json["activities"][0]
    assert entry["activity_type"] == "project_created"
    assert entry["metadata"] == {"permit_number": project["permit_number"]}

    # specialists see every project
    _login(client, "specialist@example.com")
    assert [p["id"] for p in client.get("/api/projects").json["projects"]] == [pid]


def test_create_project_validation(client):
    headers = _login(client, "owner@example.com")
    r = client.post("/api/projects", json={"name": "Only a name", "status": "paused"}, headers=headers)
    assert r.status_code == 400
    assert "facility_address is required." in r.json["errors"]
    assert any(e.startswith("Invalid status") for e in r.json["errors"])

    r = client.post("/api/projects", json={**_PROJECT, "deadline": "soon"}, headers=headers)
    assert r.status_code == 400


def test_update_logs_changed_fields_only(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    r = client.patch(
        f"/api/projects/{pid}",
        json={"status": "in_progress", "client_name": "Acme Logistics", "deadline": "2026-12-01"},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json["project"]["status"] == "in_progress"
    assert r.json["project"]["deadline"] == "2026-12-01T00:00:00"

    r = client.get(f"/api/projects/{pid}/activities?limit=1")
    changes = r.json["activities"][0]["metadata"]["changes"]
    assert set(changes) == {"status", "deadline"}
    assert changes["status"] == {"old": "not_started", "new": "in_progress"}

    r = client.patch(f"/api/projects/{pid}", json={"name": ""}, headers=headers)
    assert r.status_code == 400

    # no-op update writes no entry
    client.patch(f"/api/projects/{pid}", json={"status": "in_progress"}, headers=headers)
    types = [a["activity_type"] for a in client.get(f"/api/projects/{pid}/activities").json["activities"]]
    assert types == ["project_updated", "project_created"]


def test_non_member_is_refused(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    other = _login(client, "other@example.com")
    assert client.get(f"/api/projects/{pid}").status_code == 403
    assert client.patch(f"/api/projects/{pid}", json={"status": "approved"}, headers=other).status_code == 403
    assert client.delete(f"/api/projects/{pid}", headers=other).status_code == 403
    assert client.get("/api/projects/9999").status_code == 404


def test_delete_project_cascades(client):
    headers = _login(client, "specialist@example.com")
    pid = _create_project(client, headers)
    keep = _create_project(client, headers, name="Other site")
    _populate(client, headers, pid)

    before = _counts(client, pid)
    assert all(v >= 1 for v in before.values())

    r = client.delete(f"/api/projects/{pid}", headers=headers)
    assert r.status_code == 200
    assert r.json["deleted"]["documents"] == 1
    assert r.json["deleted"]["tasks"] == 1

    assert all(v == 0 for v in _counts(client, pid).values())
    assert client.get(f"/api/projects/{keep}").status_code == 200
    assert client.get(f"/api/projects/{pid}").status_code == 404


def test_member_cannot_delete_project_they_did_not_create(client):
    headers = _login(client, "specialist@example.com")
    pid = _create_project(client, headers)
    _populate(client, headers, pid)

    other = _login(client, "other@example.com")
    assert client.get(f"/api/projects/{pid}").status_code == 200
    r = client.delete(f"/api/projects/{pid}", headers=other)
    assert r.status_code == 403
    assert _counts(client, pid)["project"] == 1


def test_delete_project_rolls_back_on_failure(client, monkeypatch):
    headers = _login(client, "specialist@example.com")
    pid = _create_project(client, headers)
    _populate(client, headers, pid)
    before = _counts(client, pid)

    real_execute = Session.execute

    def failing_execute(self, statement, *args, **kwargs):
        if isinstance(statement, Delete) and statement.table.name == "documents":
            raise OperationalError("DELETE FROM documents", {}, Exception("disk I/O error"))
        return real_execute(self, statement, *args, **kwargs)

    monkeypatch.setattr(Session, "execute", failing_execute)
    r = client.delete(f"/api/projects/{pid}", headers=headers)
    assert r.status_code == 500
    monkeypatch.undo()

    # tasks and stakeholders were deleted before the failure; all of it came back
    assert _counts(client, pid) == before


def test_commodities(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    r = client.post(
        f"/api/projects/{pid}/commodities",
        json={"commodity_types": ["plastic", "paper"], "storage_method": "racks", "classification": "group_a_exposed"},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json["commodity"]["commodity_types"] == ["paper", "plastic"]

    r = client.post(
        f"/api/projects/{pid}/commodities",
        json={"commodity_types": [], "storage_method": "floor", "classification": "class_ix"},
        headers=headers,
    )
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3

    r = client.get(f"/api/projects/{pid}/commodities")
    assert len(r.json["commodities"]) == 1
    types = [a["activity_type"] for a in client.get(f"/api/projects/{pid}/activities").json["activities"]]
    assert types.count("commodities_added") == 1


def test_cover_letter_lists_submitted_documents(client):
    headers = _login(client, "specialist@example.com")
    pid = _create_project(client, headers)
    for category, name in (("site_plan", "site.pdf"), ("egress_plan", "egress.pdf")):
        client.post(
            f"/api/projects/{pid}/documents",
            json={"category": category, "file_name": name, "content": base64.b64encode(b"x").decode()},
            headers=headers,
        )
    r = client.get(f"/api/projects/{pid}/documents/category/egress_plan")
    egress_id = r.json["documents"][0]["id"]
    client.patch(f"/api/documents/{egress_id}", json={"status": "rejected", "comments": "wrong floor"}, headers=headers)

    r = client.post(f"/api/projects/{pid}/cover-letter", json={"customer_name": "Acme West"}, headers=headers)
    assert r.status_code == 201
    doc = r.json["document"]
    assert doc["category"] == "cover_letter"
    assert doc["file_name"] == "CoverLetter_Fresno_DC.txt"
    assert doc["file_type"] == "text/plain"
    assert doc["version"] == 1

    text = base64.b64decode(client.get(f"/api/documents/{doc['id']}").json["document"]["content"]).decode()
    assert "Re: High-Piled Storage Permit for Fresno DC" in text
    assert "Owner/Tenant: Acme West" in text
    assert "To: City of Fresno\n2600 Fresno St" in text
    assert "- Site Plan: site.pdf" in text
    assert "egress.pdf" not in text
    assert text.endswith("Intralog Permit Services Team")

    r = client.post(f"/api/projects/{pid}/cover-letter", json={}, headers=headers)
    assert r.json["document"]["version"] == 2
    types = [a["activity_type"] for a in client.get(f"/api/projects/{pid}/activities").json["activities"]]
    assert types.count("cover_letter_generated") == 2


def test_update_refuses_blank_or_null_status(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    for status in ("", None, 3):
        r = client.patch(f"/api/projects/{pid}", json={"status": status}, headers=headers)
        assert r.status_code == 400, status
    assert client.get(f"/api/projects/{pid}").json["project"]["status"] == "not_started"


def test_project_fields_must_be_strings(client):
    headers = _login(client, "owner@example.com")

    r = client.post("/api/projects", json={**_PROJECT, "name": 42}, headers=headers)
    assert r.status_code == 400
    assert r.json["errors"] == ["name must be a string."]

    pid = _create_project(client, headers)
    r = client.patch(f"/api/projects/{pid}", json={"zip_code": ["93721"]}, headers=headers)
    assert r.status_code == 400
    assert r.json["errors"] == ["zip_code must be a string."]

    r = client.post(
        f"/api/projects/{pid}/commodities",
        json={"commodity_types": [["paper"]], "storage_method": ["racks"], "classification": "class_iv"},
        headers=headers,
    )
    assert r.status_code == 400
