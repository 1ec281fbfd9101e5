import base64
import hashlib

import pytest
from werkzeug.security import generate_password_hash

from app.permits import create_app
from app.permits.db import session_scope
from app.permits.models import ActivityLog, Base, User
from app.permits.modules.documents import service as document_service
from app.permits.modules.documents.models import Document
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


def _create_project(client, headers, name="Fresno DC"):
    r = client.post(
        "/api/projects",
        json={"name": name, "facility_address": "1 Dock St", "jurisdiction": "Fresno", "client_name": "Acme"},
        headers=headers,
    )
    assert r.status_code == 201
    return r.json["project"]["id"]


def _upload(client, headers, project_id, *, category="fire_protection", file_name="Fire.pdf", data=b"%PDF-1.4 fire"):
    return client.post(
        f"/api/projects/{project_id}/documents",
        json={
            "category": category,
            "file_name": file_name,
            "file_type": "application/pdf",
            "content": base64.b64encode(data).decode("ascii"),
        },
        headers=headers,
    )


def test_repeat_uploads_get_increasing_versions(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    versions = []
    for i in range(3):
        r = _upload(client, headers, pid, data=f"rev {i}".encode())
        assert r.status_code == 201
        versions.append(r.json["document"]["version"])
        assert r.json["document"]["status"] == "pending_review"
        assert r.json["event"]["operation"] == "created"
    assert versions == [1, 2, 3]

    # different file name in the same category starts its own history
    r = _upload(client, headers, pid, file_name="Sprinklers.pdf")
    assert r.json["document"]["version"] == 1

    last_id = r.json["document"]["id"]
    r = client.get(f"/api/projects/{pid}/documents?category=fire_protection")
    fire_ids = [d["id"] for d in r.json["documents"] if d["file_name"] == "Fire.pdf"]
    r = client.get(f"/api/documents/{fire_ids[0]}/versions")
    assert [d["version"] for d in r.json["versions"]] == [3, 2, 1]
    assert last_id not in [d["id"] for d in r.json["versions"]]

    with session_scope(client.application) as s:
        uploads = s.query(ActivityLog).filter(ActivityLog.activity_type == "document_uploaded").count()
    assert uploads == 4


def test_upload_stores_digest_and_serves_content_on_detail_only(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)
    data = b"site plan bytes"

    r = _upload(client, headers, pid, category="site_plan", file_name="../../site plan.pdf", data=data)
    assert r.status_code == 201
    doc = r.json["document"]
    assert doc["file_name"] == "site_plan.pdf"
    assert doc["file_size"] == len(data)
    assert doc["sha256"] == hashlib.sha256(data).hexdigest()
    assert doc["content"] is None

    r = client.get(f"/api/projects/{pid}/documents")
    assert all(d["content"] is None for d in r.json["documents"])

    r = client.get(f"/api/documents/{doc['id']}")
    assert base64.b64decode(r.json["document"]["content"]) == data


def test_current_by_category_lists_every_category_in_order(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)
    _upload(client, headers, pid, category="egress_plan", file_name="egress.pdf")
    _upload(client, headers, pid, category="egress_plan", file_name="egress.pdf")

    r = client.get(f"/api/projects/{pid}/documents/current")
    assert r.status_code == 200
    cats = r.json["categories"]
    assert [c["category"] for c in cats] == [
        "site_plan",
        "facility_plan",
        "egress_plan",
        "structural_plans",
        "commodities",
        "fire_protection",
        "special_inspection",
        "cover_letter",
    ]
    egress = cats[2]
    assert egress["label"] == "Egress Plan"
    assert egress["document"]["version"] == 2
    assert cats[0]["document"] is None


def test_category_route_rejects_unknown_category(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    r = client.get(f"/api/projects/{pid}/documents/category/roof_plan")
    assert r.status_code == 400

    r = client.get(f"/api/projects/{pid}/documents/category/site_plan")
    assert r.status_code == 200
    assert r.json["documents"] == []


def test_upload_validation(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    r = _upload(client, headers, pid, category="roof_plan")
    assert r.status_code == 400

    r = client.post(
        f"/api/projects/{pid}/documents",
        json={"category": "site_plan", "file_name": "a.pdf", "content": "not base64!!"},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json["error"] == "content must be base64 encoded."

    r = client.post(f"/api/projects/{pid}/documents", json={"category": "site_plan"}, headers=headers)
    assert r.status_code == 400
    assert "file_name is required." in r.json["errors"]

    with session_scope(client.application) as s:
        assert s.query(Document).count() == 0


def test_upload_over_limit_is_413(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)
    client.application.config["UPLOAD_MAX_BYTES"] = 10

    r = _upload(client, headers, pid, data=b"x" * 11)
    assert r.status_code == 413

    r = client.post(
        f"/api/projects/{pid}/documents",
        json={"category": "site_plan", "file_name": "a.pdf", "content": "YQ==", "file_size": 5000},
        headers=headers,
    )
    assert r.status_code == 413

    r = _upload(client, headers, pid, data=b"x" * 10)
    assert r.status_code == 201


def test_version_collision_is_retried(client, monkeypatch):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)
    assert _upload(client, headers, pid).status_code == 201

    real_next_version = document_service.next_version
    calls = []

    def stale_then_real(s, project_id, category, file_name):
        calls.append(1)
        if len(calls) == 1:
            return 1  # what a concurrent reader would have seen
        return real_next_version(s, project_id, category, file_name)

    monkeypatch.setattr(document_service, "next_version", stale_then_real)
    r = _upload(client, headers, pid)
    assert r.status_code == 201
    assert r.json["document"]["version"] == 2
    assert len(calls) == 2

    with session_scope(client.application) as s:
        assert s.query(Document).count() == 2
        assert s.query(ActivityLog).filter(ActivityLog.activity_type == "document_uploaded").count() == 2


def test_version_collision_gives_up_with_409(client, monkeypatch):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)
    assert _upload(client, headers, pid).status_code == 201

    client.application.config["VERSION_ASSIGN_RETRIES"] = 3
    monkeypatch.setattr(document_service, "next_version", lambda *a: 1)
    r = _upload(client, headers, pid)
    assert r.status_code == 409

    with session_scope(client.application) as s:
        assert s.query(Document).count() == 1


def test_deleting_all_versions_removes_history(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)
    ids = [_upload(client, headers, pid).json["document"]["id"] for _ in range(2)]

    r = client.delete(f"/api/documents/{ids[1]}", headers=headers)
    assert r.status_code == 200
    r = client.get(f"/api/documents/{ids[0]}/versions")
    assert [d["version"] for d in r.json["versions"]] == [1]

    r = client.delete(f"/api/projects/{pid}/documents/{ids[0]}", headers=headers)
    assert r.status_code == 200
    r = client.get(f"/api/documents/{ids[0]}/versions")
    assert r.status_code == 404

    r = client.get(f"/api/projects/{pid}/activities")
    types = [a["activity_type"] for a in r.json["activities"]]
    assert types.count("document_deleted") == 2


def test_bulk_delete_is_all_or_nothing(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)
    ids = [_upload(client, headers, pid, file_name=f"f{i}.pdf").json["document"]["id"] for i in range(3)]

    r = client.post(f"/api/projects/{pid}/documents/bulk-delete", json={"document_ids": ids + [9999]}, headers=headers)
    assert r.status_code == 404
    with session_scope(client.application) as s:
        assert s.query(Document).count() == 3

    r = client.post(f"/api/projects/{pid}/documents/bulk-delete", json={"document_ids": []}, headers=headers)
    assert r.status_code == 400

    r = client.post(f"/api/projects/{pid}/documents/bulk-delete", json={"document_ids": ids[:2]}, headers=headers)
    assert r.status_code == 200
    assert r.json["deleted"] == ids[:2]
    with session_scope(client.application) as s:
        assert [d.id for d in s.query(Document).all()] == [ids[2]]


def test_bulk_delete_refuses_documents_of_another_project(client):
    headers = _login(client, "owner@example.com")
    p1 = _create_project(client, headers, "One")
    p2 = _create_project(client, headers, "Two")
    d1 = _upload(client, headers, p1).json["document"]["id"]
    d2 = _upload(client, headers, p2).json["document"]["id"]

    r = client.post(f"/api/projects/{p1}/documents/bulk-delete", json={"document_ids": [d1, d2]}, headers=headers)
    assert r.status_code == 400
    with session_scope(client.application) as s:
        assert s.query(Document).count() == 2


def test_only_uploader_or_deleter_may_delete(client):
    owner = _login(client, "owner@example.com")
    pid = _create_project(client, owner)
    r = client.post(
        f"/api/projects/{pid}/stakeholders",
        json={"user_id": 3, "roles": ["engineer"]},
        headers=owner,
    )
    # stakeholders cannot manage membership
    assert r.status_code == 403

    specialist = _login(client, "specialist@example.com")
    with session_scope(client.application) as s:
        other_id = s.query(User).filter(User.email == "other@example.com").one().id
    r = client.post(f"/api/projects/{pid}/stakeholders", json={"user_id": other_id, "roles": ["engineer"]}, headers=specialist)
    assert r.status_code == 201

    owner = _login(client, "owner@example.com")
    doc_id = _upload(client, owner, pid).json["document"]["id"]

    other = _login(client, "other@example.com")
    assert client.get(f"/api/documents/{doc_id}").status_code == 200
    r = client.delete(f"/api/documents/{doc_id}", headers=other)
    assert r.status_code == 403

    specialist = _login(client, "specialist@example.com")
    r = client.delete(f"/api/documents/{doc_id}", headers=specialist)
    assert r.status_code == 200


def test_non_member_cannot_see_documents(client):
    owner = _login(client, "owner@example.com")
    pid = _create_project(client, owner)
    doc_id = _upload(client, owner, pid).json["document"]["id"]

    _login(client, "other@example.com")
    assert client.get(f"/api/projects/{pid}/documents").status_code == 403
    assert client.get(f"/api/documents/{doc_id}").status_code == 403
    assert client.get("/api/documents/9999").status_code == 404


def test_delete_through_another_project_is_refused(client):
    headers = _login(client, "owner@example.com")
    p1 = _create_project(client, headers, "One")
    p2 = _create_project(client, headers, "Two")
    doc_id = _upload(client, headers, p1).json["document"]["id"]

    r = client.delete(f"/api/projects/{p2}/documents/{doc_id}", headers=headers)
    assert r.status_code == 403
    assert r.json["error"] == "Document does not belong to this project."
    assert client.get(f"/api/documents/{doc_id}").status_code == 200


def test_upload_rejects_non_string_fields(client):
    headers = _login(client, "owner@example.com")
    pid = _create_project(client, headers)

    for field, value in (("file_name", 123), ("category", ["site_plan"]), ("file_type", 7), ("content", 42)):
        body = {"category": "site_plan", "file_name": "a.pdf", "content": "YQ==", field: value}
        r = client.post(f"/api/projects/{pid}/documents", json=body, headers=headers)
        assert r.status_code == 400, field
        assert r.json["error"] == f"{field} must be a string."

    with session_scope(client.application) as s:
        assert s.query(Document).count() == 0
