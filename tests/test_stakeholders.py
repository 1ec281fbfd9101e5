import smtplib

import pytest
from werkzeug.security import generate_password_hash

from app.permits import create_app
from app.permits.db import session_scope
from app.permits.models import ActivityLog, Base, User
from app.permits.modules.notifications.models import Notification
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
            ("engineer@example.com", "Eve Engineer", "stakeholder"),
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


def _user_id(client, email):
    with session_scope(client.application) as s:
        return s.query(User).filter(User.email == email).one().id


def _project_with_engineer(client):
    headers = _login(client, "specialist@example.com")
    r = client.post(
        "/api/projects",
        json={"name": "Fresno DC", "facility_address": "1 Dock St", "jurisdiction": "Fresno", "client_name": "Acme"},
        headers=headers,
    )
    pid = r.json["project"]["id"]
    r = client.post(
        f"/api/projects/{pid}/stakeholders",
        json={"user_id": _user_id(client, "engineer@example.com"), "roles": ["engineer"]},
        headers=headers,
    )
    assert r.status_code == 201
    return headers, pid, r.json["stakeholder"]["id"]


def _count(client, activity_type):
    with session_scope(client.application) as s:
        return s.query(ActivityLog).filter(ActivityLog.activity_type == activity_type).count()


def test_add_stakeholder_is_idempotent(client):
    headers, pid, sh_id = _project_with_engineer(client)

    r = client.post(
        f"/api/projects/{pid}/stakeholders",
        json={"user_id": _user_id(client, "engineer@example.com"), "roles": ["architect"]},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json["stakeholder"]["id"] == sh_id
    assert r.json["stakeholder"]["roles"] == ["engineer"]
    assert r.json["event"]["operation"] == "unchanged"

    assert _count(client, "stakeholder_added") == 1
    with session_scope(client.application) as s:
        assert s.query(ProjectStakeholder).count() == 1
        entry = s.query(ActivityLog).filter(ActivityLog.activity_type == "stakeholder_added").one()
        assert entry.description == "Eve Engineer was added as a stakeholder with roles: engineer"


def test_add_stakeholder_validation(client):
    headers, pid, _sh_id = _project_with_engineer(client)
    other_id = _user_id(client, "other@example.com")

    r = client.post(f"/api/projects/{pid}/stakeholders", json={"user_id": other_id, "roles": ["wizard"]}, headers=headers)
    assert r.status_code == 400
    r = client.post(f"/api/projects/{pid}/stakeholders", json={"user_id": other_id, "roles": []}, headers=headers)
    assert r.status_code == 400
    r = client.post(f"/api/projects/{pid}/stakeholders", json={"user_id": 9999, "roles": ["engineer"]}, headers=headers)
    assert r.status_code == 404


def test_member_gains_project_access(client):
    headers, pid, _sh_id = _project_with_engineer(client)

    _login(client, "other@example.com")
    assert client.get(f"/api/projects/{pid}").status_code == 403
    assert client.get("/api/projects").json["projects"] == []

    _login(client, "engineer@example.com")
    assert client.get(f"/api/projects/{pid}").status_code == 200
    assert [p["id"] for p in client.get("/api/projects").json["projects"]] == [pid]


def test_candidates_exclude_members(client):
    headers, pid, _sh_id = _project_with_engineer(client)
    r = client.get(f"/api/projects/{pid}/stakeholders/candidates")
    emails = [u["email"] for u in r.json["users"]]
    assert "engineer@example.com" not in emails
    assert "other@example.com" in emails


def test_update_stakeholder_roles(client):
    headers, pid, sh_id = _project_with_engineer(client)
    r = client.put(
        f"/api/stakeholders/{sh_id}",
        json={"roles": ["engineer", "reviewer"], "assigned_categories": ["structural_plans"]},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json["stakeholder"]["roles"] == ["engineer", "reviewer"]
    assert r.json["stakeholder"]["assigned_categories"] == ["structural_plans"]
    assert _count(client, "stakeholder_updated") == 1

    # same values again: nothing to log
    client.put(f"/api/stakeholders/{sh_id}", json={"roles": ["reviewer", "engineer"]}, headers=headers)
    assert _count(client, "stakeholder_updated") == 1


def test_assign_task_notifies_assignee(client):
    headers, pid, sh_id = _project_with_engineer(client)

    r = client.post(
        f"/api/stakeholders/{sh_id}/tasks",
        json={
            "task_type": "provide_document",
            "document_category": "structural_plans",
            "description": "Upload stamped rack calcs",
            "due_date": "2026-11-30",
        },
        headers=headers,
    )
    assert r.status_code == 201
    task = r.json["task"]
    assert task["status"] == "pending"
    assert task["due_date"] == "2026-11-30T00:00:00"
    # no SMTP configured
    assert task["notification_sent"] is False

    assert _count(client, "task_assigned") == 1
    with session_scope(client.application) as s:
        assert s.query(StakeholderTask).count() == 1
        entry = s.query(ActivityLog).filter(ActivityLog.activity_type == "task_assigned").one()
        assert entry.description == "Task assigned to Eve Engineer: Upload stamped rack calcs"

    _login(client, "engineer@example.com")
    r = client.get("/api/notifications?unread=1")
    assert r.json["unread_count"] == 1
    n = r.json["notifications"][0]
    assert n["type"] == "task_assigned"
    assert n["title"] == "Task Assigned"
    assert n["message"] == "You have been assigned a new task: Upload stamped rack calcs"
    assert n["metadata"]["project_id"] == pid


def test_assign_task_survives_smtp_failure(client, monkeypatch):
    headers, pid, sh_id = _project_with_engineer(client)
    client.application.config["SMTP_HOST"] = "smtp.example.com"

    def refuse(*args, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(smtplib, "SMTP", refuse)
    r = client.post(
        "/api/tasks/assign",
        json={"stakeholder_id": sh_id, "project_id": pid, "task_type": "collaborate", "description": "Walk the site"},
        headers=headers,
    )
    assert r.status_code == 201
    assert r.json["task"]["notification_sent"] is False
    with session_scope(client.application) as s:
        assert s.query(StakeholderTask).count() == 1
        assert s.query(Notification).count() == 1


def test_assign_task_records_email_delivery(client, monkeypatch):
    headers, pid, sh_id = _project_with_engineer(client)
    client.application.config["SMTP_HOST"] = "smtp.example.com"
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            self.host = host

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            pass

        def login(self, username, password):
            pass

        def send_message(self, msg):
            sent.append(msg)

    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    r = client.post(
        f"/api/stakeholders/{sh_id}/tasks",
        json={"task_type": "review_document", "description": "Check egress widths"},
        headers=headers,
    )
    assert r.json["task"]["notification_sent"] is True
    assert len(sent) == 1
    assert sent[0]["To"] == "engineer@example.com"
    assert sent[0]["Subject"] == "Fresno DC: Task Assigned"


def test_assign_via_tasks_route_checks_project(client):
    headers, pid, sh_id = _project_with_engineer(client)
    r = client.post(
        "/api/tasks/assign",
        json={"stakeholder_id": sh_id, "project_id": pid + 1, "task_type": "other", "description": "x"},
        headers=headers,
    )
    assert r.status_code == 400

    r = client.post("/api/tasks/assign", json={"task_type": "other", "description": "x"}, headers=headers)
    assert r.status_code == 400

    r = client.post(
        "/api/tasks/assign",
        json={"stakeholder_id": sh_id, "task_type": "dance", "description": "x"},
        headers=headers,
    )
    assert r.status_code == 400
    with session_scope(client.application) as s:
        assert s.query(StakeholderTask).count() == 0


def test_task_progress_and_deletion(client):
    headers, pid, sh_id = _project_with_engineer(client)
    r = client.post(
        f"/api/stakeholders/{sh_id}/tasks",
        json={"task_type": "provide_document", "description": "Upload site plan"},
        headers=headers,
    )
    task_id = r.json["task"]["id"]

    engineer = _login(client, "engineer@example.com")
    r = client.put(f"/api/tasks/{task_id}", json={"status": "completed"}, headers=engineer)
    assert r.status_code == 200
    assert r.json["task"]["status"] == "completed"
    assert r.json["task"]["completed_at"] is not None
    assert _count(client, "task_updated") == 1

    r = client.put(f"/api/tasks/{task_id}", json={"status": "in_progress"}, headers=engineer)
    assert r.json["task"]["completed_at"] is None

    # stakeholders may update but not delete tasks
    r = client.delete(f"/api/tasks/{task_id}", headers=engineer)
    assert r.status_code == 403

    headers = _login(client, "specialist@example.com")
    r = client.get(f"/api/projects/{pid}/tasks")
    assert [t["id"] for t in r.json["tasks"]] == [task_id]
    r = client.delete(f"/api/tasks/{task_id}", headers=headers)
    assert r.status_code == 200
    assert _count(client, "task_deleted") == 1
    assert client.get(f"/api/projects/{pid}/tasks").json["tasks"] == []


def test_removing_stakeholder_removes_their_tasks(client):
    headers, pid, sh_id = _project_with_engineer(client)
    for desc in ("one", "two"):
        client.post(
            f"/api/stakeholders/{sh_id}/tasks",
            json={"task_type": "other", "description": desc},
            headers=headers,
        )

    r = client.delete(f"/api/stakeholders/{sh_id}", headers=headers)
    assert r.status_code == 200
    assert r.json["tasks_removed"] == 2

    with session_scope(client.application) as s:
        assert s.query(ProjectStakeholder).count() == 0
        assert s.query(StakeholderTask).count() == 0
    assert _count(client, "stakeholder_removed") == 1

    _login(client, "engineer@example.com")
    assert client.get(f"/api/projects/{pid}").status_code == 403


def test_non_string_task_and_membership_fields_are_400(client):
    headers, pid, sh_id = _project_with_engineer(client)

    r = client.post(
        f"/api/stakeholders/{sh_id}/tasks",
        json={"task_type": "other", "description": 12},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json["errors"] == ["description must be a string."]

    r = client.post(
        f"/api/projects/{pid}/stakeholders",
        json={"user_id": _user_id(client, "other@example.com"), "roles": [["engineer"]]},
        headers=headers,
    )
    assert r.status_code == 400

    r = client.post(
        f"/api/stakeholders/{sh_id}/tasks",
        json={"task_type": "other", "description": "Bring badges"},
        headers=headers,
    )
    task_id = r.json["task"]["id"]
    for body in ({"status": None}, {"task_type": None}, {"description": ["x"]}):
        r = client.put(f"/api/tasks/{task_id}", json=body, headers=headers)
        assert r.status_code == 400, body
    assert client.get(f"/api/projects/{pid}/tasks").json["tasks"][0]["status"] == "pending"
