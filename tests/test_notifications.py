import pytest
from werkzeug.security import generate_password_hash

from app.permits import create_app
from app.permits.db import session_scope
from app.permits.models import Base, User
from app.permits.modules.notifications.models import Notification
from app.permits.modules.notifications.service import notify
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
        for email in ("owner@example.com", "other@example.com"):
            u = User(email=email, full_name=email.split("@")[0].title(), password_hash=generate_password_hash("pw"))
            u.roles.append(roles["stakeholder"])
            s.add(u)

    with session_scope(app) as s:
        owner = s.query(User).filter(User.email == "owner@example.com").one()
        for i in range(2):
            notify(s, user=owner, type="task_assigned", title="Task Assigned", message=f"Task {i}", email=False)

    return app.test_client()


def _login(client, email):
    r = client.post("/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200
    return {"X-CSRF-Token": r.json["csrf_token"]}


def test_list_and_mark_read(client):
    headers = _login(client, "owner@example.com")
    r = client.get("/api/notifications")
    assert r.json["unread_count"] == 2
    newest = r.json["notifications"][0]
    assert newest["message"] == "Task 1"

    r = client.patch(f"/api/notifications/{newest['id']}/read", headers=headers)
    assert r.status_code == 200
    assert r.json["notification"]["is_read"] is True

    r = client.get("/api/notifications?unread=1")
    assert [n["message"] for n in r.json["notifications"]] == ["Task 0"]
    assert r.json["unread_count"] == 1


def test_cannot_mark_another_users_notification(client):
    with session_scope(client.application) as s:
        nid = s.query(Notification).first().id

    headers = _login(client, "other@example.com")
    assert client.get("/api/notifications").json["notifications"] == []
    r = client.patch(f"/api/notifications/{nid}/read", headers=headers)
    assert r.status_code == 403

    r = client.patch("/api/notifications/9999/read", headers=headers)
    assert r.status_code == 404

    with session_scope(client.application) as s:
        assert s.get(Notification, nid).is_read is False


def test_notify_outside_request_only_logs_email(client):
    with session_scope(client.application) as s:
        owner = s.query(User).filter(User.email == "owner@example.com").one()
        n, emailed = notify(s, user=owner, type="document_approved", title="Document approved", message="ok")
        assert n is not None
        assert emailed is False
