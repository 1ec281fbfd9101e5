from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, jsonify
from sqlalchemy.orm import Session

from app.permits.models import Permission, Role, User

# key -> display name
PERMISSIONS: dict[str, str] = {
    "admin.view": "Admin: view status",
    "admin.edit": "Admin: manage accounts",
    "projects.view": "Projects: view",
    "projects.view_all": "Projects: view every project",
    "projects.create": "Projects: create",
    "projects.edit": "Projects: edit",
    "projects.delete": "Projects: delete any project",
    "documents.view": "Documents: view",
    "documents.upload": "Documents: upload",
    "documents.review": "Documents: review (approve/reject/revert)",
    "documents.delete": "Documents: delete versions",
    "stakeholders.view": "Stakeholders: view",
    "stakeholders.manage": "Stakeholders: add/update/remove",
    "tasks.view": "Tasks: view",
    "tasks.assign": "Tasks: assign",
    "tasks.update": "Tasks: update progress",
    "notifications.view": "Notifications: view own",
}

_STAKEHOLDER_PERMISSIONS = (
    "projects.view",
    "projects.create",
    "projects.edit",
    "documents.view",
    "documents.upload",
    "stakeholders.view",
    "tasks.view",
    "tasks.update",
    "notifications.view",
)

# role key -> (display name, permission keys)
ROLE_PERMISSIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "admin": ("Administrator", tuple(PERMISSIONS)),
    "specialist": ("Permit Specialist", tuple(k for k in PERMISSIONS if not k.startswith("admin."))),
    "stakeholder": ("Stakeholder", _STAKEHOLDER_PERMISSIONS),
}


def seed_roles_and_permissions(s: Session) -> dict[str, Role]:
    """Idempotently create the permission catalog and the fixed roles."""
    perms: dict[str, Permission] = {p.key: p for p in s.query(Permission).all()}
    for key, name in PERMISSIONS.items():
        if key not in perms:
            perms[key] = Permission(key=key, name=name)
            s.add(perms[key])

    roles: dict[str, Role] = {r.key: r for r in s.query(Role).all()}
    for role_key, (role_name, perm_keys) in ROLE_PERMISSIONS.items():
        role = roles.get(role_key)
        if not role:
            role = Role(key=role_key, name=role_name)
            s.add(role)
            roles[role_key] = role
        for key in perm_keys:
            if perms[key] not in role.permissions:
                role.permissions.append(perms[key])
    return roles


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → 401 (API clients re-login).
            if not user or not user.is_active:
                return jsonify({"error": "Authentication required."}), 401
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
