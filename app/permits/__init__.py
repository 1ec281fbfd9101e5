import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException

from app.permits.config import load_config
from app.permits.db import init_db, teardown_db_session
from app.permits.errors import WorkflowError
from app.permits.routes import bp as routes_bp
from app.permits.auth import bp as auth_bp, load_current_user
from app.permits.admin import bp as admin_bp
from app.permits.modules.projects.admin import bp as projects_bp
from app.permits.modules.documents.admin import bp as documents_bp
from app.permits.modules.stakeholders.admin import bp as stakeholders_bp
from app.permits.modules.notifications.admin import bp as notifications_bp
from app.permits.modules.commodities.admin import bp as commodities_bp

# table -> columns the code reads; checked against the live schema at startup
_EXPECTED_SCHEMA = {
    "projects": ("permit_number", "jurisdiction_address"),
    "documents": ("version", "sha256", "content", "comments"),
    "document_checklist_items": ("item_key", "checked"),
    "project_stakeholders": ("roles_json", "assigned_categories_json"),
    "stakeholder_tasks": ("notification_sent", "completed_at"),
    "activity_logs": ("request_id", "metadata_json"),
    "notifications": ("is_read", "metadata_json"),
    "commodities": ("commodity_types_json",),
    "audit_events": ("client_ip",),
}


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    app.json.sort_keys = False

    # CSRF protection (minimal)
    from app.permits.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow safe auth endpoints to pass through (login/logout)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("SMTP_HOST"):
            app.logger.warning("SMTP_HOST not set; notification e-mails will only be logged.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(projects_bp, url_prefix="/api")
    app.register_blueprint(documents_bp, url_prefix="/api")
    app.register_blueprint(stakeholders_bp, url_prefix="/api")
    app.register_blueprint(notifications_bp, url_prefix="/api")
    app.register_blueprint(commodities_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", True)
    app.config.setdefault("_schema_health_missing", [])

    def _run_schema_health_check() -> None:
        missing: list[str] = []
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            for table, columns in _EXPECTED_SCHEMA.items():
                if not insp.has_table(table):
                    missing.append(f"{table} (table)")
                    continue
                have = {c["name"] for c in insp.get_columns(table)}
                missing.extend(f"{table}.{col}" for col in columns if col not in have)
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)

        app.config["_schema_health_missing"] = missing
        app.config["_schema_health_ok"] = not missing
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if app.config.get("_schema_health_ok") or not request.path.startswith("/api"):
            return None
        # Tables may have been created after boot (tests, first deploy); re-check before refusing.
        _run_schema_health_check()
        if app.config.get("_schema_health_ok"):
            return None
        return jsonify({
            "error": "Database schema is out of date.",
            "errors": app.config.get("_schema_health_missing") or [],
        }), 503

    @app.errorhandler(WorkflowError)
    def _err_workflow(e: WorkflowError):  # type: ignore[no-redef]
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        app.logger.warning(
            "%s (status=%s request_id=%s path=%s): %s",
            type(e).__name__, e.status_code, getattr(g, "request_id", None), request.path, e.message,
        )
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error.", "request_id": getattr(g, "request_id", None)}), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return jsonify({"error": "Forbidden.", "missing_permission": missing}), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = int(app.config.get("UPLOAD_MAX_BYTES") or 0) // (1024 * 1024)
        return jsonify({"error": f"File too large. Maximum size is {limit_mb}MB."}), 413

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.description or e.name}), e.code or 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
