import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    upload_max_bytes: int
    version_assign_retries: int

    smtp_host: str
    smtp_port: int
    smtp_username: str
    smtp_password: str
    smtp_use_tls: bool
    mail_default_sender: str
    app_base_url: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    return int(raw)


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///permits.db"),
        upload_max_bytes=_getenv_int("UPLOAD_MAX_BYTES", 50 * 1024 * 1024),
        version_assign_retries=_getenv_int("VERSION_ASSIGN_RETRIES", 5),
        smtp_host=_getenv("SMTP_HOST", ""),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_use_tls=_getenv("SMTP_USE_TLS", "1") not in ("0", "false", "no"),
        mail_default_sender=_getenv("MAIL_DEFAULT_SENDER", "noreply@painlesspermit.com"),
        app_base_url=_getenv("APP_BASE_URL", "http://localhost:8080"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "UPLOAD_MAX_BYTES": s.upload_max_bytes,
        "VERSION_ASSIGN_RETRIES": s.version_assign_retries,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "MAIL_DEFAULT_SENDER": s.mail_default_sender,
        "APP_BASE_URL": s.app_base_url,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # request body limit: base64 content is ~4/3 of the file, plus JSON framing
        "MAX_CONTENT_LENGTH": (s.upload_max_bytes * 4) // 3 + 1024 * 1024,
    }
