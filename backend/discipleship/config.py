"""Application settings and validation."""

import os
from pathlib import Path
from urllib.parse import urlsplit

BASE = Path(__file__).resolve().parent.parent


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def origin_of(url: str) -> str:
    parts = urlsplit(url.strip())
    return f"{parts.scheme}://{parts.netloc}".lower()


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    SITE_URL: str
    PUBLIC_API_URL: str
    REDIRECT_ALLOW_LIST: frozenset
    MEDIA_ROOT: Path
    MAX_UPLOAD_BYTES: int
    MIN_PASSWORD_LENGTH: int
    REQUIRE_EMAIL_CONFIRMATION: bool
    MASTER_EMAILS: frozenset
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    LOGIN_RATE_LIMIT_PER_MIN: int
    LOGIN_RATE_LIMIT_WINDOW_SECONDS: int
    MAIL_BACKEND: str
    MAIL_FROM: str
    SMTP_HOST: str
    SMTP_PORT: int
    SMTP_USERNAME: str
    SMTP_PASSWORD: str
    SMTP_USE_TLS: bool
    SMTP_START_TLS: bool
    SMTP_TIMEOUT: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'discipleship.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.SITE_URL = os.getenv("SITE_URL", "http://localhost:8080").rstrip("/")
        self.PUBLIC_API_URL = os.getenv("PUBLIC_API_URL", "http://localhost:8000").rstrip("/")
        # origins that may receive users after confirmation or in recovery links
        self.REDIRECT_ALLOW_LIST = frozenset(
            [origin_of(self.SITE_URL)]
            + [origin_of(u) for u in os.getenv("REDIRECT_ALLOW_LIST", "").split(",") if u.strip()]
        )
        self.MEDIA_ROOT = Path(os.getenv("MEDIA_ROOT", str(BASE / "media"))).expanduser().resolve()
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))  # 5 MB default
        self.MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))
        self.REQUIRE_EMAIL_CONFIRMATION = _flag("REQUIRE_EMAIL_CONFIRMATION", "true")
        self.MASTER_EMAILS = frozenset(
            e.strip().lower() for e in os.getenv("MASTER_EMAILS", "").split(",") if e.strip()
        )
        self.ALLOW_INSECURE_JWT = _flag("ALLOW_INSECURE_JWT", "false")
        self.ALLOW_DEV_CORS = _flag("ALLOW_DEV_CORS", "true")
        self.LOGIN_RATE_LIMIT_PER_MIN = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "20"))
        self.LOGIN_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("LOGIN_RATE_LIMIT_WINDOW_SECONDS", "60"))
        # "smtp" delivers through a relay, "memory" keeps messages in the process outbox
        self.MAIL_BACKEND = os.getenv("MAIL_BACKEND", "memory" if self.ENV == "dev" else "smtp").lower()
        self.MAIL_FROM = os.getenv("MAIL_FROM", "Discipleship <no-reply@localhost>")
        self.SMTP_HOST = os.getenv("SMTP_HOST", "")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.SMTP_USE_TLS = _flag("SMTP_USE_TLS", "false")
        self.SMTP_START_TLS = _flag("SMTP_START_TLS", "false" if self.SMTP_USE_TLS else "true")
        self.SMTP_TIMEOUT = int(os.getenv("SMTP_TIMEOUT", "30"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.MIN_PASSWORD_LENGTH < 1:
            raise RuntimeError("MIN_PASSWORD_LENGTH must be positive")
        if self.MAIL_BACKEND not in ("memory", "smtp"):
            raise RuntimeError("MAIL_BACKEND must be 'memory' or 'smtp'")
        if self.MAIL_BACKEND == "smtp" and not self.SMTP_HOST:
            raise RuntimeError("SMTP_HOST must be set when MAIL_BACKEND is smtp")
        if self.SMTP_USE_TLS and self.SMTP_START_TLS:
            raise RuntimeError("SMTP_USE_TLS and SMTP_START_TLS are mutually exclusive")


settings = Settings()
