# backend/crm/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/crm.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///crm.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Dashboard origins allowed by the CORS hook (comma separated)
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
        ).split(",")
        if origin.strip()
    ]
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

    # Company details printed on PDFs and e-mails
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "CRM")
    COMPANY_ADDRESS = os.environ.get("COMPANY_ADDRESS", "")
    COMPANY_PHONE = os.environ.get("COMPANY_PHONE", "")
    COMPANY_EMAIL = os.environ.get("COMPANY_EMAIL", "")
    BANK_NAME = os.environ.get("BANK_NAME", "")
    BANK_IBAN = os.environ.get("BANK_IBAN", "")

    # Outbound mail (SMTP). MAIL_SUPPRESS_SEND logs messages instead of sending.
    MAIL_HOST = os.environ.get("MAIL_HOST", "localhost")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
    MAIL_USE_SSL = _env_bool("MAIL_USE_SSL", False)
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM = os.environ.get("MAIL_FROM", "no-reply@crm.local")
    MAIL_SUPPRESS_SEND = _env_bool("MAIL_SUPPRESS_SEND", True)
    MAIL_OUTBOX_LIMIT = int(os.environ.get("MAIL_OUTBOX_LIMIT", "500"))

    PDF_OUTPUT_DIR = os.environ.get("PDF_OUTPUT_DIR", "uploads/pdf")

    # Google Calendar OAuth client
    GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET")
    GOOGLE_REDIRECT_URI = os.environ.get("GOOGLE_REDIRECT_URI", "http://localhost:5173/google-callback")
    GOOGLE_CALENDAR_TIMEZONE = os.environ.get("GOOGLE_CALENDAR_TIMEZONE", "Europe/Istanbul")

    # Background event reminder poller
    REMINDER_POLLER_ENABLED = _env_bool("REMINDER_POLLER_ENABLED", False)
    REMINDER_POLL_INTERVAL_SECONDS = int(os.environ.get("REMINDER_POLL_INTERVAL_SECONDS", "300"))

    INVOICE_DEFAULT_DUE_DAYS = int(os.environ.get("INVOICE_DEFAULT_DUE_DAYS", "15"))
