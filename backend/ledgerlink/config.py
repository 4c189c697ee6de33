# backend/ledgerlink/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    APP_ENV = os.environ.get("APP_ENV", "development")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///ledgerlink.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Used to build invite links in outgoing emails
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000")

    # Invite lifecycle
    INVITE_TTL_DAYS = int(os.environ.get("INVITE_TTL_DAYS", "7"))
    OTP_TTL_MINUTES = int(os.environ.get("OTP_TTL_MINUTES", "10"))
    # bcrypt cost for OTP hashes
    OTP_BCRYPT_ROUNDS = int(os.environ.get("OTP_BCRYPT_ROUNDS", "12"))
    OTP_MAX_ATTEMPTS = int(os.environ.get("OTP_MAX_ATTEMPTS", "5"))
    OTP_ATTEMPT_WINDOW_MINUTES = int(os.environ.get("OTP_ATTEMPT_WINDOW_MINUTES", "15"))

    # "memory" for single-instance deployments, "database" when scaled out
    THROTTLE_BACKEND = os.environ.get("THROTTLE_BACKEND", "memory")

    # Sessions and cookies
    ACCOUNTANT_SESSION_TTL_DAYS = int(os.environ.get("ACCOUNTANT_SESSION_TTL_DAYS", "30"))
    ACTIVE_COMPANY_COOKIE_MAX_AGE = int(
        os.environ.get("ACTIVE_COMPANY_COOKIE_MAX_AGE", str(60 * 60 * 24 * 365))
    )
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", APP_ENV == "production")

    # Outgoing mail: "log" writes the message to the application log
    MAIL_BACKEND = os.environ.get("MAIL_BACKEND", "log")
    SMTP_SERVER = os.environ.get("SMTP_SERVER", "localhost")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    MAIL_FROM = os.environ.get("MAIL_FROM", "no-reply@ledgerlink.local")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json" if APP_ENV == "production" else "console")

    # Consecutive audit write failures before a CRITICAL alert is logged
    AUDIT_FAILURE_ALERT_THRESHOLD = int(os.environ.get("AUDIT_FAILURE_ALERT_THRESHOLD", "3"))

    # Optional zero-arg callable returning a naive UTC datetime (tests inject a fake clock)
    CLOCK = None
