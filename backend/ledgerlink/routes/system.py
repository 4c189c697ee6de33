# backend/ledgerlink/routes/system.py
"""
System health endpoint.

Reports database reachability plus the state of the two session stores so
deploys can tell whether cleanup jobs are keeping up.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AccountantInvite, AccountantSessionToken, User
from ..models.constants import InviteStatus
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Round-trip a trivial query and count users."""
    start_time = time.time()
    try:
        db.session.execute(db.text("SELECT 1"))
        user_count = db.session.query(User).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count},
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_access_store_health() -> dict:
    """
    Count rows the sweeps should have removed.

    Expired sessions and stale invites are harmless (reads re-check expiry)
    but a growing backlog means the cleanup commands are not running.
    """
    start_time = time.time()
    try:
        now = utcnow()
        active_sessions = db.session.query(AccountantSessionToken).filter(
            AccountantSessionToken.expires_at >= now
        ).count()
        expired_sessions = db.session.query(AccountantSessionToken).filter(
            AccountantSessionToken.expires_at < now
        ).count()
        stale_invites = db.session.query(AccountantInvite).filter(
            AccountantInvite.status == InviteStatus.PENDING,
            AccountantInvite.expires_at < now,
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_accountant_sessions": active_sessions,
                "expired_pending_cleanup": expired_sessions,
                "stale_pending_invites": stale_invites,
            },
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Access store health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Access store error",
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    access_health = check_access_store_health()

    all_checks = [database_health, access_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "access_store": access_health,
        },
    }, http_status
