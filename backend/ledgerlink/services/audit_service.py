# Overview: Append-only security audit log for access-control transitions.

"""
Security Audit Log

WHY: Every privilege-relevant transition (invite issued/accepted/revoked,
session created/deleted, access granted/revoked/denied, export, review)
leaves an immutable row owners can inspect later.

BEST EFFORT: Audit writes never fail the business operation. Callers
commit their own transaction first, then call record(). A failed write is
rolled back, logged at ERROR, and counted; after
AUDIT_FAILURE_ALERT_THRESHOLD consecutive failures a CRITICAL line is
emitted so log-based alerting can page someone.
"""

import logging

from flask import current_app, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import SecurityEvent
from ..logging_config import mask_email, short_id
from ledgerlink.time_utils import utcnow


logger = logging.getLogger(__name__)

_FAILURE_COUNTER_KEY = "ledgerlink.audit_failures"


def _client_details() -> tuple[str | None, str | None]:
    if not has_request_context():
        return None, None
    return request.remote_addr, request.headers.get("User-Agent")


def _note_failure() -> int:
    count = current_app.extensions.get(_FAILURE_COUNTER_KEY, 0) + 1
    current_app.extensions[_FAILURE_COUNTER_KEY] = count
    return count


def consecutive_failures() -> int:
    return current_app.extensions.get(_FAILURE_COUNTER_KEY, 0)


def record(
    event_type: str,
    actor_id: str | None,
    company_id: str | None = None,
    target_user_id: str | None = None,
    target_email: str | None = None,
    metadata: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent | None:
    """
    Append one security event.

    Returns the stored event, or None when the write failed. Never raises.
    ip_address / user_agent default to the current request's values.
    """
    if ip_address is None and user_agent is None:
        ip_address, user_agent = _client_details()

    event = SecurityEvent(
        user_id=actor_id,
        event_type=event_type,
        company_id=company_id,
        target_user_id=target_user_id,
        target_email=target_email,
        event_metadata=metadata or None,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        failures = _note_failure()
        logger.error(
            "Failed to write security event %s (actor=%s company=%s target=%s)",
            event_type,
            short_id(actor_id),
            short_id(company_id),
            mask_email(target_email),
            exc_info=True,
        )
        threshold = current_app.config.get("AUDIT_FAILURE_ALERT_THRESHOLD", 3)
        if failures >= threshold:
            logger.critical(
                "Security audit log has failed %d consecutive writes; audit trail is incomplete",
                failures,
            )
        return None

    current_app.extensions[_FAILURE_COUNTER_KEY] = 0
    return event


def list_events(
    company_id: str,
    event_type: str | None = None,
    limit: int = 100,
    before_id: int | None = None,
) -> list[SecurityEvent]:
    """
    Audit trail for one company, newest first.

    before_id pages backwards through older events.
    """
    limit = max(1, min(int(limit), 500))

    query = db.session.query(SecurityEvent).filter(SecurityEvent.company_id == company_id)
    if event_type:
        query = query.filter(SecurityEvent.event_type == event_type)
    if before_id is not None:
        query = query.filter(SecurityEvent.id < before_id)

    return query.order_by(SecurityEvent.id.desc()).limit(limit).all()
