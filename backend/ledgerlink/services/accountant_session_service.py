# Overview: Cookie-bound sessions for accountants who signed in through an invite.

"""
Accountant Session Store

WHY: Accountants who accept an invite never go through the primary login.
They get their own session, bound at creation to exactly one company, and
carried in the HttpOnly ``accountant-session`` cookie.

SECURITY FEATURES:
- 256-bit random token; only its SHA-256 is stored
- 30-day absolute lifetime (ACCOUNTANT_SESSION_TTL_DAYS)
- Expired rows are deleted the moment they are presented, and the cookie
  is cleared; an expired session is never returned
- Malformed or unknown cookies are cleared on the response
- last_access_at is committed on every successful read
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app, has_request_context, request

from ..cookies import ACCOUNTANT_SESSION_COOKIE, clear_cookie, read_cookie, set_cookie
from ..errors import NotAuthenticatedError
from ..extensions import db
from ..logging_config import short_id
from ..models import AccountantSessionToken
from ..models.constants import SecurityEventType
from . import audit_service
from .primary_session_service import generate_token, hash_token
from ledgerlink.time_utils import utcnow


logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class AccountantSessionData:
    session_id: str
    user_id: str
    email: str
    company_id: str
    role: str
    expires_at: datetime

    @classmethod
    def from_record(cls, record: AccountantSessionToken) -> "AccountantSessionData":
        return cls(
            session_id=record.id,
            user_id=record.user_id,
            email=record.email,
            company_id=record.company_id,
            role=record.role,
            expires_at=record.expires_at,
        )


def _ttl() -> timedelta:
    return timedelta(days=current_app.config.get("ACCOUNTANT_SESSION_TTL_DAYS", 30))


def _is_well_formed(token: str | None) -> bool:
    return bool(token) and bool(_TOKEN_PATTERN.match(token))


def create(
    user_id: str,
    email: str,
    company_id: str,
    role: str,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[AccountantSessionData, str]:
    """
    Persist a new session and set the cookie on the current response.

    Returns (session_data, plaintext_token). The row is committed before
    the cookie is scheduled, so a cookie never points at an uncommitted row.
    """
    token = generate_token()
    now = utcnow()
    ttl = _ttl()

    if has_request_context():
        user_agent = user_agent or request.headers.get("User-Agent")
        ip_address = ip_address or request.remote_addr

    record = AccountantSessionToken(
        token_hash=hash_token(token),
        user_id=user_id,
        email=email,
        company_id=company_id,
        role=role,
        created_at=now,
        last_access_at=now,
        expires_at=now + ttl,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    db.session.add(record)
    db.session.commit()

    set_cookie(ACCOUNTANT_SESSION_COOKIE, token, max_age=int(ttl.total_seconds()))

    logger.info("Accountant session created for %s in company %s", short_id(user_id), short_id(company_id))
    audit_service.record(
        SecurityEventType.ACCOUNTANT_SESSION_CREATED,
        actor_id=user_id,
        company_id=company_id,
        target_user_id=user_id,
        target_email=email,
        metadata={"role": role, "expires_at": record.expires_at.isoformat()},
    )

    return AccountantSessionData.from_record(record), token


def lookup(token: str | None) -> AccountantSessionData | None:
    """
    Resolve a raw token to live session data.

    Expired rows are deleted as a side effect. Does not touch cookies.
    """
    if not _is_well_formed(token):
        return None

    record = db.session.query(AccountantSessionToken).filter_by(token_hash=hash_token(token)).first()
    if record is None:
        logger.info("Accountant session invalid: not found")
        return None

    now = utcnow()
    if record.expires_at < now:
        logger.info(
            "Accountant session invalid: expired at %s (user=%s)",
            record.expires_at.isoformat(),
            short_id(record.user_id),
        )
        db.session.delete(record)
        db.session.commit()
        return None

    record.last_access_at = now
    db.session.commit()

    return AccountantSessionData.from_record(record)


def get() -> AccountantSessionData | None:
    """Session for the current request's cookie, or None (clearing a dead cookie)."""
    token = read_cookie(ACCOUNTANT_SESSION_COOKIE)
    if token is None:
        return None

    data = lookup(token)
    if data is None:
        clear_cookie(ACCOUNTANT_SESSION_COOKIE)
    return data


def require() -> AccountantSessionData:
    data = get()
    if data is None:
        raise NotAuthenticatedError(
            "No accountant session found. Use the invite link to sign in.",
            detail={"reason": "NO_SESSION"},
        )
    return data


def _delete_by_token(token: str, reason: str) -> bool:
    record = db.session.query(AccountantSessionToken).filter_by(token_hash=hash_token(token)).first()
    if record is None:
        return False

    # The event is written while the row still exists
    audit_service.record(
        SecurityEventType.ACCOUNTANT_SESSION_DELETED,
        actor_id=record.user_id,
        company_id=record.company_id,
        target_user_id=record.user_id,
        target_email=record.email,
        metadata={"reason": reason, "session_id": record.id},
    )
    db.session.delete(record)
    db.session.commit()
    return True


def delete() -> bool:
    """
    Log out the current accountant session.

    Idempotent: a missing or unknown cookie still results in a cleared
    cookie and no error. Returns True when a row was deleted.
    """
    token = read_cookie(ACCOUNTANT_SESSION_COOKIE)
    deleted = False
    if _is_well_formed(token):
        deleted = _delete_by_token(token, reason="logout")
    clear_cookie(ACCOUNTANT_SESSION_COOKIE)
    return deleted


def clear_on_primary_login() -> None:
    """A primary login supersedes a lingering accountant session in the same browser."""
    token = read_cookie(ACCOUNTANT_SESSION_COOKIE)
    if token is None:
        return

    logger.info("Clearing accountant session on primary login")
    if _is_well_formed(token):
        _delete_by_token(token, reason="primary_login")
    clear_cookie(ACCOUNTANT_SESSION_COOKIE)


def delete_for_member(company_id: str, user_id: str) -> int:
    """Remove every session a user holds for one company (not committed)."""
    return db.session.query(AccountantSessionToken).filter_by(
        company_id=company_id, user_id=user_id
    ).delete(synchronize_session=False)


def cleanup_expired() -> int:
    """Bulk delete sessions past expires_at. Returns the count removed."""
    deleted = db.session.query(AccountantSessionToken).filter(
        AccountantSessionToken.expires_at < utcnow()
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
