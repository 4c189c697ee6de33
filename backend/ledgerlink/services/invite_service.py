# Overview: Accountant invite lifecycle: create, validate, accept, revoke, re-issue OTP, sweep.

"""
Invite Store

WHY: An invite is the only way a new accountant gains access to a company.
It is time-boxed, single use, and gated by an OTP delivered separately.

STATE MACHINE:
    PENDING --accept + valid OTP--> ACCEPTED
    PENDING --expires_at passed (seen at read time)--> EXPIRED
    PENDING --owner revokes--> REVOKED
ACCEPTED, EXPIRED and REVOKED are terminal.

SECURITY:
- Only SHA-256(token) and bcrypt(otp) are stored
- Expiry is evaluated on every read against utcnow(); the stored status
  may lag behind (expire_stale_invites is only a backstop)
- Failed OTP attempts are throttled per invite (throttle_service)

CONCURRENCY:
- Acceptance flips the status with a compare-and-set UPDATE ... WHERE
  status = 'PENDING'. Exactly one caller wins; the loser re-reads the row
  and takes the idempotent path.
- User and membership rows are written with INSERT ... ON CONFLICT, so
  racing acceptances never duplicate them.
"""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    ConflictError,
    InviteExpiredError,
    InviteNotFoundError,
    InviteUsedError,
    NotFoundError,
    OtpExpiredError,
    OtpInvalidError,
    SessionCreationFailedError,
    ValidationError,
)
from ..extensions import db
from ..logging_config import mask_email, short_id
from ..models import AccountantInvite, CompanyMember, User
from ..models.constants import InviteStatus, MemberRole, SecurityEventType, UserRole, new_id
from . import accountant_session_service, audit_service, mail_service, membership_service, otp_service, throttle_service
from .accountant_session_service import AccountantSessionData
from .company_context_service import company_display_name
from .identity_service import normalize_email
from .primary_session_service import generate_token, hash_token
from ledgerlink.time_utils import utcnow


logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")

# Membership role granted by the invite -> role of a user created on acceptance
_USER_ROLE_FOR_MEMBER_ROLE = {
    MemberRole.ACCOUNTANT: UserRole.ACCOUNTANT,
    MemberRole.ACCOUNTANT_VIEW: UserRole.ACCOUNTANT_VIEW,
    MemberRole.ACCOUNTANT_EDIT: UserRole.ACCOUNTANT_EDIT,
    MemberRole.STAFF: UserRole.STAFF,
}


@dataclass
class IssuedInvite:
    """A freshly created invite plus the only copies of its secrets."""
    invite: AccountantInvite
    token: str
    otp_code: str


@dataclass
class InviteValidation:
    valid: bool
    company_id: str
    company_name: str
    email: str
    role: str


@dataclass
class AcceptedInvite:
    user: User
    membership: CompanyMember
    session_data: AccountantSessionData
    session_token: str
    company_name: str
    is_new_user: bool
    already_accepted: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _validate_token(token) -> str:
    if not isinstance(token, str) or not _TOKEN_PATTERN.match(token.strip()):
        raise ValidationError("Invalid invite token")
    return token.strip()


def _validate_otp_code(otp_code) -> str:
    if not isinstance(otp_code, str):
        raise ValidationError("Verification code is required")
    otp_code = otp_code.strip()
    if len(otp_code) != otp_service.OTP_LENGTH or not otp_code.isdigit():
        raise ValidationError("Verification code must be 6 digits")
    return otp_code


def _insert_for_dialect():
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Invite acceptance is not supported on {dialect}")


def effective_status(invite: AccountantInvite) -> str:
    """Stored status, except a PENDING invite past expires_at reads as EXPIRED."""
    if invite.status == InviteStatus.PENDING and invite.expires_at < utcnow():
        return InviteStatus.EXPIRED
    return invite.status


def _find_by_token(token: str) -> AccountantInvite | None:
    return db.session.query(AccountantInvite).filter_by(token_hash=hash_token(token)).first()


def _get_invite(invite_id: str) -> AccountantInvite:
    invite = db.session.get(AccountantInvite, invite_id) if isinstance(invite_id, str) else None
    if invite is None:
        raise InviteNotFoundError()
    return invite


def _raise_for_terminal(status: str) -> None:
    if status == InviteStatus.ACCEPTED:
        raise InviteUsedError()
    if status in (InviteStatus.EXPIRED, InviteStatus.REVOKED):
        raise InviteExpiredError()


def _attempt_key(invite: AccountantInvite) -> str:
    # A re-issued OTP gets a fresh budget of attempts
    issued = invite.otp_expires_at.isoformat() if invite.otp_expires_at else "none"
    return f"otp:{invite.id}:{issued}"


def _check_otp(invite: AccountantInvite, otp_code: str, *, accepted: bool = False) -> None:
    """
    Throttle, then expiry, then the bcrypt compare.

    An ACCEPTED invite is bounded by the invite window instead of the code
    window, so a retry after a failed session issue still gets back in.
    """
    key = _attempt_key(invite)
    throttle_service.ensure_not_limited(key)

    if accepted:
        if invite.expires_at < utcnow():
            raise InviteExpiredError()
    elif otp_service.is_expired(invite):
        raise OtpExpiredError()

    if not otp_service.verify(invite, otp_code):
        used = throttle_service.register_failure(key)
        logger.warning(
            "Invalid OTP for invite %s (%d failed attempts)",
            short_id(invite.id),
            used,
        )
        raise OtpInvalidError(detail={"remainingAttempts": throttle_service.remaining_attempts(key)})


# ---------------------------------------------------------------------------
# Create / list
# ---------------------------------------------------------------------------

def create_invite(
    company_id: str,
    email,
    role: str,
    actor_id: str,
    permissions: dict | None = None,
) -> IssuedInvite:
    """
    Create a PENDING invite for ``email`` on ``company_id``.

    Returns IssuedInvite carrying the plaintext token and OTP; they exist
    nowhere else and must be handed to the mailer by the caller.

    Raises:
    - ValidationError: bad email, role not invitable, bad permissions, self-invite
    - ForbiddenError: actor does not own the company
    - NotFoundError: unknown company
    - ConflictError: already an active member, or a live invite exists
    """
    email = normalize_email(email)
    if role not in MemberRole.INVITABLE:
        raise ValidationError(f"Role cannot be invited: {role}")
    granted = membership_service.resolve_permissions(role, permissions)

    membership_service.require_owner(company_id, actor_id)
    company = db.session.get(User, company_id)
    if company is None:
        raise NotFoundError("Company not found")
    if company.email == email:
        raise ValidationError("You cannot invite yourself")

    existing_user = db.session.query(User).filter_by(email=email).first()
    if existing_user is not None:
        member = membership_service.get_active_membership(company_id, existing_user.id)
        if member is not None:
            raise ConflictError("This person already has access to the company")

    now = utcnow()
    pending = db.session.query(AccountantInvite).filter_by(
        company_id=company_id,
        invited_email=email,
        status=InviteStatus.PENDING,
    ).all()
    for candidate in pending:
        if candidate.expires_at >= now:
            raise ConflictError("A pending invite for this email already exists")
        candidate.status = InviteStatus.EXPIRED

    token = generate_token()
    invite = AccountantInvite(
        id=new_id(),
        company_id=company_id,
        invited_email=email,
        role=role,
        token_hash=hash_token(token),
        status=InviteStatus.PENDING,
        expires_at=now + timedelta(days=current_app.config.get("INVITE_TTL_DAYS", 7)),
        created_by_user_id=actor_id,
        created_at=now,
        **granted,
    )
    otp_code = otp_service.issue(invite)

    db.session.add(invite)
    db.session.commit()

    logger.info("Invite %s created for %s in company %s", short_id(invite.id), mask_email(email), short_id(company_id))
    audit_service.record(
        SecurityEventType.INVITE_CREATED,
        actor_id=actor_id,
        company_id=company_id,
        target_email=email,
        metadata={"invite_id": invite.id, "role": role, "permissions": granted},
    )

    return IssuedInvite(invite=invite, token=token, otp_code=otp_code)


def deliver_invite(issued: IssuedInvite) -> bool:
    """
    Send the link email and the OTP email.

    Delivery failures are logged; the invite stays valid and the owner can
    re-send the code.
    """
    invite = issued.invite
    company_name = company_display_name(invite.company_id)

    link_sent = mail_service.send_invite_link(invite.invited_email, company_name, issued.token)
    otp_sent = mail_service.send_otp(invite.invited_email, company_name, issued.otp_code)
    if not (link_sent and otp_sent):
        logger.error("Invite %s email delivery incomplete (link=%s otp=%s)", short_id(invite.id), link_sent, otp_sent)
    return link_sent and otp_sent


def list_invites(company_id: str, status: str | None = None) -> list[tuple[AccountantInvite, str]]:
    """Invites of a company with their effective status, newest first."""
    invites = db.session.query(AccountantInvite).filter_by(company_id=company_id).order_by(
        AccountantInvite.created_at.desc()
    ).all()

    result = []
    for invite in invites:
        current = effective_status(invite)
        if status is None or current == status:
            result.append((invite, current))
    return result


# ---------------------------------------------------------------------------
# Validate / accept
# ---------------------------------------------------------------------------

def validate_invite(token) -> InviteValidation:
    """
    Read-only check used by the landing page before asking for the OTP.

    Raises ValidationError, InviteNotFoundError, InviteExpiredError or
    InviteUsedError. Says nothing about the OTP.
    """
    token = _validate_token(token)

    invite = _find_by_token(token)
    if invite is None:
        raise InviteNotFoundError()

    _raise_for_terminal(effective_status(invite))

    return InviteValidation(
        valid=True,
        company_id=invite.company_id,
        company_name=company_display_name(invite.company_id),
        email=invite.invited_email,
        role=invite.role,
    )


def _issue_session(user: User, invite: AccountantInvite, user_agent, ip_address) -> tuple[AccountantSessionData, str]:
    try:
        return accountant_session_service.create(
            user_id=user.id,
            email=user.email,
            company_id=invite.company_id,
            role=invite.role,
            user_agent=user_agent,
            ip_address=ip_address,
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(
            "Session creation failed after invite %s was accepted by %s",
            short_id(invite.id),
            short_id(user.id),
        )
        raise SessionCreationFailedError()


def _accept_again(invite: AccountantInvite, otp_code: str, user_agent, ip_address) -> AcceptedInvite:
    """
    Idempotent path for an invite that is already ACCEPTED.

    A retried request with the right code gets a fresh session, provided the
    accepting user still exists and still holds an active membership. The
    code stays good for this until the invite itself expires.
    """
    _check_otp(invite, otp_code, accepted=True)

    user = db.session.get(User, invite.accepted_by_user_id) if invite.accepted_by_user_id else None
    if user is None:
        raise InviteUsedError()

    member = membership_service.get_active_membership(invite.company_id, user.id)
    if member is None:
        raise InviteUsedError()

    session_data, session_token = _issue_session(user, invite, user_agent, ip_address)
    logger.info("Invite %s re-accepted; session refreshed for %s", short_id(invite.id), short_id(user.id))

    return AcceptedInvite(
        user=user,
        membership=member,
        session_data=session_data,
        session_token=session_token,
        company_name=company_display_name(invite.company_id),
        is_new_user=False,
        already_accepted=True,
    )


def _get_or_create_user(email: str, member_role: str) -> tuple[User, bool]:
    insert = _insert_for_dialect()
    stmt = insert(User.__table__).values(
        id=new_id(),
        email=email,
        role=_USER_ROLE_FOR_MEMBER_ROLE.get(member_role, UserRole.ACCOUNTANT),
        email_verified=True,
        onboarding_completed=True,
        is_active=True,
        created_at=utcnow(),
    ).on_conflict_do_nothing(index_elements=["email"])

    result = db.session.execute(stmt)
    user = db.session.query(User).filter_by(email=email).one()
    return user, result.rowcount == 1


def accept_invite(
    token,
    otp_code,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> AcceptedInvite:
    """
    Verify the OTP and turn the invite into a user, a membership and a session.

    Raises:
    - ValidationError: malformed token or code
    - InviteNotFoundError, InviteExpiredError, InviteUsedError
    - RateLimitedError: too many wrong codes for this invite
    - OtpExpiredError: code window passed (even if the code is right)
    - OtpInvalidError: wrong code
    - SessionCreationFailedError: access granted, session not issued
    """
    token = _validate_token(token)
    otp_code = _validate_otp_code(otp_code)

    invite = _find_by_token(token)
    if invite is None:
        raise InviteNotFoundError()

    status = effective_status(invite)
    if status == InviteStatus.ACCEPTED:
        return _accept_again(invite, otp_code, user_agent, ip_address)
    _raise_for_terminal(status)

    _check_otp(invite, otp_code)

    user, is_new_user = _get_or_create_user(invite.invited_email, invite.role)

    now = utcnow()
    claimed = db.session.execute(
        update(AccountantInvite)
        .where(AccountantInvite.id == invite.id, AccountantInvite.status == InviteStatus.PENDING)
        .values(status=InviteStatus.ACCEPTED, accepted_at=now, accepted_by_user_id=user.id)
        .execution_options(synchronize_session=False)
    ).rowcount

    if claimed != 1:
        # Another request accepted (or revoked) this invite first
        db.session.rollback()
        invite = db.session.query(AccountantInvite).filter_by(id=invite.id).populate_existing().one()
        status = effective_status(invite)
        if status == InviteStatus.ACCEPTED:
            return _accept_again(invite, otp_code, user_agent, ip_address)
        _raise_for_terminal(status)
        raise InviteExpiredError()

    member = membership_service.upsert_membership(
        company_id=invite.company_id,
        user_id=user.id,
        role=invite.role,
        permissions={field: getattr(invite, field) for field in membership_service.PERMISSION_FIELDS},
        invited_email=invite.invited_email,
    )
    db.session.commit()
    db.session.refresh(invite)

    logger.info(
        "Invite %s accepted by %s (new_user=%s) for company %s",
        short_id(invite.id),
        short_id(user.id),
        is_new_user,
        short_id(invite.company_id),
    )
    audit_service.record(
        SecurityEventType.INVITE_ACCEPTED,
        actor_id=user.id,
        company_id=invite.company_id,
        target_user_id=user.id,
        target_email=user.email,
        metadata={"invite_id": invite.id, "role": invite.role, "is_new_user": is_new_user},
    )
    audit_service.record(
        SecurityEventType.COMPANY_ACCESS_GRANTED,
        actor_id=invite.created_by_user_id or invite.company_id,
        company_id=invite.company_id,
        target_user_id=user.id,
        target_email=user.email,
        metadata={"source": "invite", "role": member.role, "permissions": membership_service.permissions_of(member)},
    )

    session_data, session_token = _issue_session(user, invite, user_agent, ip_address)

    return AcceptedInvite(
        user=user,
        membership=member,
        session_data=session_data,
        session_token=session_token,
        company_name=company_display_name(invite.company_id),
        is_new_user=is_new_user,
        already_accepted=False,
    )


# ---------------------------------------------------------------------------
# Owner actions and maintenance
# ---------------------------------------------------------------------------

def revoke_invite(invite_id: str, actor_id: str) -> AccountantInvite:
    """PENDING -> REVOKED. Terminal invites raise INVITE_USED / INVITE_EXPIRED."""
    invite = _get_invite(invite_id)
    membership_service.require_owner(invite.company_id, actor_id)

    _raise_for_terminal(effective_status(invite))

    revoked = db.session.execute(
        update(AccountantInvite)
        .where(AccountantInvite.id == invite.id, AccountantInvite.status == InviteStatus.PENDING)
        .values(status=InviteStatus.REVOKED, revoked_at=utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    db.session.commit()

    invite = db.session.query(AccountantInvite).filter_by(id=invite.id).populate_existing().one()
    if revoked != 1:
        _raise_for_terminal(invite.status)

    audit_service.record(
        SecurityEventType.INVITE_REVOKED,
        actor_id=actor_id,
        company_id=invite.company_id,
        target_email=invite.invited_email,
        metadata={"invite_id": invite.id},
    )
    return invite


def reissue_otp(invite_id: str, actor_id: str) -> tuple[AccountantInvite, str]:
    """
    Replace the OTP of a live PENDING invite and open a new code window.

    Returns (invite, plaintext_code). The previous code stops working.
    """
    invite = _get_invite(invite_id)
    membership_service.require_owner(invite.company_id, actor_id)

    _raise_for_terminal(effective_status(invite))

    code = otp_service.issue(invite)
    db.session.commit()

    audit_service.record(
        SecurityEventType.INVITE_OTP_REISSUED,
        actor_id=actor_id,
        company_id=invite.company_id,
        target_email=invite.invited_email,
        metadata={"invite_id": invite.id},
    )
    return invite, code


def deliver_otp(invite: AccountantInvite, code: str) -> bool:
    sent = mail_service.send_otp(invite.invited_email, company_display_name(invite.company_id), code)
    if not sent:
        logger.error("OTP email for invite %s could not be delivered", short_id(invite.id))
    return sent


def expire_stale_invites() -> int:
    """Mark PENDING invites past expires_at as EXPIRED. Returns the count."""
    count = db.session.execute(
        update(AccountantInvite)
        .where(AccountantInvite.status == InviteStatus.PENDING, AccountantInvite.expires_at < utcnow())
        .values(status=InviteStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.session.commit()
    return count
