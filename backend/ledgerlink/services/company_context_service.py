# Overview: Turns a resolved session into one authorized tenant scope.

"""
Company-Context Resolver

WHY: Every data access is scoped to exactly one company. This is the single
place that decides which company that is for the current request, and with
which permission vector.

RULES:
- Primary session, nothing requested: the company chosen with the
  active-company switcher (re-validated on every request), else the
  user's own company with full permissions.
- Requested company: granted by ownership (company_id == user_id) or an
  ACTIVE membership. Anything else is NO_ACCESS, audited and logged.
  Never a silent fallback to the caller's own company.
- Accountant session: always the company bound to the session. A request
  for any other company is NO_ACCESS. Permissions are re-read from the
  live membership row on each request.

The active-company cookie is signed (itsdangerous) and bound to the user
who set it. Tampered, foreign or stale values are treated as "no choice".
"""

import logging
import re
from dataclasses import dataclass, field

from flask import current_app
from itsdangerous import BadSignature, URLSafeSerializer

from ..cookies import ACTIVE_COMPANY_COOKIE, clear_cookie, read_cookie, set_cookie
from ..errors import NoAccessError, NotAuthenticatedError, ValidationError
from ..extensions import db
from ..logging_config import short_id
from ..models import CompanyProfile, User
from ..models.constants import MemberRole, SecurityEventType
from . import audit_service, membership_service
from .session_resolver import AccountantSession, PrimarySession


logger = logging.getLogger(__name__)

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$"
)

FULL_PERMISSIONS = {"can_read": True, "can_edit": True, "can_export": True, "can_btw": True}


@dataclass(frozen=True)
class CompanyContext:
    active_company_id: str
    role: str
    is_owner: bool
    user_id: str
    permissions: dict = field(default_factory=dict)

    def can(self, capability: str) -> bool:
        return bool(self.permissions.get(f"can_{capability}", False))

    def to_dict(self) -> dict:
        return {
            "activeCompanyId": self.active_company_id,
            "role": self.role,
            "isOwner": self.is_owner,
            "permissions": {
                "canRead": self.can("read"),
                "canEdit": self.can("edit"),
                "canExport": self.can("export"),
                "canBtw": self.can("btw"),
            },
        }


def validate_company_id(value) -> str:
    """Shape check for company ids; raises ValidationError before any lookup."""
    if not isinstance(value, str) or not _UUID_PATTERN.match(value.strip().lower()):
        raise ValidationError("Invalid company id")
    return value.strip().lower()


def company_display_name(company_id: str) -> str:
    profile = db.session.get(CompanyProfile, company_id)
    if profile is not None and profile.company_name:
        return profile.company_name
    owner = db.session.get(User, company_id)
    return owner.email if owner is not None else "Unknown company"


def _serializer() -> URLSafeSerializer:
    return URLSafeSerializer(current_app.config["SECRET_KEY"], salt="active-company")


def _read_active_company(user_id: str) -> str | None:
    raw = read_cookie(ACTIVE_COMPANY_COOKIE)
    if raw is None:
        return None

    try:
        payload = _serializer().loads(raw)
    except BadSignature:
        logger.warning("Ignoring active-company cookie with a bad signature")
        clear_cookie(ACTIVE_COMPANY_COOKIE)
        return None

    if not isinstance(payload, dict) or payload.get("u") != user_id:
        clear_cookie(ACTIVE_COMPANY_COOKIE)
        return None

    company_id = payload.get("c")
    if not isinstance(company_id, str) or not _UUID_PATTERN.match(company_id):
        clear_cookie(ACTIVE_COMPANY_COOKIE)
        return None
    return company_id


def _deny(session, requested_company_id: str, reason: str) -> NoAccessError:
    logger.warning(
        "Company access denied: user=%s requested=%s reason=%s",
        short_id(session.user_id),
        short_id(requested_company_id),
        reason,
    )
    audit_service.record(
        SecurityEventType.COMPANY_ACCESS_DENIED,
        actor_id=session.user_id,
        company_id=requested_company_id,
        target_user_id=session.user_id,
        target_email=session.email,
        metadata={
            "reason": reason,
            "session_kind": "accountant" if session.is_accountant_session else "primary",
        },
    )
    return NoAccessError()


def _owner_context(user_id: str) -> CompanyContext:
    return CompanyContext(
        active_company_id=user_id,
        role=MemberRole.OWNER,
        is_owner=True,
        user_id=user_id,
        permissions=dict(FULL_PERMISSIONS),
    )


def _member_context(member) -> CompanyContext:
    return CompanyContext(
        active_company_id=member.company_id,
        role=member.role,
        is_owner=False,
        user_id=member.user_id,
        permissions=membership_service.permissions_of(member),
    )


def _accountant_context(session: AccountantSession, requested_company_id: str | None) -> CompanyContext:
    if requested_company_id is not None and requested_company_id != session.company_id:
        raise _deny(session, requested_company_id, "accountant session bound to another company")

    member = membership_service.get_active_membership(session.company_id, session.user_id)
    if member is None:
        raise _deny(session, session.company_id, "membership missing or suspended")
    return _member_context(member)


def _primary_context(session: PrimarySession, requested_company_id: str | None) -> CompanyContext:
    user_id = session.user_id

    if requested_company_id is None:
        chosen = _read_active_company(user_id)
        if chosen is None or chosen == user_id:
            return _owner_context(user_id)

        member = membership_service.get_active_membership(chosen, user_id)
        if member is not None:
            return _member_context(member)

        # The switcher choice was valid once; access has since been revoked
        logger.warning(
            "Stale active-company cookie for user=%s company=%s; using own company",
            short_id(user_id),
            short_id(chosen),
        )
        clear_cookie(ACTIVE_COMPANY_COOKIE)
        return _owner_context(user_id)

    if requested_company_id == user_id:
        return _owner_context(user_id)

    member = membership_service.get_active_membership(requested_company_id, user_id)
    if member is None:
        raise _deny(session, requested_company_id, "no ownership or active membership")
    return _member_context(member)


def require_company_context(session, requested_company_id=None) -> CompanyContext:
    """
    Resolve the tenant scope for ``session``.

    Raises:
    - NotAuthenticatedError: no session
    - ValidationError: requested_company_id is not a well-formed id
    - NoAccessError: the session may not act on the requested company
    """
    if session is None:
        raise NotAuthenticatedError()

    if requested_company_id in (None, ""):
        requested_company_id = None
    else:
        requested_company_id = validate_company_id(requested_company_id)

    if isinstance(session, AccountantSession):
        return _accountant_context(session, requested_company_id)
    return _primary_context(session, requested_company_id)


def set_active_company(session, company_id) -> CompanyContext:
    """
    Switch the caller's active company.

    Access is validated first; only then is the signed cookie written.
    """
    company_id = validate_company_id(company_id)
    context = require_company_context(session, company_id)

    value = _serializer().dumps({"u": session.user_id, "c": company_id})
    set_cookie(ACTIVE_COMPANY_COOKIE, value, max_age=current_app.config["ACTIVE_COMPANY_COOKIE_MAX_AGE"])

    audit_service.record(
        SecurityEventType.ACTIVE_COMPANY_CHANGED,
        actor_id=session.user_id,
        company_id=company_id,
        target_user_id=session.user_id,
        metadata={"role": context.role, "is_owner": context.is_owner},
    )
    return context


def clear_active_company() -> None:
    clear_cookie(ACTIVE_COMPANY_COOKIE)


def list_accessible_companies(session) -> list[dict]:
    """Companies the caller may switch to, own company first."""
    if session is None:
        raise NotAuthenticatedError()

    if isinstance(session, AccountantSession):
        member = membership_service.get_active_membership(session.company_id, session.user_id)
        if member is None:
            return []
        members = [member]
        companies = []
    else:
        members = membership_service.list_active_memberships(session.user_id)
        companies = [{
            "companyId": session.user_id,
            "companyName": company_display_name(session.user_id),
            "role": MemberRole.OWNER,
            "isOwner": True,
        }]

    for member in members:
        if member.company_id == session.user_id:
            continue
        companies.append({
            "companyId": member.company_id,
            "companyName": company_display_name(member.company_id),
            "role": member.role,
            "isOwner": False,
        })
    return companies
