# Overview: Company membership store: role defaults, atomic upsert, link, update, revoke.

"""
Company Membership Service

WHY: A CompanyMember row is the only thing that lets a non-owner act on a
company's data. Every grant, change and removal of such a row goes through
here so the audit trail and the session cleanup cannot be skipped.

CONCURRENCY: upsert_membership issues a single dialect-level
INSERT ... ON CONFLICT (company_id, user_id) DO UPDATE. Two requests
racing to create the same membership (invite acceptance vs admin link,
or a double-clicked accept) converge on one row instead of failing on the
unique constraint.
"""

import logging

from sqlalchemy.dialects import postgresql, sqlite

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..logging_config import short_id
from ..models import CompanyMember, User
from ..models.constants import MemberRole, MemberStatus, UserRole, SecurityEventType, new_id
from . import accountant_session_service, audit_service
from .identity_service import normalize_email
from ledgerlink.time_utils import utcnow


logger = logging.getLogger(__name__)


PERMISSION_FIELDS = ("can_read", "can_edit", "can_export", "can_btw")

# Default permission vector per membership role
ROLE_PERMISSIONS = {
    MemberRole.OWNER: {"can_read": True, "can_edit": True, "can_export": True, "can_btw": True},
    MemberRole.ACCOUNTANT_VIEW: {"can_read": True, "can_edit": False, "can_export": True, "can_btw": False},
    MemberRole.ACCOUNTANT_EDIT: {"can_read": True, "can_edit": True, "can_export": True, "can_btw": True},
    MemberRole.ACCOUNTANT: {"can_read": True, "can_edit": True, "can_export": True, "can_btw": False},
    MemberRole.STAFF: {"can_read": True, "can_edit": True, "can_export": False, "can_btw": False},
}

# Linking an existing accountant grants read-only access unless told otherwise
LINK_DEFAULT_PERMISSIONS = {"can_read": True, "can_edit": False, "can_export": False, "can_btw": False}


def default_permissions(role: str) -> dict:
    if role not in ROLE_PERMISSIONS:
        raise ValidationError(f"Unknown role: {role}")
    return dict(ROLE_PERMISSIONS[role])


def parse_permission_overrides(raw) -> dict:
    """
    Validate a client-supplied permission dict.

    Accepts both "can_read" and "canRead" spellings; values must be booleans.
    Unknown keys are rejected rather than ignored.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("permissions must be an object")

    aliases = {
        "canRead": "can_read",
        "canEdit": "can_edit",
        "canExport": "can_export",
        "canBtw": "can_btw",
        "canBTW": "can_btw",
    }

    parsed = {}
    for key, value in raw.items():
        field = aliases.get(key, key)
        if field not in PERMISSION_FIELDS:
            raise ValidationError(f"Unknown permission: {key}")
        if not isinstance(value, bool):
            raise ValidationError(f"Permission {key} must be true or false")
        parsed[field] = value
    return parsed


def resolve_permissions(role: str, overrides: dict | None = None) -> dict:
    """Role defaults with explicit overrides applied on top."""
    permissions = default_permissions(role)
    permissions.update(parse_permission_overrides(overrides))
    return permissions


def permissions_of(member: CompanyMember) -> dict:
    return {field: bool(getattr(member, field)) for field in PERMISSION_FIELDS}


def _insert_for_dialect():
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Membership upsert is not supported on {dialect}")


def upsert_membership(
    company_id: str,
    user_id: str,
    role: str,
    permissions: dict,
    invited_email: str | None = None,
    update_on_conflict: dict | None = None,
) -> CompanyMember:
    """
    Create or update the (company_id, user_id) membership in one statement.

    On conflict the row becomes ACTIVE and takes the given role and
    permissions, unless ``update_on_conflict`` names the exact columns to
    overwrite instead. Does not commit; the caller owns the transaction.
    """
    now = utcnow()
    table = CompanyMember.__table__
    insert = _insert_for_dialect()

    values = {
        "id": new_id(),
        "company_id": company_id,
        "user_id": user_id,
        "role": role,
        "status": MemberStatus.ACTIVE,
        "invited_email": invited_email,
        "created_at": now,
        "updated_at": now,
    }
    values.update({field: bool(permissions.get(field, False)) for field in PERMISSION_FIELDS})

    stmt = insert(table).values(**values)

    if update_on_conflict is None:
        update_on_conflict = {"role": role, **{field: values[field] for field in PERMISSION_FIELDS}}
    set_ = dict(update_on_conflict)
    set_["status"] = MemberStatus.ACTIVE
    set_["updated_at"] = now
    if invited_email is not None:
        set_["invited_email"] = invited_email

    stmt = stmt.on_conflict_do_update(index_elements=["company_id", "user_id"], set_=set_)
    db.session.execute(stmt)

    return db.session.query(CompanyMember).filter_by(
        company_id=company_id, user_id=user_id
    ).populate_existing().one()


def get_membership(company_id: str, user_id: str) -> CompanyMember | None:
    return db.session.query(CompanyMember).filter_by(company_id=company_id, user_id=user_id).first()


def get_active_membership(company_id: str, user_id: str) -> CompanyMember | None:
    return db.session.query(CompanyMember).filter_by(
        company_id=company_id, user_id=user_id, status=MemberStatus.ACTIVE
    ).first()


def list_members(company_id: str) -> list[CompanyMember]:
    return db.session.query(CompanyMember).filter_by(company_id=company_id).order_by(
        CompanyMember.created_at.asc()
    ).all()


def list_active_memberships(user_id: str) -> list[CompanyMember]:
    return db.session.query(CompanyMember).filter_by(
        user_id=user_id, status=MemberStatus.ACTIVE
    ).order_by(CompanyMember.created_at.asc()).all()


def is_accountant(user: User) -> bool:
    """Accountant by user role, or by holding any accountant membership."""
    if user.role in UserRole.ACCOUNTANT_ROLES:
        return True
    return db.session.query(CompanyMember).filter(
        CompanyMember.user_id == user.id,
        CompanyMember.role.in_(MemberRole.ACCOUNTANT_ROLES),
    ).first() is not None


def require_owner(company_id: str, actor_id: str) -> None:
    """Only the company owner manages its memberships."""
    if actor_id != company_id:
        raise ForbiddenError("Only the company owner can manage access")


def _require_company(company_id: str) -> User:
    company = db.session.get(User, company_id)
    if company is None:
        raise NotFoundError("Company not found")
    return company


def link_accountant(
    company_id: str,
    accountant_email,
    actor_id: str,
    permissions: dict | None = None,
) -> CompanyMember:
    """
    Grant an existing accountant user access to the company.

    Raises:
    - ValidationError: malformed email, user is not an accountant, self-link
    - NotFoundError: no user with that email, or unknown company
    - ForbiddenError: actor does not own the company
    """
    email = normalize_email(accountant_email)
    require_owner(company_id, actor_id)
    _require_company(company_id)

    accountant = db.session.query(User).filter_by(email=email).first()
    if accountant is None:
        raise NotFoundError("Accountant user not found")
    if accountant.id == company_id:
        raise ValidationError("You cannot link your own account")
    if not is_accountant(accountant):
        raise ValidationError("User is not an accountant")

    overrides = parse_permission_overrides(permissions)
    if overrides:
        granted = dict(LINK_DEFAULT_PERMISSIONS, **overrides)
        on_conflict = dict(overrides)
    else:
        granted = dict(LINK_DEFAULT_PERMISSIONS)
        on_conflict = {"can_read": True}

    member = upsert_membership(
        company_id=company_id,
        user_id=accountant.id,
        role=MemberRole.ACCOUNTANT,
        permissions=granted,
        invited_email=email,
        update_on_conflict=on_conflict,
    )
    db.session.commit()

    logger.info("Accountant %s linked to company %s", short_id(accountant.id), short_id(company_id))
    audit_service.record(
        SecurityEventType.COMPANY_ACCESS_GRANTED,
        actor_id=actor_id,
        company_id=company_id,
        target_user_id=accountant.id,
        target_email=email,
        metadata={"source": "link", "role": member.role, "permissions": permissions_of(member)},
    )
    return member


def update_membership(
    company_id: str,
    user_id: str,
    actor_id: str,
    permissions: dict | None = None,
    status: str | None = None,
) -> CompanyMember:
    """Change the permission vector and/or ACTIVE/SUSPENDED status of a membership."""
    require_owner(company_id, actor_id)

    overrides = parse_permission_overrides(permissions)
    if status is not None and status not in MemberStatus.ALL:
        raise ValidationError(f"Invalid status: {status}")
    if not overrides and status is None:
        raise ValidationError("Nothing to update")

    member = get_membership(company_id, user_id)
    if member is None:
        raise NotFoundError("Membership not found")

    before = {**permissions_of(member), "status": member.status}
    for field, value in overrides.items():
        setattr(member, field, value)
    if status is not None:
        member.status = status
    member.updated_at = utcnow()
    db.session.commit()

    audit_service.record(
        SecurityEventType.COMPANY_PERMISSIONS_CHANGED,
        actor_id=actor_id,
        company_id=company_id,
        target_user_id=user_id,
        target_email=member.invited_email,
        metadata={"before": before, "after": {**permissions_of(member), "status": member.status}},
    )
    return member


def revoke_membership(company_id: str, user_id: str, actor_id: str) -> int:
    """
    Remove a membership and every accountant session bound to it.

    Returns the number of sessions deleted.
    """
    require_owner(company_id, actor_id)

    member = get_membership(company_id, user_id)
    if member is None:
        raise NotFoundError("Membership not found")
    if member.role == MemberRole.OWNER:
        raise ValidationError("The owner membership cannot be revoked")

    email = member.invited_email
    db.session.delete(member)
    deleted_sessions = accountant_session_service.delete_for_member(company_id, user_id)
    db.session.commit()

    logger.info(
        "Membership of %s in company %s revoked (%d sessions ended)",
        short_id(user_id),
        short_id(company_id),
        deleted_sessions,
    )
    audit_service.record(
        SecurityEventType.COMPANY_ACCESS_REVOKED,
        actor_id=actor_id,
        company_id=company_id,
        target_user_id=user_id,
        target_email=email,
        metadata={"sessions_deleted": deleted_sessions},
    )
    return deleted_sessions
