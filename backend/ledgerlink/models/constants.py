"""
String constants stored in role/status/event columns.

Values are plain strings so rows stay readable in SQL and in the audit log.
"""

from __future__ import annotations

import uuid


def new_id() -> str:
    """Opaque primary key for users, companies and memberships."""
    return str(uuid.uuid4())


class UserRole:
    SUPERADMIN = "SUPERADMIN"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    STAFF = "STAFF"
    ACCOUNTANT = "ACCOUNTANT"
    ACCOUNTANT_VIEW = "ACCOUNTANT_VIEW"
    ACCOUNTANT_EDIT = "ACCOUNTANT_EDIT"

    ALL = frozenset({SUPERADMIN, COMPANY_ADMIN, STAFF, ACCOUNTANT, ACCOUNTANT_VIEW, ACCOUNTANT_EDIT})
    ACCOUNTANT_ROLES = frozenset({ACCOUNTANT, ACCOUNTANT_VIEW, ACCOUNTANT_EDIT})


class MemberRole:
    OWNER = "OWNER"
    STAFF = "STAFF"
    ACCOUNTANT = "ACCOUNTANT"
    ACCOUNTANT_VIEW = "ACCOUNTANT_VIEW"
    ACCOUNTANT_EDIT = "ACCOUNTANT_EDIT"

    ALL = frozenset({OWNER, STAFF, ACCOUNTANT, ACCOUNTANT_VIEW, ACCOUNTANT_EDIT})
    INVITABLE = frozenset({STAFF, ACCOUNTANT, ACCOUNTANT_VIEW, ACCOUNTANT_EDIT})
    ACCOUNTANT_ROLES = frozenset({ACCOUNTANT, ACCOUNTANT_VIEW, ACCOUNTANT_EDIT})


class MemberStatus:
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"

    ALL = frozenset({ACTIVE, SUSPENDED})


class InviteStatus:
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"

    TERMINAL = frozenset({ACCEPTED, EXPIRED, REVOKED})


class SecurityEventType:
    INVITE_CREATED = "INVITE_CREATED"
    INVITE_ACCEPTED = "INVITE_ACCEPTED"
    INVITE_REVOKED = "INVITE_REVOKED"
    INVITE_OTP_REISSUED = "INVITE_OTP_REISSUED"
    OTP_FAILED = "OTP_FAILED"
    ACCOUNTANT_SESSION_CREATED = "ACCOUNTANT_SESSION_CREATED"
    ACCOUNTANT_SESSION_DELETED = "ACCOUNTANT_SESSION_DELETED"
    COMPANY_ACCESS_GRANTED = "COMPANY_ACCESS_GRANTED"
    COMPANY_ACCESS_REVOKED = "COMPANY_ACCESS_REVOKED"
    COMPANY_ACCESS_DENIED = "COMPANY_ACCESS_DENIED"
    COMPANY_PERMISSIONS_CHANGED = "COMPANY_PERMISSIONS_CHANGED"
    ACTIVE_COMPANY_CHANGED = "ACTIVE_COMPANY_CHANGED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DATA_EXPORTED = "DATA_EXPORTED"
    ACCOUNTANT_MARK_REVIEWED = "ACCOUNTANT_MARK_REVIEWED"
    ACCOUNTANT_GENERATE_REPORT = "ACCOUNTANT_GENERATE_REPORT"
