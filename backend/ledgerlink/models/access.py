from __future__ import annotations

from ..extensions import db
from ledgerlink.time_utils import to_utc_z
from .constants import new_id, MemberStatus, InviteStatus


class CompanyMember(db.Model):
    """
    Binding of a principal to a tenant with a role and permission vector.

    INVARIANT: at most one row per (company_id, user_id). Writes go through
    membership_service.upsert_membership, which uses INSERT ... ON CONFLICT
    so concurrent invite acceptance and admin linking cannot duplicate rows.

    Hard-deleted only on explicit revoke.
    """
    __tablename__ = "company_members"
    __table_args__ = (
        db.UniqueConstraint("company_id", "user_id", name="uq_company_members_company_user"),
        db.Index("ix_company_members_user_status", "user_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    # Tenant key: the owning user's id
    company_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)

    role = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=MemberStatus.ACTIVE)

    # Permission vector
    can_read = db.Column(db.Boolean, nullable=False, default=True)
    can_edit = db.Column(db.Boolean, nullable=False, default=False)
    can_export = db.Column(db.Boolean, nullable=False, default=False)
    can_btw = db.Column(db.Boolean, nullable=False, default=False)

    invited_email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False)

    user = db.relationship("User", foreign_keys=[user_id])
    company = db.relationship("User", foreign_keys=[company_id])

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "user_id": self.user_id,
            "role": self.role,
            "status": self.status,
            "permissions": {
                "can_read": self.can_read,
                "can_edit": self.can_edit,
                "can_export": self.can_export,
                "can_btw": self.can_btw,
            },
            "invited_email": self.invited_email,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AccountantInvite(db.Model):
    """
    Time-boxed, single-use grant of future membership, gated by an OTP.

    STATE MACHINE: PENDING -> ACCEPTED | EXPIRED | REVOKED. Terminal states
    never transition. A PENDING row past expires_at is reported as EXPIRED
    at read time even before the sweep updates the column.

    SECURITY: only SHA-256(token) and bcrypt(otp) are stored.
    """
    __tablename__ = "accountant_invites"
    __table_args__ = (
        db.Index("ix_accountant_invites_company_email", "company_id", "invited_email"),
        db.Index("ix_accountant_invites_status_expires", "status", "expires_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)

    invited_email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(32), nullable=False)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    otp_hash = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=InviteStatus.PENDING)

    expires_at = db.Column(db.DateTime, nullable=False)
    otp_expires_at = db.Column(db.DateTime, nullable=True)
    accepted_at = db.Column(db.DateTime, nullable=True)
    accepted_by_user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    revoked_at = db.Column(db.DateTime, nullable=True)
    created_by_user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)

    # Permission vector granted on acceptance
    can_read = db.Column(db.Boolean, nullable=False, default=True)
    can_edit = db.Column(db.Boolean, nullable=False, default=False)
    can_export = db.Column(db.Boolean, nullable=False, default=False)
    can_btw = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False)

    company = db.relationship("User", foreign_keys=[company_id])
    accepted_by = db.relationship("User", foreign_keys=[accepted_by_user_id])

    def to_dict(self, effective_status: str | None = None) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "invited_email": self.invited_email,
            "role": self.role,
            "status": effective_status or self.status,
            "expires_at": to_utc_z(self.expires_at),
            "accepted_at": to_utc_z(self.accepted_at),
            "revoked_at": to_utc_z(self.revoked_at),
            "permissions": {
                "can_read": self.can_read,
                "can_edit": self.can_edit,
                "can_export": self.can_export,
                "can_btw": self.can_btw,
            },
            "created_at": to_utc_z(self.created_at),
        }


class AccountantSessionToken(db.Model):
    """
    Cookie-bound session for principals who authenticated by accepting an
    invite. Parallel to, and never conflated with, SessionToken.

    The tenant (company_id) is fixed when the session is created and is
    not client-controlled afterwards.
    """
    __tablename__ = "accountant_sessions"
    __table_args__ = (
        db.Index("ix_accountant_sessions_user_company", "user_id", "company_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    # SHA-256 of the cookie value; the cookie carries only the raw token
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    company_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False)
    last_access_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "company_id": self.company_id,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
            "last_access_at": to_utc_z(self.last_access_at),
            "expires_at": to_utc_z(self.expires_at),
        }
