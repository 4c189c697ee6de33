from __future__ import annotations

from ..extensions import db
from ledgerlink.time_utils import to_utc_z
from .constants import new_id, UserRole


class User(db.Model):
    """
    A single human identity, independent of any tenant.

    TENANCY: a company is keyed by its owner's user id (company_id == owner id),
    so every COMPANY_ADMIN user is also the tenant key for their own data.

    Accountants created through invite acceptance are minimal rows:
    auto-verified, onboarding skipped, no password.
    """
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    # Stored normalized (trimmed, lowercase) so uniqueness is case-insensitive
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    role = db.Column(db.String(32), nullable=False, default=UserRole.COMPANY_ADMIN)

    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    onboarding_completed = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    profile = db.relationship("CompanyProfile", back_populates="owner", uselist=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "email_verified": self.email_verified,
            "onboarding_completed": self.onboarding_completed,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CompanyProfile(db.Model):
    """Display data for the company owned by ``user_id``."""
    __tablename__ = "company_profiles"

    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), primary_key=True)
    company_name = db.Column(db.String(255), nullable=False)

    owner = db.relationship("User", back_populates="profile")

    def to_dict(self) -> dict:
        return {"company_id": self.user_id, "company_name": self.company_name}


class SessionToken(db.Model):
    """
    Primary bearer session issued by the main login system.

    This is the primary identity mechanism; accountant sessions live in
    ``accountant_sessions`` and are never read through this table.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout, 2-hour idle timeout
    - Revocable on logout or suspicious activity
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime, nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
        }
