from __future__ import annotations

from ..extensions import db
from ledgerlink.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log.

    Records every privilege-relevant transition: invites created/accepted,
    accountant sessions created/deleted, company access granted/revoked,
    exports and reviews.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_company_occurred", "company_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Actor; nullable for pre-auth events (e.g. failed OTP on a public endpoint)
    user_id = db.Column(db.String(36), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)

    company_id = db.Column(db.String(36), nullable=True, index=True)
    target_user_id = db.Column(db.String(36), nullable=True)
    target_email = db.Column(db.String(255), nullable=True)

    # Non-user subject of the event, e.g. the invite an OTP attempt targeted
    subject_id = db.Column(db.String(128), nullable=True, index=True)

    # "metadata" is reserved on declarative classes
    event_metadata = db.Column("metadata", db.JSON, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "company_id": self.company_id,
            "target_user_id": self.target_user_id,
            "target_email": self.target_email,
            "subject_id": self.subject_id,
            "metadata": self.event_metadata or {},
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
