from __future__ import annotations

from ..extensions import db
from ledgerlink.time_utils import to_utc_z


class ReviewMark(db.Model):
    """
    An accountant's "reviewed" mark on a company's invoice or expense.

    Only the reference is stored; the business record itself lives in the
    bookkeeping tables owned by the company.
    """
    __tablename__ = "review_marks"
    __table_args__ = (
        db.UniqueConstraint("company_id", "item_type", "item_id", name="uq_review_marks_item"),
        {"sqlite_autoincrement": True},
    )

    ITEM_TYPES = frozenset({"invoice", "expense"})

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    item_type = db.Column(db.String(16), nullable=False)
    item_id = db.Column(db.String(64), nullable=False)
    reviewed_by_user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    reviewed_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "reviewed_by_user_id": self.reviewed_by_user_id,
            "reviewed_at": to_utc_z(self.reviewed_at),
        }
