# Overview: Service-layer operations for accountant review marks.

from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite

from ..extensions import db
from ..models import ReviewMark
from ..time_utils import utcnow


def _insert_for_dialect():
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Review marks are not supported on {dialect}")


def mark_reviewed(company_id: str, item_type: str, item_id: str, reviewer_id: str) -> ReviewMark:
    """
    Mark (company_id, item_type, item_id) reviewed by reviewer_id, in one statement.

    A second mark of the same item moves the reviewer and timestamp instead of
    inserting a duplicate, so concurrent marks cannot collide on the unique key.
    Commits.
    """
    now = utcnow()
    insert = _insert_for_dialect()
    stmt = insert(ReviewMark.__table__).values(
        company_id=company_id,
        item_type=item_type,
        item_id=item_id,
        reviewed_by_user_id=reviewer_id,
        reviewed_at=now,
    ).on_conflict_do_update(
        index_elements=["company_id", "item_type", "item_id"],
        set_={"reviewed_by_user_id": reviewer_id, "reviewed_at": now},
    )
    db.session.execute(stmt)
    db.session.commit()

    return db.session.query(ReviewMark).filter_by(
        company_id=company_id, item_type=item_type, item_id=item_id
    ).populate_existing().one()


def reviewed_counts(company_id: str) -> dict:
    """Reviewed items per type for one company; every type is present."""
    counts = {item_type: 0 for item_type in sorted(ReviewMark.ITEM_TYPES)}
    rows = db.session.query(ReviewMark.item_type, db.func.count(ReviewMark.id)).filter_by(
        company_id=company_id
    ).group_by(ReviewMark.item_type).all()
    for item_type, count in rows:
        counts[item_type] = count
    return counts
