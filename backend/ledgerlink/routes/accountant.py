# Overview: Flask API routes for accountant actions: logout, review marks, exports and reports.

"""
Accountant actions on a company's data.

Each action resolves the company context and checks its own capability:
- mark-reviewed: edit
- company-data export: export
- BTW report: btw

Successful actions are recorded in the security audit log.
"""

from flask import Blueprint, jsonify, g

from ..decorators import require_company_context
from ..errors import ValidationError
from ..extensions import db
from ..models import ReviewMark
from ..models.constants import SecurityEventType
from ..services import accountant_session_service, company_context_service, permission_gate, review_service
from ..time_utils import to_utc_z, utcnow
from ..validation import json_body, require_str

accountant_bp = Blueprint("accountant", __name__, url_prefix="/api")


@accountant_bp.post("/accountant/logout")
def logout_route():
    """
    End the accountant session and clear its cookie.

    Idempotent: succeeds without a session. Does not touch primary sessions.
    """
    accountant_session_service.delete()
    return jsonify({"success": True}), 200


@accountant_bp.post("/accountant/mark-reviewed")
@require_company_context("read")
def mark_reviewed_route():
    """
    Mark an invoice or expense as reviewed.

    Body: { itemType: "invoice" | "expense", itemId, companyId? }
    Requires edit on top of the read needed to load the item.
    """
    data = json_body()
    item_type = require_str(data, "itemType").lower()
    item_id = require_str(data, "itemId")
    if item_type not in ReviewMark.ITEM_TYPES:
        raise ValidationError("itemType must be invoice or expense")

    context = g.company_context
    with permission_gate.authorize_and_record(
        context,
        "edit",
        SecurityEventType.ACCOUNTANT_MARK_REVIEWED,
        metadata={"item_type": item_type, "item_id": item_id},
    ):
        mark = review_service.mark_reviewed(
            context.active_company_id, item_type, item_id, reviewer_id=context.user_id
        )

    return jsonify({"success": True, "review": mark.to_dict()}), 200


@accountant_bp.get("/export/company-data")
@require_company_context("read")
def export_company_data_route():
    """Export the company's review trail. Requires export."""
    context = g.company_context

    with permission_gate.authorize_and_record(
        context, "export", SecurityEventType.DATA_EXPORTED, metadata={"export": "company-data"}
    ) as audit_meta:
        marks = db.session.query(ReviewMark).filter_by(
            company_id=context.active_company_id
        ).order_by(ReviewMark.reviewed_at.asc()).all()
        audit_meta["rows"] = len(marks)

    return jsonify({
        "company": {
            "id": context.active_company_id,
            "name": company_context_service.company_display_name(context.active_company_id),
        },
        "exportedAt": to_utc_z(utcnow()),
        "reviewMarks": [mark.to_dict() for mark in marks],
    }), 200


@accountant_bp.get("/export/btw-report")
@require_company_context("read")
def btw_report_route():
    """
    Review status overview used while preparing the BTW (VAT) return.

    Requires btw. Counts reviewed items per type; no tax arithmetic here.
    """
    context = g.company_context

    with permission_gate.authorize_and_record(
        context, "btw", SecurityEventType.ACCOUNTANT_GENERATE_REPORT, metadata={"report": "btw"}
    ):
        counts = review_service.reviewed_counts(context.active_company_id)

    return jsonify({
        "companyId": context.active_company_id,
        "generatedAt": to_utc_z(utcnow()),
        "reviewed": counts,
    }), 200
