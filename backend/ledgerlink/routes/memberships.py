# Overview: Flask API routes for company owners managing who can access their company.

"""
Membership management (company owner side).

- POST   /api/accountants/link                      link an existing accountant
- GET    /api/companies/<company_id>/members         list memberships
- PATCH  /api/companies/<company_id>/members/<uid>   change permissions / status
- DELETE /api/companies/<company_id>/members/<uid>   revoke access (ends sessions)
- GET    /api/companies/<company_id>/security-events audit trail

Only the owner of the company may use these. Accountant sessions resolve
to a non-owner context and are refused.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_company_context, require_primary_auth
from ..errors import ForbiddenError, ValidationError
from ..services import audit_service, membership_service
from ..validation import json_body, optional_str

memberships_bp = Blueprint("memberships", __name__, url_prefix="/api")


def _require_owner_context():
    if not g.company_context.is_owner:
        raise ForbiddenError("Only the company owner can manage access")


@memberships_bp.post("/accountants/link")
@require_primary_auth
def link_accountant_route():
    """
    Body: { companyId?, accountantEmail, permissions? }
    Returns { ok, companyId, accountantUserId, membership }
    """
    data = json_body()
    company_id = optional_str(data, "companyId") or g.current_user.id

    member = membership_service.link_accountant(
        company_id=company_id,
        accountant_email=data.get("accountantEmail"),
        actor_id=g.current_user.id,
        permissions=data.get("permissions"),
    )
    return jsonify({
        "ok": True,
        "companyId": member.company_id,
        "accountantUserId": member.user_id,
        "membership": member.to_dict(),
    }), 200


@memberships_bp.get("/companies/<company_id>/members")
@require_company_context("read")
def list_members_route(company_id: str):
    _require_owner_context()
    members = membership_service.list_members(g.company_context.active_company_id)
    return jsonify({"members": [member.to_dict() for member in members]}), 200


@memberships_bp.patch("/companies/<company_id>/members/<user_id>")
@require_company_context("read")
def update_member_route(company_id: str, user_id: str):
    """Body: { permissions?, status? } with status ACTIVE | SUSPENDED."""
    _require_owner_context()
    data = json_body()
    member = membership_service.update_membership(
        company_id=g.company_context.active_company_id,
        user_id=user_id,
        actor_id=g.session.user_id,
        permissions=data.get("permissions"),
        status=optional_str(data, "status"),
    )
    return jsonify({"membership": member.to_dict()}), 200


@memberships_bp.delete("/companies/<company_id>/members/<user_id>")
@require_company_context("read")
def revoke_member_route(company_id: str, user_id: str):
    _require_owner_context()
    sessions_ended = membership_service.revoke_membership(
        company_id=g.company_context.active_company_id,
        user_id=user_id,
        actor_id=g.session.user_id,
    )
    return jsonify({"success": True, "sessionsEnded": sessions_ended}), 200


@memberships_bp.get("/companies/<company_id>/security-events")
@require_company_context("read")
def list_security_events_route(company_id: str):
    """
    Query params:
    - eventType: filter on one event type
    - limit: page size (default 100, max 500)
    - beforeId: return events older than this id
    """
    _require_owner_context()

    limit = request.args.get("limit", default=100, type=int)
    before_id = request.args.get("beforeId", type=int)
    if limit is None or limit < 1:
        raise ValidationError("limit must be a positive integer")

    events = audit_service.list_events(
        g.company_context.active_company_id,
        event_type=request.args.get("eventType"),
        limit=limit,
        before_id=before_id,
    )
    return jsonify({"events": [event.to_dict() for event in events]}), 200
