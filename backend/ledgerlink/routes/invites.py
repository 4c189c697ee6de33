# Overview: Flask API routes for accountant invites; owner-facing create, list, revoke and OTP re-send.

"""
Accountant invite management (company owner side).

All endpoints require a primary session. The company defaults to the
caller's own; a companyId for any other company is refused by the
ownership check in the service layer.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_primary_auth
from ..errors import ValidationError
from ..validation import json_body, optional_str
from ..models.constants import InviteStatus, MemberRole
from ..services import invite_service, membership_service

invites_bp = Blueprint("invites", __name__, url_prefix="/api/accountant-invites")


@invites_bp.post("")
@require_primary_auth
def create_invite_route():
    """
    Create an invite and email the link and the OTP separately.

    Body: { companyId?, email, role?, permissions? }
    Returns 201 { inviteId, expiresAt, emailSent }
    """
    data = json_body()
    company_id = optional_str(data, "companyId") or g.current_user.id

    issued = invite_service.create_invite(
        company_id=company_id,
        email=data.get("email"),
        role=optional_str(data, "role") or MemberRole.ACCOUNTANT,
        actor_id=g.current_user.id,
        permissions=data.get("permissions"),
    )
    email_sent = invite_service.deliver_invite(issued)

    return jsonify({
        "inviteId": issued.invite.id,
        "expiresAt": issued.invite.to_dict()["expires_at"],
        "emailSent": email_sent,
    }), 201


@invites_bp.get("")
@require_primary_auth
def list_invites_route():
    """
    List invites of the caller's company.

    Query params:
    - status: PENDING | ACCEPTED | EXPIRED | REVOKED (effective status)
    """
    company_id = request.args.get("companyId") or g.current_user.id
    membership_service.require_owner(company_id, g.current_user.id)

    status = request.args.get("status")
    if status is not None and status not in (InviteStatus.PENDING, *InviteStatus.TERMINAL):
        raise ValidationError(f"Invalid status: {status}")

    invites = invite_service.list_invites(company_id, status=status)
    return jsonify({
        "invites": [invite.to_dict(effective_status=current) for invite, current in invites]
    }), 200


@invites_bp.post("/<invite_id>/revoke")
@require_primary_auth
def revoke_invite_route(invite_id: str):
    invite = invite_service.revoke_invite(invite_id, actor_id=g.current_user.id)
    return jsonify({"invite": invite.to_dict()}), 200


@invites_bp.post("/<invite_id>/resend-otp")
@require_primary_auth
def resend_otp_route(invite_id: str):
    """Issue a fresh OTP for a pending invite and email it."""
    invite, code = invite_service.reissue_otp(invite_id, actor_id=g.current_user.id)
    email_sent = invite_service.deliver_otp(invite, code)
    return jsonify({"inviteId": invite.id, "emailSent": email_sent}), 200
