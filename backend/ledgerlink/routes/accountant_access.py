# Overview: Public (pre-auth) routes an invited accountant uses to check an invite and accept it.

"""
Accountant access API

Public endpoints: the caller has no session yet. Everything they present
(token, OTP) is validated in invite_service; error codes map 1:1 to the
UI messages (INVITE_NOT_FOUND, INVITE_EXPIRED, INVITE_USED, OTP_EXPIRED,
OTP_INVALID, RATE_LIMITED, SESSION_CREATION_FAILED).
"""

from flask import Blueprint, request, jsonify

from ..services import invite_service
from ..validation import json_body

accountant_access_bp = Blueprint("accountant_access", __name__, url_prefix="/api/accountant-access")


@accountant_access_bp.get("/validate")
def validate_route():
    """
    Check an invite link before asking for the code.

    Query params:
    - token: the opaque invite token from the email link

    Returns { valid, companyName, email }. Never says anything about the OTP.
    """
    result = invite_service.validate_invite(request.args.get("token"))
    return jsonify({
        "valid": result.valid,
        "companyName": result.company_name,
        "email": result.email,
    }), 200


@accountant_access_bp.post("/verify")
def verify_route():
    """
    Accept the invite with the emailed code.

    Body: { token, otpCode }
    On success the accountant-session cookie is set on this response.
    Retrying after success is safe: the session is refreshed.
    """
    data = json_body()
    accepted = invite_service.accept_invite(
        token=data.get("token"),
        otp_code=data.get("otpCode"),
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    return jsonify({
        "success": True,
        "companyName": accepted.company_name,
        "companyId": accepted.membership.company_id,
        "role": accepted.membership.role,
        "alreadyAccepted": accepted.already_accepted,
    }), 200
