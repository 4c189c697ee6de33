# Overview: Flask API routes for the company switcher (active company) and context reset.

"""
Active-company endpoints.

The active company is a side effect of an explicit POST: access is checked
first, then a signed cookie is written. Every later request re-validates
that choice in company_context_service.
"""

from flask import Blueprint, jsonify, g

from ..decorators import require_session
from ..services import company_context_service
from ..validation import json_body

context_bp = Blueprint("context", __name__, url_prefix="/api")


@context_bp.get("/session/active-company")
@require_session
def get_active_company_route():
    """
    Current active company plus every company the caller may switch to.

    Returns { companyId, companyName, role, isAccountantSession, memberships: [...] }
    """
    context = company_context_service.require_company_context(g.session)
    return jsonify({
        "companyId": context.active_company_id,
        "companyName": company_context_service.company_display_name(context.active_company_id),
        "role": context.role,
        "isAccountantSession": g.session.is_accountant_session,
        "permissions": context.to_dict()["permissions"],
        "memberships": company_context_service.list_accessible_companies(g.session),
    }), 200


@context_bp.post("/session/active-company")
@require_session
def set_active_company_route():
    """
    Switch the active company.

    Body: { companyId }
    400 on a malformed id, 403 NO_ACCESS without ownership or active membership.
    """
    data = json_body()
    context = company_context_service.set_active_company(g.session, data.get("companyId"))
    return jsonify({"success": True, **context.to_dict()}), 200


@context_bp.post("/context/clear-company")
@require_session
def clear_company_route():
    """Forget the switcher choice; the next request resolves to the default company."""
    company_context_service.clear_active_company()
    return jsonify({"success": True}), 200
