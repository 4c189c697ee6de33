# Overview: Request decorators that establish session and company context for API routes.

from functools import wraps
from flask import request, g

from .errors import NotAuthenticatedError
from .services import company_context_service, permission_gate, session_resolver
from .services.session_resolver import PrimarySession


def _resolve_into_g():
    g.session = session_resolver.resolve_session()
    return g.session


def requested_company_id(view_kwargs: dict | None = None) -> str | None:
    """
    Company the client asked for, from the URL, query string or JSON body.

    URL path parameters win over query and body values.
    """
    if view_kwargs and view_kwargs.get("company_id"):
        return view_kwargs["company_id"]
    value = request.args.get("companyId")
    if value:
        return value
    if request.is_json:
        body = request.get_json(silent=True) or {}
        if isinstance(body, dict) and body.get("companyId") is not None:
            return body.get("companyId")
    return None


def require_session(f):
    """
    Require either kind of session.

    Sets:
    - g.session: PrimarySession | AccountantSession

    SECURITY: raises NotAuthenticatedError (401) when neither a valid bearer
    token nor a valid accountant-session cookie is present.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if _resolve_into_g() is None:
            raise NotAuthenticatedError()
        return f(*args, **kwargs)

    return decorated_function


def require_primary_auth(f):
    """
    Require a primary (bearer token) session.

    Sets:
    - g.session: PrimarySession
    - g.current_user: the authenticated User

    Accountant sessions are rejected here; owner-only management endpoints
    are never reachable with an accountant cookie.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        session = _resolve_into_g()
        if not isinstance(session, PrimarySession):
            raise NotAuthenticatedError(detail={"reason": "PRIMARY_SESSION_REQUIRED"})
        g.current_user = session.user
        return f(*args, **kwargs)

    return decorated_function


def require_company_context(capability: str | None = None):
    """
    Resolve the tenant scope for the request, then gate one capability.

    Sets:
    - g.session
    - g.company_context: CompanyContext

    The capability is checked for this operation only; a later operation
    in the same request must check its own.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            session = _resolve_into_g()
            if session is None:
                raise NotAuthenticatedError()

            context = company_context_service.require_company_context(
                session, requested_company_id(kwargs)
            )
            if capability is not None:
                permission_gate.check(context, capability)

            g.company_context = context
            return f(*args, **kwargs)

        return decorated_function

    return decorator
