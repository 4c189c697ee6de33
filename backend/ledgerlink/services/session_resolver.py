# Overview: Resolves a request to exactly one kind of session, or none.

"""
Combined Session Resolver

WHY: Two independent login mechanisms coexist (primary bearer tokens and
accountant cookies). Every downstream check needs to know which one
authenticated the request, so the result is a tagged union rather than a
merged record: fields from one mechanism can never leak into the other.

ORDER: A valid primary session wins. The accountant cookie is consulted
only when there is no valid primary session. No valid session -> None.
"""

from dataclasses import dataclass

from flask import request

from ..models import User
from . import accountant_session_service, primary_session_service
from .accountant_session_service import AccountantSessionData


@dataclass(frozen=True)
class PrimarySession:
    user_id: str
    email: str
    role: str
    email_verified: bool
    onboarding_completed: bool
    user: User

    is_accountant_session = False
    company_id = None


@dataclass(frozen=True)
class AccountantSession:
    """Accountant users are created verified and with onboarding skipped."""
    user_id: str
    email: str
    role: str
    company_id: str
    session_id: str
    email_verified: bool = True
    onboarding_completed: bool = True

    is_accountant_session = True

    @classmethod
    def from_data(cls, data: AccountantSessionData) -> "AccountantSession":
        return cls(
            user_id=data.user_id,
            email=data.email,
            role=data.role,
            company_id=data.company_id,
            session_id=data.session_id,
        )


Session = PrimarySession | AccountantSession


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def resolve_primary() -> PrimarySession | None:
    token = bearer_token()
    if token is None:
        return None

    context = primary_session_service.validate_session(token)
    if context is None:
        return None

    user = context.user
    return PrimarySession(
        user_id=user.id,
        email=user.email,
        role=user.role,
        email_verified=user.email_verified,
        onboarding_completed=user.onboarding_completed,
        user=user,
    )


def resolve_session() -> Session | None:
    """Primary session first, then accountant session, else None."""
    primary = resolve_primary()
    if primary is not None:
        return primary

    data = accountant_session_service.get()
    if data is not None:
        return AccountantSession.from_data(data)

    return None
