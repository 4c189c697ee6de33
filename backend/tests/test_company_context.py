# Overview: Pytest coverage for company-context resolution and the active-company switcher.

"""
Company Context Tests

SECURITY TESTS: Prove that every request is scoped to exactly one company
the caller may act on, and that a denied request never silently falls
back to the caller's own company.

Test Coverage:
- Primary sessions: own company, memberships, explicit requests
- Accountant sessions: pinned to the bound company
- Active-company cookie: signed, per-user, re-validated on every request
- Denials are audited as COMPANY_ACCESS_DENIED
"""

import pytest
from itsdangerous import URLSafeSerializer

from ledgerlink.cookies import ACCOUNTANT_SESSION_COOKIE, ACTIVE_COMPANY_COOKIE
from ledgerlink.errors import NoAccessError, NotAuthenticatedError, ValidationError
from ledgerlink.extensions import db
from ledgerlink.models import SecurityEvent
from ledgerlink.models.constants import MemberRole, MemberStatus, SecurityEventType
from ledgerlink.services import company_context_service, invite_service, membership_service
from ledgerlink.services.session_resolver import AccountantSession, PrimarySession


def _primary(user) -> PrimarySession:
    return PrimarySession(
        user_id=user.id,
        email=user.email,
        role=user.role,
        email_verified=True,
        onboarding_completed=True,
        user=user,
    )


def _denials() -> list:
    return db.session.query(SecurityEvent).filter_by(
        event_type=SecurityEventType.COMPANY_ACCESS_DENIED
    ).all()


@pytest.fixture
def staff_in_c2(owner, other_owner):
    """C1's owner also works as staff in C2."""
    member = membership_service.upsert_membership(
        company_id=other_owner.id,
        user_id=owner.id,
        role=MemberRole.STAFF,
        permissions=membership_service.default_permissions(MemberRole.STAFF),
    )
    db.session.commit()
    return member


@pytest.fixture
def accepted(owner, issued_invite):
    """Jane accepted the C1 invite (ACCOUNTANT_VIEW)."""
    return invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)


@pytest.fixture
def accountant_session(accepted):
    data = accepted.session_data
    return AccountantSession(
        user_id=data.user_id,
        email=data.email,
        role=data.role,
        company_id=data.company_id,
        session_id=data.session_id,
    )


class TestPrimaryContext:
    """Primary sessions."""

    def test_defaults_to_own_company(self, app, owner):
        with app.test_request_context("/"):
            context = company_context_service.require_company_context(_primary(owner))

        assert context.active_company_id == owner.id
        assert context.is_owner is True
        assert context.role == MemberRole.OWNER
        assert all(context.can(cap) for cap in ("read", "edit", "export", "btw"))

    def test_explicit_own_company(self, app, owner):
        with app.test_request_context("/"):
            context = company_context_service.require_company_context(_primary(owner), owner.id.upper())
        assert context.active_company_id == owner.id

    def test_explicit_member_company(self, app, owner, other_owner, staff_in_c2):
        with app.test_request_context("/"):
            context = company_context_service.require_company_context(_primary(owner), other_owner.id)

        assert context.active_company_id == other_owner.id
        assert context.is_owner is False
        assert context.role == MemberRole.STAFF
        assert context.can("edit") and not context.can("export")

    def test_foreign_company_is_denied(self, app, owner, other_owner):
        """No ownership, no membership: NO_ACCESS, never the caller's own company."""
        with app.test_request_context("/"):
            with pytest.raises(NoAccessError):
                company_context_service.require_company_context(_primary(owner), other_owner.id)

        denials = _denials()
        assert len(denials) == 1
        assert denials[0].user_id == owner.id
        assert denials[0].company_id == other_owner.id

    def test_suspended_membership_is_denied(self, app, owner, other_owner, staff_in_c2):
        membership_service.update_membership(
            other_owner.id, owner.id, actor_id=other_owner.id, status=MemberStatus.SUSPENDED
        )
        with app.test_request_context("/"):
            with pytest.raises(NoAccessError):
                company_context_service.require_company_context(_primary(owner), other_owner.id)

    @pytest.mark.parametrize("company_id", ["not-a-uuid", "1234", 42, "00000000-0000-0000-0000-00000000000g"])
    def test_malformed_company_id(self, app, owner, company_id):
        with app.test_request_context("/"):
            with pytest.raises(ValidationError):
                company_context_service.require_company_context(_primary(owner), company_id)

    def test_no_session(self, app, db_session):
        with pytest.raises(NotAuthenticatedError):
            company_context_service.require_company_context(None)


class TestAccountantContext:
    """Accountant sessions are pinned to their company."""

    def test_bound_company(self, app, owner, accountant_session):
        with app.test_request_context("/"):
            context = company_context_service.require_company_context(accountant_session)

        assert context.active_company_id == owner.id
        assert context.is_owner is False
        assert context.role == MemberRole.ACCOUNTANT_VIEW
        assert context.can("read") and context.can("export")
        assert not context.can("edit") and not context.can("btw")

    def test_other_company_is_denied(self, app, other_owner, accountant_session):
        """A client-supplied company id cannot move an accountant session."""
        with app.test_request_context("/"):
            with pytest.raises(NoAccessError):
                company_context_service.require_company_context(accountant_session, other_owner.id)

        denials = _denials()
        assert len(denials) == 1
        assert denials[0].event_metadata["session_kind"] == "accountant"

    def test_other_company_denied_even_with_membership(self, app, owner, other_owner, accepted, accountant_session):
        """The session binding wins over memberships held elsewhere."""
        membership_service.upsert_membership(
            company_id=other_owner.id,
            user_id=accepted.user.id,
            role=MemberRole.ACCOUNTANT,
            permissions=membership_service.default_permissions(MemberRole.ACCOUNTANT),
        )
        db.session.commit()

        with app.test_request_context("/"):
            with pytest.raises(NoAccessError):
                company_context_service.require_company_context(accountant_session, other_owner.id)

    def test_permissions_are_read_live(self, app, owner, accepted, accountant_session):
        """A permission change applies on the next request, without a new session."""
        membership_service.update_membership(
            owner.id, accepted.user.id, actor_id=owner.id, permissions={"canEdit": True}
        )
        with app.test_request_context("/"):
            context = company_context_service.require_company_context(accountant_session)
        assert context.can("edit")

    def test_revoked_membership(self, app, owner, accepted, accountant_session):
        membership_service.revoke_membership(owner.id, accepted.user.id, actor_id=owner.id)
        with app.test_request_context("/"):
            with pytest.raises(NoAccessError):
                company_context_service.require_company_context(accountant_session)


class TestActiveCompanySwitcher:
    """POST/GET /api/session/active-company and the signed cookie."""

    def test_switch_and_read_back(self, client, owner, other_owner, owner_headers, staff_in_c2):
        resp = client.post(
            "/api/session/active-company", json={"companyId": other_owner.id}, headers=owner_headers
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["activeCompanyId"] == other_owner.id
        assert body["isOwner"] is False
        assert client.get_cookie(ACTIVE_COMPANY_COOKIE) is not None

        resp = client.get("/api/session/active-company", headers=owner_headers)
        body = resp.get_json()
        assert body["companyId"] == other_owner.id
        assert body["companyName"] == "C2 Inc"
        assert body["isAccountantSession"] is False
        assert [m["companyId"] for m in body["memberships"]] == [owner.id, other_owner.id]

        changed = db.session.query(SecurityEvent).filter_by(
            event_type=SecurityEventType.ACTIVE_COMPANY_CHANGED
        ).count()
        assert changed == 1

    def test_switch_without_access(self, client, other_owner, owner_headers):
        resp = client.post(
            "/api/session/active-company", json={"companyId": other_owner.id}, headers=owner_headers
        )
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "NO_ACCESS"
        assert client.get_cookie(ACTIVE_COMPANY_COOKIE) is None

    def test_switch_malformed_id(self, client, owner_headers):
        resp = client.post("/api/session/active-company", json={"companyId": "C2"}, headers=owner_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_stale_choice_falls_back_and_clears(self, client, owner, other_owner, owner_headers, staff_in_c2):
        """Access revoked after switching: own company, cookie cleared."""
        client.post("/api/session/active-company", json={"companyId": other_owner.id}, headers=owner_headers)
        membership_service.revoke_membership(other_owner.id, owner.id, actor_id=other_owner.id)

        resp = client.get("/api/session/active-company", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json()["companyId"] == owner.id
        assert client.get_cookie(ACTIVE_COMPANY_COOKIE) is None

    def test_explicit_request_never_falls_back(self, client, owner, other_owner, owner_headers, staff_in_c2):
        membership_service.revoke_membership(other_owner.id, owner.id, actor_id=other_owner.id)

        resp = client.get(f"/api/export/company-data?companyId={other_owner.id}", headers=owner_headers)
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "NO_ACCESS"

    def test_tampered_cookie_is_ignored(self, client, owner, owner_headers):
        client.set_cookie(ACTIVE_COMPANY_COOKIE, "eyJ1IjoieCJ9.forged")
        resp = client.get("/api/session/active-company", headers=owner_headers)

        assert resp.get_json()["companyId"] == owner.id
        assert client.get_cookie(ACTIVE_COMPANY_COOKIE) is None

    def test_cookie_of_another_user_is_ignored(self, app, client, owner, other_owner, owner_headers, staff_in_c2):
        """A validly signed choice made by someone else does not apply."""
        value = URLSafeSerializer(app.config["SECRET_KEY"], salt="active-company").dumps(
            {"u": other_owner.id, "c": other_owner.id}
        )
        client.set_cookie(ACTIVE_COMPANY_COOKIE, value)

        resp = client.get("/api/session/active-company", headers=owner_headers)
        assert resp.get_json()["companyId"] == owner.id

    def test_clear_company(self, client, owner, other_owner, owner_headers, staff_in_c2):
        client.post("/api/session/active-company", json={"companyId": other_owner.id}, headers=owner_headers)

        resp = client.post("/api/context/clear-company", headers=owner_headers)
        assert resp.status_code == 200
        assert client.get_cookie(ACTIVE_COMPANY_COOKIE) is None

        resp = client.get("/api/session/active-company", headers=owner_headers)
        assert resp.get_json()["companyId"] == owner.id

    def test_accountant_session_view(self, client, owner, accepted):
        client.set_cookie(ACCOUNTANT_SESSION_COOKIE, accepted.session_token)

        resp = client.get("/api/session/active-company")
        body = resp.get_json()
        assert resp.status_code == 200
        assert body["companyId"] == owner.id
        assert body["companyName"] == "C1 Inc"
        assert body["isAccountantSession"] is True
        assert [m["companyId"] for m in body["memberships"]] == [owner.id]

    def test_unauthenticated(self, client, db_session):
        resp = client.get("/api/session/active-company")
        assert resp.status_code == 401
