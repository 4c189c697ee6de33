# Overview: Pytest coverage for the accountant invite lifecycle.

"""
Invite Lifecycle Tests

Walks invites through PENDING -> ACCEPTED | EXPIRED | REVOKED and checks:
1. Creation rules (ownership, invitable roles, conflicts, self-invites)
2. Read-time expiry, even before the sweep updates the row
3. Acceptance for new and existing users, including the OTP gate
4. Retried acceptance is idempotent and never duplicates memberships
5. Failed codes are throttled per invite
6. Terminal states never transition again
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from ledgerlink.errors import (
    ConflictError,
    ForbiddenError,
    InviteExpiredError,
    InviteNotFoundError,
    InviteUsedError,
    OtpExpiredError,
    OtpInvalidError,
    RateLimitedError,
    SessionCreationFailedError,
    ValidationError,
)
from ledgerlink.extensions import db
from ledgerlink.models import AccountantInvite, AccountantSessionToken, CompanyMember, SecurityEvent, User
from ledgerlink.models.constants import InviteStatus, MemberRole, MemberStatus, SecurityEventType, UserRole
from ledgerlink.services import (
    accountant_session_service,
    invite_service,
    membership_service,
    primary_session_service,
)


def _other_code(code: str) -> str:
    return f"{(int(code) + 1) % 1000000:06d}"


def _events(event_type: str) -> list:
    return db.session.query(SecurityEvent).filter_by(event_type=event_type).all()


def _memberships(company_id: str, user_id: str) -> int:
    return db.session.query(CompanyMember).filter_by(company_id=company_id, user_id=user_id).count()


class TestCreateInvite:
    """Owner creates an invite."""

    def test_creates_pending_invite(self, owner, issued_invite, clock):
        """Email normalized, role defaults applied, secrets hashed."""
        invite = issued_invite.invite

        assert invite.status == InviteStatus.PENDING
        assert invite.invited_email == "jane@example.com"
        assert invite.company_id == owner.id
        assert invite.token_hash == primary_session_service.hash_token(issued_invite.token)
        assert invite.token_hash != issued_invite.token
        assert invite.otp_hash != issued_invite.otp_code
        assert (invite.expires_at - clock.now).days == 7
        assert (invite.can_read, invite.can_edit, invite.can_export, invite.can_btw) == (True, False, True, False)

    def test_records_audit_event(self, owner, issued_invite):
        events = _events(SecurityEventType.INVITE_CREATED)
        assert len(events) == 1
        assert events[0].user_id == owner.id
        assert events[0].company_id == owner.id
        assert events[0].target_email == "jane@example.com"

    def test_permission_overrides(self, owner):
        """Explicit permissions are applied on top of the role defaults."""
        issued = invite_service.create_invite(
            owner.id, "a@b.example", MemberRole.ACCOUNTANT_VIEW, actor_id=owner.id,
            permissions={"canBtw": True, "can_export": False},
        )
        assert issued.invite.can_btw is True
        assert issued.invite.can_export is False

    def test_rejects_non_owner(self, owner, other_owner):
        """Only the company owner can invite."""
        with pytest.raises(ForbiddenError):
            invite_service.create_invite(owner.id, "a@b.example", MemberRole.ACCOUNTANT, actor_id=other_owner.id)

    @pytest.mark.parametrize("role", [MemberRole.OWNER, "ADMIN", ""])
    def test_rejects_non_invitable_role(self, owner, role):
        with pytest.raises(ValidationError):
            invite_service.create_invite(owner.id, "a@b.example", role, actor_id=owner.id)

    def test_rejects_invalid_email(self, owner):
        with pytest.raises(ValidationError):
            invite_service.create_invite(owner.id, "not-an-email", MemberRole.ACCOUNTANT, actor_id=owner.id)

    def test_rejects_self_invite(self, owner):
        with pytest.raises(ValidationError):
            invite_service.create_invite(owner.id, " OWNER@c1.example", MemberRole.ACCOUNTANT, actor_id=owner.id)

    def test_conflict_on_live_pending_invite(self, owner, issued_invite):
        """Same email in different casing still conflicts."""
        with pytest.raises(ConflictError):
            invite_service.create_invite(owner.id, "JANE@example.com", MemberRole.ACCOUNTANT, actor_id=owner.id)

    def test_stale_pending_invite_is_replaced(self, owner, issued_invite, clock):
        """A pending invite past its expiry no longer blocks a new one."""
        clock.advance(days=8)
        fresh = invite_service.create_invite(owner.id, "jane@example.com", MemberRole.ACCOUNTANT, actor_id=owner.id)

        old = db.session.get(AccountantInvite, issued_invite.invite.id)
        assert old.status == InviteStatus.EXPIRED
        assert fresh.invite.status == InviteStatus.PENDING

    def test_conflict_on_active_member(self, owner, accountant):
        membership_service.link_accountant(owner.id, accountant.email, actor_id=owner.id)
        with pytest.raises(ConflictError):
            invite_service.create_invite(owner.id, accountant.email, MemberRole.ACCOUNTANT, actor_id=owner.id)

    def test_same_email_in_two_companies(self, owner, other_owner, issued_invite):
        """Conflicts are per company."""
        other = invite_service.create_invite(
            other_owner.id, "jane@example.com", MemberRole.ACCOUNTANT, actor_id=other_owner.id
        )
        assert other.invite.status == InviteStatus.PENDING


class TestDeliverInvite:
    """Link and code travel in separate emails."""

    def test_two_separate_emails(self, issued_invite, mailer):
        assert invite_service.deliver_invite(issued_invite) is True

        assert len(mailer.messages) == 2
        link_mail, code_mail = mailer.messages
        assert link_mail["to"] == code_mail["to"] == "jane@example.com"
        assert issued_invite.token in link_mail["body"]
        assert issued_invite.otp_code not in link_mail["body"]
        assert issued_invite.otp_code in code_mail["body"]
        assert issued_invite.token not in code_mail["body"]
        assert "C1 Inc" in link_mail["subject"]

    def test_delivery_failure_is_not_fatal(self, issued_invite, mailer):
        """The invite stays valid when mail cannot be sent."""
        mailer.fail = True
        assert invite_service.deliver_invite(issued_invite) is False
        assert invite_service.validate_invite(issued_invite.token).valid


class TestValidateInvite:
    """Landing-page check before the code is entered."""

    def test_valid_invite(self, owner, issued_invite):
        result = invite_service.validate_invite(issued_invite.token)
        assert result.valid is True
        assert result.company_id == owner.id
        assert result.company_name == "C1 Inc"
        assert result.email == "jane@example.com"
        assert result.role == MemberRole.ACCOUNTANT_VIEW

    @pytest.mark.parametrize("token", [None, "", "xyz", "A" * 64, "0" * 63])
    def test_malformed_token(self, db_session, token):
        with pytest.raises(ValidationError):
            invite_service.validate_invite(token)

    def test_unknown_token(self, db_session):
        with pytest.raises(InviteNotFoundError):
            invite_service.validate_invite("ab" * 32)

    def test_expired_at_read_time(self, issued_invite, clock):
        """Past expires_at reads as EXPIRED although the row still says PENDING."""
        clock.advance(days=7, seconds=1)

        with pytest.raises(InviteExpiredError):
            invite_service.validate_invite(issued_invite.token)

        stored = db.session.get(AccountantInvite, issued_invite.invite.id)
        assert stored.status == InviteStatus.PENDING
        assert invite_service.effective_status(stored) == InviteStatus.EXPIRED

    def test_accepted_invite_is_used(self, issued_invite):
        invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)
        with pytest.raises(InviteUsedError):
            invite_service.validate_invite(issued_invite.token)

    def test_revoked_invite_is_expired(self, owner, issued_invite):
        invite_service.revoke_invite(issued_invite.invite.id, actor_id=owner.id)
        with pytest.raises(InviteExpiredError):
            invite_service.validate_invite(issued_invite.token)


class TestAcceptInvite:
    """Turning an invite into a user, a membership and a session."""

    def test_new_user(self, owner, issued_invite):
        """First-time accountant: user created verified, membership and session bound to C1."""
        accepted = invite_service.accept_invite(issued_invite.token, issued_invite.otp_code, user_agent="pytest")

        assert accepted.is_new_user is True
        assert accepted.already_accepted is False
        assert accepted.company_name == "C1 Inc"

        user = accepted.user
        assert user.email == "jane@example.com"
        assert user.role == UserRole.ACCOUNTANT_VIEW
        assert user.email_verified is True
        assert user.onboarding_completed is True

        member = accepted.membership
        assert member.company_id == owner.id
        assert member.user_id == user.id
        assert member.status == MemberStatus.ACTIVE
        assert member.role == MemberRole.ACCOUNTANT_VIEW
        assert membership_service.permissions_of(member) == {
            "can_read": True, "can_edit": False, "can_export": True, "can_btw": False,
        }

        assert accepted.session_data.company_id == owner.id
        assert accepted.session_data.user_id == user.id
        assert accountant_session_service.lookup(accepted.session_token).session_id == accepted.session_data.session_id

        invite = db.session.get(AccountantInvite, issued_invite.invite.id)
        assert invite.status == InviteStatus.ACCEPTED
        assert invite.accepted_by_user_id == user.id
        assert invite.accepted_at is not None

    def test_audit_trail(self, owner, issued_invite):
        accepted = invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

        assert len(_events(SecurityEventType.INVITE_ACCEPTED)) == 1
        granted = _events(SecurityEventType.COMPANY_ACCESS_GRANTED)
        assert len(granted) == 1
        assert granted[0].target_user_id == accepted.user.id
        assert granted[0].event_metadata["source"] == "invite"
        assert len(_events(SecurityEventType.ACCOUNTANT_SESSION_CREATED)) == 1

    def test_existing_user_is_reused(self, owner, accountant):
        """Accountant who already has an account: no second user row."""
        issued = invite_service.create_invite(
            owner.id, "Accountant@Books.example", MemberRole.ACCOUNTANT, actor_id=owner.id
        )
        accepted = invite_service.accept_invite(issued.token, issued.otp_code)

        assert accepted.is_new_user is False
        assert accepted.user.id == accountant.id
        assert db.session.query(User).filter_by(email=accountant.email).count() == 1
        assert _memberships(owner.id, accountant.id) == 1

    def test_wrong_code(self, issued_invite):
        """A wrong code leaves the invite pending and reports remaining attempts."""
        with pytest.raises(OtpInvalidError) as exc:
            invite_service.accept_invite(issued_invite.token, _other_code(issued_invite.otp_code))

        assert exc.value.detail == {"remainingAttempts": 4}
        invite = db.session.get(AccountantInvite, issued_invite.invite.id)
        assert invite.status == InviteStatus.PENDING
        assert db.session.query(CompanyMember).count() == 0
        assert db.session.query(AccountantSessionToken).count() == 0

    @pytest.mark.parametrize("code", [None, "", "12345", "abcdef", "1234567"])
    def test_malformed_code(self, issued_invite, code):
        with pytest.raises(ValidationError):
            invite_service.accept_invite(issued_invite.token, code)

    def test_expired_code_with_right_value(self, issued_invite, clock):
        """After the code window, even the right code is OTP_EXPIRED."""
        clock.advance(minutes=11)
        with pytest.raises(OtpExpiredError):
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

    def test_reissued_code_works(self, owner, issued_invite, clock):
        """Owner re-sends a code after the first one lapsed."""
        clock.advance(minutes=11)
        invite, code = invite_service.reissue_otp(issued_invite.invite.id, actor_id=owner.id)

        accepted = invite_service.accept_invite(issued_invite.token, code)
        assert accepted.membership.company_id == owner.id
        assert len(_events(SecurityEventType.INVITE_OTP_REISSUED)) == 1

    def test_expired_invite(self, issued_invite, clock):
        clock.advance(days=7, minutes=1)
        with pytest.raises(InviteExpiredError):
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

    def test_revoked_invite(self, owner, issued_invite):
        invite_service.revoke_invite(issued_invite.invite.id, actor_id=owner.id)
        with pytest.raises(InviteExpiredError):
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

    def test_unknown_token(self, db_session):
        with pytest.raises(InviteNotFoundError):
            invite_service.accept_invite("cd" * 32, "123456")

    def test_session_failure_keeps_membership(self, owner, issued_invite, monkeypatch):
        """Access is granted even when the session cannot be issued."""
        def broken_create(**kwargs):
            raise SQLAlchemyError("session store unavailable")

        monkeypatch.setattr(accountant_session_service, "create", broken_create)

        with pytest.raises(SessionCreationFailedError) as exc:
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

        assert exc.value.http_status == 500
        invite = db.session.get(AccountantInvite, issued_invite.invite.id)
        assert invite.status == InviteStatus.ACCEPTED
        assert db.session.query(CompanyMember).filter_by(company_id=owner.id).count() == 1


class TestIdempotentAccept:
    """Retrying an accepted invite."""

    def test_retry_refreshes_session(self, owner, issued_invite):
        """Same token and code again: new session, same membership."""
        first = invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)
        second = invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

        assert second.already_accepted is True
        assert second.is_new_user is False
        assert second.user.id == first.user.id
        assert second.membership.id == first.membership.id
        assert second.session_token != first.session_token
        assert _memberships(owner.id, first.user.id) == 1
        assert len(_events(SecurityEventType.INVITE_ACCEPTED)) == 1

    def test_retry_after_code_window(self, owner, issued_invite, clock):
        """The code window does not close the door on an accepted invite."""
        first = invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)
        clock.advance(minutes=11)

        second = invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

        assert second.already_accepted is True
        assert second.membership.id == first.membership.id

    def test_retry_after_invite_window(self, issued_invite, clock):
        invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)
        clock.advance(days=8)

        with pytest.raises(InviteExpiredError):
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

    def test_concurrent_accept_loses_claim(self, owner, issued_invite, monkeypatch):
        """A competing acceptance wins the claim; the loser takes the idempotent path."""
        original = invite_service._get_or_create_user
        raced = []

        def racing_get_or_create_user(email, member_role):
            if not raced:
                raced.append(invite_service.accept_invite(issued_invite.token, issued_invite.otp_code))
            return original(email, member_role)

        monkeypatch.setattr(invite_service, "_get_or_create_user", racing_get_or_create_user)

        result = invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

        assert raced[0].already_accepted is False
        assert result.already_accepted is True
        assert result.user.id == raced[0].user.id
        assert _memberships(owner.id, result.user.id) == 1
        assert len(_events(SecurityEventType.INVITE_ACCEPTED)) == 1

    def test_retry_needs_the_code(self, issued_invite):
        invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)
        with pytest.raises(OtpInvalidError):
            invite_service.accept_invite(issued_invite.token, _other_code(issued_invite.otp_code))

    def test_retry_after_revocation(self, owner, issued_invite):
        """A revoked membership cannot be revived by replaying the invite."""
        accepted = invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)
        membership_service.revoke_membership(owner.id, accepted.user.id, actor_id=owner.id)

        with pytest.raises(InviteUsedError):
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)
        assert _memberships(owner.id, accepted.user.id) == 0

    def test_link_then_accept_single_membership(self, owner, accountant):
        """Admin link and invite acceptance converge on one membership row."""
        issued = invite_service.create_invite(
            owner.id, accountant.email, MemberRole.ACCOUNTANT_EDIT, actor_id=owner.id
        )
        membership_service.link_accountant(owner.id, accountant.email, actor_id=owner.id)

        accepted = invite_service.accept_invite(issued.token, issued.otp_code)

        assert _memberships(owner.id, accountant.id) == 1
        assert accepted.membership.role == MemberRole.ACCOUNTANT_EDIT
        assert accepted.membership.can_btw is True


class TestOtpThrottle:
    """Failed attempts are limited per invite."""

    def test_locks_after_max_attempts(self, issued_invite):
        """After five wrong codes even the right code is refused."""
        wrong = _other_code(issued_invite.otp_code)
        for remaining in (4, 3, 2, 1, 0):
            with pytest.raises(OtpInvalidError) as exc:
                invite_service.accept_invite(issued_invite.token, wrong)
            assert exc.value.detail["remainingAttempts"] == remaining

        with pytest.raises(RateLimitedError):
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

    def test_window_elapses(self, owner, issued_invite, clock):
        """Attempts age out; a re-issued code can then be used."""
        wrong = _other_code(issued_invite.otp_code)
        for _ in range(5):
            with pytest.raises(OtpInvalidError):
                invite_service.accept_invite(issued_invite.token, wrong)

        clock.advance(minutes=16)
        _, code = invite_service.reissue_otp(issued_invite.invite.id, actor_id=owner.id)
        accepted = invite_service.accept_invite(issued_invite.token, code)
        assert accepted.already_accepted is False

    def test_limits_are_per_invite(self, owner, issued_invite):
        other = invite_service.create_invite(owner.id, "bob@example.com", MemberRole.ACCOUNTANT, actor_id=owner.id)
        wrong = _other_code(issued_invite.otp_code)
        for _ in range(5):
            with pytest.raises(OtpInvalidError):
                invite_service.accept_invite(issued_invite.token, wrong)

        accepted = invite_service.accept_invite(other.token, other.otp_code)
        assert accepted.user.email == "bob@example.com"

    def test_database_backend(self, app, issued_invite):
        """The shared backend counts OTP_FAILED events."""
        from ledgerlink.services import throttle_service

        app.extensions[throttle_service.EXTENSION_KEY] = throttle_service.DatabaseAttemptStore()
        wrong = _other_code(issued_invite.otp_code)
        for _ in range(5):
            with pytest.raises(OtpInvalidError):
                invite_service.accept_invite(issued_invite.token, wrong)

        assert len(_events(SecurityEventType.OTP_FAILED)) == 5
        with pytest.raises(RateLimitedError):
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

    def test_memory_store_sweeps_idle_keys(self, clock):
        """Keys that are never retried are dropped once their window passes."""
        from datetime import timedelta

        from ledgerlink.services import throttle_service

        store = throttle_service.MemoryAttemptStore()
        window = timedelta(minutes=15)
        store.hit("otp:abandoned", window)
        store.hit("otp:abandoned", window)
        assert store.tracked_keys() == 1

        clock.advance(minutes=16)
        assert store.hit("otp:other", window) == 1
        assert store.tracked_keys() == 1
        assert store.count("otp:abandoned", window) == 0


class TestOwnerActions:
    """Revoke, re-issue and sweep."""

    def test_revoke_pending(self, owner, issued_invite):
        invite = invite_service.revoke_invite(issued_invite.invite.id, actor_id=owner.id)
        assert invite.status == InviteStatus.REVOKED
        assert invite.revoked_at is not None
        assert len(_events(SecurityEventType.INVITE_REVOKED)) == 1

    def test_revoke_requires_owner(self, owner, other_owner, issued_invite):
        with pytest.raises(ForbiddenError):
            invite_service.revoke_invite(issued_invite.invite.id, actor_id=other_owner.id)

    def test_revoke_accepted_is_used(self, owner, issued_invite):
        """Terminal states never transition."""
        invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)
        with pytest.raises(InviteUsedError):
            invite_service.revoke_invite(issued_invite.invite.id, actor_id=owner.id)
        assert db.session.get(AccountantInvite, issued_invite.invite.id).status == InviteStatus.ACCEPTED

    def test_revoke_twice(self, owner, issued_invite):
        invite_service.revoke_invite(issued_invite.invite.id, actor_id=owner.id)
        with pytest.raises(InviteExpiredError):
            invite_service.revoke_invite(issued_invite.invite.id, actor_id=owner.id)

    def test_revoke_unknown(self, owner):
        with pytest.raises(InviteNotFoundError):
            invite_service.revoke_invite("00000000-0000-4000-8000-000000000000", actor_id=owner.id)

    def test_reissue_on_terminal_invite(self, owner, issued_invite):
        invite_service.revoke_invite(issued_invite.invite.id, actor_id=owner.id)
        with pytest.raises(InviteExpiredError):
            invite_service.reissue_otp(issued_invite.invite.id, actor_id=owner.id)

    def test_reissue_replaces_code(self, owner, issued_invite):
        _, code = invite_service.reissue_otp(issued_invite.invite.id, actor_id=owner.id)
        if code == issued_invite.otp_code:
            return
        with pytest.raises(OtpInvalidError):
            invite_service.accept_invite(issued_invite.token, issued_invite.otp_code)

    def test_deliver_otp(self, owner, issued_invite, mailer):
        invite, code = invite_service.reissue_otp(issued_invite.invite.id, actor_id=owner.id)
        assert invite_service.deliver_otp(invite, code) is True
        assert mailer.last_code() == code

    def test_expire_stale_invites(self, owner, issued_invite, clock):
        """The sweep only touches PENDING invites past expiry."""
        accepted = invite_service.create_invite(owner.id, "bob@example.com", MemberRole.ACCOUNTANT, actor_id=owner.id)
        invite_service.accept_invite(accepted.token, accepted.otp_code)

        assert invite_service.expire_stale_invites() == 0
        clock.advance(days=8)
        assert invite_service.expire_stale_invites() == 1

        assert db.session.get(AccountantInvite, issued_invite.invite.id).status == InviteStatus.EXPIRED
        assert db.session.get(AccountantInvite, accepted.invite.id).status == InviteStatus.ACCEPTED

    def test_list_invites_effective_status(self, owner, issued_invite, clock):
        clock.advance(days=7, seconds=1)
        fresh = invite_service.create_invite(owner.id, "bob@example.com", MemberRole.ACCOUNTANT, actor_id=owner.id)

        listed = dict((invite.id, status) for invite, status in invite_service.list_invites(owner.id))
        assert listed[issued_invite.invite.id] == InviteStatus.EXPIRED
        assert listed[fresh.invite.id] == InviteStatus.PENDING

        pending = invite_service.list_invites(owner.id, status=InviteStatus.PENDING)
        assert [invite.id for invite, _ in pending] == [fresh.invite.id]
