"""
Pytest fixtures for ledgerlink backend tests.

Provides the test database, a controllable clock, a capturing mailer,
company owners, accountants and invites, plus the test client.
"""

import re
from datetime import datetime, timedelta

import pytest

from ledgerlink import create_app
from ledgerlink.extensions import db
from ledgerlink.models import CompanyProfile, User
from ledgerlink.models.constants import MemberRole, UserRole
from ledgerlink.services import invite_service, mail_service, primary_session_service, throttle_service


class FrozenClock:
    """Callable clock for the CLOCK config hook; only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class CaptureMailer(mail_service.Mailer):
    """Keeps outgoing messages in memory instead of sending them."""

    def __init__(self):
        self.messages = []
        self.fail = False

    def send(self, to_email: str, subject: str, body: str) -> bool:
        if self.fail:
            return False
        self.messages.append({"to": to_email, "subject": subject, "body": body})
        return True

    def last_code(self) -> str | None:
        for message in reversed(self.messages):
            match = re.search(r"code for .* is: (\d{6})", message["body"])
            if match:
                return match.group(1)
        return None

    def last_token(self) -> str | None:
        for message in reversed(self.messages):
            match = re.search(r"token=([0-9a-f]{64})", message["body"])
            if match:
                return match.group(1)
        return None


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SECRET_KEY': 'test-secret-key',
        'SESSION_COOKIE_SECURE': False,
        'OTP_BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def clock(app):
    """Frozen clock shared by every service for the duration of a test."""
    frozen = FrozenClock(datetime(2026, 3, 2, 9, 0, 0))
    app.config['CLOCK'] = frozen
    yield frozen
    app.config['CLOCK'] = None


@pytest.fixture(scope='function', autouse=True)
def mailer(app):
    """Capturing mailer plus a fresh attempt store and audit counter."""
    capture = CaptureMailer()
    app.extensions[mail_service.EXTENSION_KEY] = capture
    app.extensions[throttle_service.EXTENSION_KEY] = throttle_service.MemoryAttemptStore()
    app.extensions.pop('ledgerlink.audit_failures', None)
    yield capture
    app.extensions[mail_service.EXTENSION_KEY] = mail_service.LogMailer()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    # Cleanup after test
    db.session.rollback()


def make_owner(db_session, email: str, company_name: str) -> User:
    user = User(
        email=email,
        role=UserRole.COMPANY_ADMIN,
        email_verified=True,
        onboarding_completed=True,
        is_active=True,
    )
    db_session.add(user)
    db_session.flush()
    db_session.add(CompanyProfile(user_id=user.id, company_name=company_name))
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session):
    """Owner of company C1; the company id is the owner's user id."""
    return make_owner(db_session, "owner@c1.example", "C1 Inc")


@pytest.fixture(scope='function')
def other_owner(db_session):
    """Owner of company C2."""
    return make_owner(db_session, "owner@c2.example", "C2 Inc")


@pytest.fixture(scope='function')
def accountant(db_session):
    """An existing accountant user with no memberships yet."""
    user = User(
        email="accountant@books.example",
        role=UserRole.ACCOUNTANT,
        email_verified=True,
        onboarding_completed=True,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner_token(owner):
    """Primary bearer token for the C1 owner."""
    _, token = primary_session_service.create_session(owner.id)
    return token


@pytest.fixture(scope='function')
def owner_headers(owner_token):
    return auth_headers(owner_token)


@pytest.fixture(scope='function')
def issued_invite(owner):
    """Pending ACCOUNTANT_VIEW invite on C1 with its plaintext token and OTP."""
    return invite_service.create_invite(
        owner.id,
        "Jane@Example.com ",
        MemberRole.ACCOUNTANT_VIEW,
        actor_id=owner.id,
    )


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}

