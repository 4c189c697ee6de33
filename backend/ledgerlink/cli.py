# Overview: Flask CLI command groups for bootstrap, invites, session sweeps and audit inspection.

# backend/ledgerlink/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` once migrations exist).
#
# Accounts:
# - python -m flask accounts create-owner --email owner@example.com --company-name "Acme BV"
#   Create a company owner and print a bearer token for local API use.
#
# Invites:
# - python -m flask invites create --company-id <uuid> --email accountant@example.com --role ACCOUNTANT_VIEW
#   Create an invite and print the link token and OTP (also emailed).
# - python -m flask invites list --company-id <uuid> [--status PENDING]
#   List invites with their effective status.
# - python -m flask invites expire-stale
#   Mark PENDING invites past their expiry as EXPIRED.
#
# Sessions:
# - python -m flask sessions cleanup
#   Delete expired accountant sessions.
# - python -m flask sessions cleanup-primary --retention-days 30
#   Delete expired/revoked primary sessions older than the retention window.
#
# Audit:
# - python -m flask audit list --company-id <uuid> [--event-type INVITE_CREATED] [--limit 50]
#   Print a company's security events, newest first.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .errors import AccessError
from .extensions import db
from .models import CompanyProfile, User
from .models.constants import InviteStatus, MemberRole, UserRole
from .services import accountant_session_service, audit_service, invite_service, primary_session_service
from .services.identity_service import normalize_email
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('accounts')
def accounts_group():
    """Company owner accounts."""


@accounts_group.command('create-owner')
@click.option('--email', required=True, help='Owner email (also the login identity)')
@click.option('--company-name', required=True, help='Display name of the company')
@with_appcontext
def create_owner(email, company_name):
    """
    Create a COMPANY_ADMIN user with a company profile.

    Prints a primary bearer token so the API can be exercised locally.
    """
    try:
        email = normalize_email(email)
    except AccessError as e:
        raise click.ClickException(e.message)

    if db.session.query(User).filter_by(email=email).first():
        raise click.ClickException(f"User {email} already exists")

    user = User(
        email=email,
        role=UserRole.COMPANY_ADMIN,
        email_verified=True,
        onboarding_completed=True,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    db.session.add(CompanyProfile(user_id=user.id, company_name=company_name))
    db.session.commit()

    _, token = primary_session_service.create_session(user.id, user_agent="flask-cli")

    click.echo(f"PASS Created owner {email} (company id: {user.id})")
    click.echo(f"Bearer token (24h): {token}")


@click.group('invites')
def invites_group():
    """Accountant invite management."""


@invites_group.command('create')
@click.option('--company-id', required=True)
@click.option('--email', required=True)
@click.option('--role', default=MemberRole.ACCOUNTANT, show_default=True,
              type=click.Choice(sorted(MemberRole.INVITABLE)))
@click.option('--no-email', is_flag=True, help='Do not send the invite emails')
@with_appcontext
def create_invite_cli(company_id, email, role, no_email):
    """Create an invite on behalf of the company owner."""
    try:
        issued = invite_service.create_invite(company_id, email, role, actor_id=company_id)
    except AccessError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    if not no_email:
        invite_service.deliver_invite(issued)

    click.echo(f"PASS Invite {issued.invite.id} for {issued.invite.invited_email} ({role})")
    click.echo(f"Token: {issued.token}")
    click.echo(f"OTP:   {issued.otp_code}")
    click.echo(f"Expires: {to_utc_z(issued.invite.expires_at)}")


@invites_group.command('list')
@click.option('--company-id', required=True)
@click.option('--status', type=click.Choice([InviteStatus.PENDING, *sorted(InviteStatus.TERMINAL)]))
@with_appcontext
def list_invites_cli(company_id, status):
    """List invites with effective status."""
    invites = invite_service.list_invites(company_id, status=status)
    if not invites:
        click.echo("No invites found")
        return

    for invite, current in invites:
        click.echo(
            f"{invite.id}  {current:<8}  {invite.role:<16}  {invite.invited_email}  "
            f"expires {to_utc_z(invite.expires_at)}"
        )


@invites_group.command('expire-stale')
@with_appcontext
def expire_stale_cli():
    """Mark PENDING invites past expires_at as EXPIRED."""
    count = invite_service.expire_stale_invites()
    click.echo(f"PASS Expired {count} stale invite(s)")


@click.group('sessions')
def sessions_group():
    """Session sweeps."""


@sessions_group.command('cleanup')
@with_appcontext
def cleanup_sessions_cli():
    """Delete expired accountant sessions."""
    count = accountant_session_service.cleanup_expired()
    click.echo(f"PASS Deleted {count} expired accountant session(s)")


@sessions_group.command('cleanup-primary')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_primary_sessions_cli(retention_days):
    """Delete expired or revoked primary sessions older than the retention window."""
    count = primary_session_service.cleanup_expired_sessions(timedelta(days=retention_days))
    click.echo(f"PASS Deleted {count} primary session(s)")


@click.group('audit')
def audit_group():
    """Security audit log inspection."""


@audit_group.command('list')
@click.option('--company-id', required=True)
@click.option('--event-type', default=None)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_audit_cli(company_id, event_type, limit):
    """Print a company's security events, newest first."""
    events = audit_service.list_events(company_id, event_type=event_type, limit=limit)
    if not events:
        click.echo("No security events found")
        return

    for event in events:
        click.echo(
            f"{to_utc_z(event.occurred_at)}  {event.event_type:<28}  "
            f"actor={event.user_id or '-'}  target={event.target_email or event.target_user_id or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(invites_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(audit_group)
