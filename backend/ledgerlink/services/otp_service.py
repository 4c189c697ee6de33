# Overview: One-time code issuance and constant-time verification for invites.

"""
OTP Verifier

WHY: The invite link alone is a bearer credential that may sit in a mailbox
for days. A short-lived numeric code, sent in a separate email, means an
attacker needs both the link and fresh access to the mailbox.

SECURITY FEATURES:
- Codes drawn from the secrets CSPRNG, 6 digits
- Only the bcrypt hash is stored (invite.otp_hash)
- OTP window (otp_expires_at) is independent of the invite window
- find_match() evaluates every candidate before selecting, so timing does
  not reveal which candidate (if any) matched
"""

import secrets
from datetime import timedelta

import bcrypt
from flask import current_app

from ..models import AccountantInvite
from ledgerlink.time_utils import utcnow


OTP_LENGTH = 6


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def hash_code(code: str) -> str:
    rounds = current_app.config.get("OTP_BCRYPT_ROUNDS", 12)
    return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def issue(invite: AccountantInvite) -> str:
    """
    Attach a fresh OTP to the invite (not committed) and return the plaintext.

    Any previous code stops working because its hash is replaced.
    """
    code = generate_code()
    invite.otp_hash = hash_code(code)
    invite.otp_expires_at = utcnow() + timedelta(minutes=current_app.config.get("OTP_TTL_MINUTES", 10))
    return code


def is_expired(invite: AccountantInvite) -> bool:
    """True when no OTP was issued or its window has passed."""
    if invite.otp_hash is None or invite.otp_expires_at is None:
        return True
    return invite.otp_expires_at < utcnow()


def verify(invite: AccountantInvite, code: str | None) -> bool:
    """
    bcrypt comparison of ``code`` against the stored hash.

    Returns False for missing/malformed input rather than raising.
    """
    if not code or not isinstance(code, str) or invite.otp_hash is None:
        return False
    code = code.strip()
    if not code.isdigit() or len(code) != OTP_LENGTH:
        return False
    try:
        return bcrypt.checkpw(code.encode("utf-8"), invite.otp_hash.encode("utf-8"))
    except ValueError:
        return False


def find_match(candidates: list[AccountantInvite], code: str | None) -> AccountantInvite | None:
    """
    Return the first candidate whose OTP matches ``code``.

    Every candidate is checked, even after a match is found. Acceptance looks
    invites up by token hash and uses ``verify`` directly; this scan is for
    lookups that only have the code and a set of pending invites (for example
    all invites for one email address).
    """
    results = [verify(candidate, code) for candidate in candidates]
    for candidate, matched in zip(candidates, results):
        if matched:
            return candidate
    return None
