# Overview: Email normalization shared by invites, linking and session creation.

"""
Identity Normalizer

WHY: Every lookup and comparison of an invited email happens on one
canonical form, so "Jane@Example.com " and "jane@example.com" are the same
principal everywhere (invite conflicts, user reuse, membership rows).

Pure functions; no database access.
"""

import re

from ..errors import EmailValidationError


EMAIL_REQUIRED = "EMAIL_REQUIRED"
EMAIL_INVALID = "EMAIL_INVALID"

# local@domain.tld, no whitespace, exactly one "@"
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(raw) -> str:
    """
    Trim and lowercase an email address.

    Raises EmailValidationError with reason:
    - EMAIL_REQUIRED: None, non-string, empty or whitespace-only input
    - EMAIL_INVALID: does not look like local@domain.tld

    Idempotent: normalize_email(normalize_email(x)) == normalize_email(x).
    """
    if raw is None or not isinstance(raw, str):
        raise EmailValidationError(EMAIL_REQUIRED, "Email is required")

    email = raw.strip().lower()
    if not email:
        raise EmailValidationError(EMAIL_REQUIRED, "Email is required")

    if not _EMAIL_PATTERN.match(email):
        raise EmailValidationError(EMAIL_INVALID, "Invalid email address")

    return email


def is_valid_email(raw) -> bool:
    try:
        normalize_email(raw)
    except EmailValidationError:
        return False
    return True
