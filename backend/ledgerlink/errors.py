"""
Error taxonomy for accountant access and company context.

Every user-facing failure carries a stable ``code`` (for UI messaging and
analytics) and the HTTP status the blueprints answer with. Services raise
these; the error handler registered in ``create_app`` renders them as JSON.
"""

from __future__ import annotations


class AccessError(Exception):
    """Base class for failures that are safe to show to the caller."""

    code = "ACCESS_ERROR"
    http_status = 400
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None, *, detail: dict | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationError(AccessError, ValueError):
    """400-level input problem (malformed email, token, or company id)."""

    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class EmailValidationError(ValidationError):
    """Email failed normalization; ``reason`` is EMAIL_REQUIRED or EMAIL_INVALID."""

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or "A valid email address is required", detail={"reason": reason})
        self.reason = reason


class ConflictError(AccessError):
    """409-level business rule conflict (e.g., duplicate pending invite)."""

    code = "CONFLICT"
    http_status = 409
    default_message = "Request conflicts with existing state"


class InviteNotFoundError(AccessError):
    code = "INVITE_NOT_FOUND"
    http_status = 404
    default_message = "Invite not found. The link may be invalid."


class InviteExpiredError(AccessError):
    code = "INVITE_EXPIRED"
    default_message = "This invite has expired. Ask for a new invite."


class InviteUsedError(AccessError):
    code = "INVITE_USED"
    default_message = "This invite has already been used."


class OtpExpiredError(AccessError):
    code = "OTP_EXPIRED"
    default_message = "The verification code has expired. Request a new code."


class OtpInvalidError(AccessError):
    code = "OTP_INVALID"
    default_message = "Invalid verification code."


class NotAuthenticatedError(AccessError):
    code = "NOT_AUTHENTICATED"
    http_status = 401
    default_message = "Authentication required"


class NoAccessError(AccessError):
    code = "NO_ACCESS"
    http_status = 403
    default_message = "You do not have access to this company"


class ForbiddenError(AccessError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "Insufficient permissions for this action"


class NotFoundError(AccessError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Not found"


class RateLimitedError(AccessError):
    code = "RATE_LIMITED"
    http_status = 429
    default_message = "Too many attempts. Try again later."


class SessionCreationFailedError(AccessError):
    """
    The invite was accepted and the membership exists, but no session
    could be issued. Recovery is to log in again, not to request a new invite.
    """

    code = "SESSION_CREATION_FAILED"
    http_status = 500
    default_message = "Access was granted but the session could not be created. Please try logging in again."
