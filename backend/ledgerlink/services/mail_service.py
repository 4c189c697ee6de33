"""
Outgoing email for accountant invites.

Two separate messages go out per invite: the link (carrying the opaque
token) and the verification code. Neither body is stored anywhere.

The delivery backend is chosen by MAIL_BACKEND and kept in app.extensions
so tests can swap in a capturing mailer.
"""

import logging
import smtplib
from email.mime.text import MIMEText
from urllib.parse import quote

from flask import current_app

from ..logging_config import mask_email


logger = logging.getLogger(__name__)

EXTENSION_KEY = "ledgerlink.mailer"


class Mailer:
    def send(self, to_email: str, subject: str, body: str) -> bool:
        raise NotImplementedError


class LogMailer(Mailer):
    """Development backend: writes the message to the application log."""

    def send(self, to_email: str, subject: str, body: str) -> bool:
        logger.info("Email to %s: %s\n%s", to_email, subject, body)
        return True


class SmtpMailer(Mailer):
    def __init__(self, server: str, port: int, username: str | None, password: str | None, from_email: str):
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email

    def send(self, to_email: str, subject: str, body: str) -> bool:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email

        try:
            with smtplib.SMTP(self.server, self.port, timeout=10) as server:
                server.starttls()
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.error("Failed to send email to %s", mask_email(to_email), exc_info=True)
            return False

        logger.info("Email sent to %s", mask_email(to_email))
        return True


def build_mailer(config) -> Mailer:
    backend = config.get("MAIL_BACKEND", "log")
    if backend == "log":
        return LogMailer()
    if backend == "smtp":
        return SmtpMailer(
            server=config["SMTP_SERVER"],
            port=config["SMTP_PORT"],
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            from_email=config["MAIL_FROM"],
        )
    raise ValueError(f"Unknown MAIL_BACKEND: {backend!r}")


def get_mailer() -> Mailer:
    mailer = current_app.extensions.get(EXTENSION_KEY)
    if mailer is None:
        mailer = build_mailer(current_app.config)
        current_app.extensions[EXTENSION_KEY] = mailer
    return mailer


def invite_link(token: str) -> str:
    base = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return f"{base}/accountant/accept?token={quote(token)}"


def send_invite_link(to_email: str, company_name: str, token: str) -> bool:
    body = (
        f"{company_name} has invited you to access their administration.\n\n"
        f"Open this link to accept the invitation:\n{invite_link(token)}\n\n"
        "You will also receive a separate email with a verification code."
    )
    return get_mailer().send(to_email, f"Invitation from {company_name}", body)


def send_otp(to_email: str, company_name: str, code: str) -> bool:
    minutes = current_app.config.get("OTP_TTL_MINUTES", 10)
    body = (
        f"Your verification code for {company_name} is: {code}\n\n"
        f"The code is valid for {minutes} minutes."
    )
    return get_mailer().send(to_email, "Your verification code", body)
