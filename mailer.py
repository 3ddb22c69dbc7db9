import logging
import secrets
import smtplib
from email.message import EmailMessage

import config
from errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


def generate_verification_code() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def send_verification_email(email: str, code: str) -> dict:
    """Email the signup code. Without SMTP settings the code is only logged."""
    if not config.SMTP_HOST:
        logger.info("TEST MODE: verification code for %s is %s", email, code)
        return {"success": True, "test_mode": True}

    msg = EmailMessage()
    msg["Subject"] = "Campus Commerce - Email Verification"
    msg["From"] = config.SMTP_FROM
    msg["To"] = email
    msg.set_content(
        f"Your Campus Commerce verification code is {code}.\n\n"
        f"It expires in {config.VERIFICATION_TTL_MINUTES} minutes. "
        "If you did not request this, ignore this email."
    )
    try:
        with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=10) as server:
            server.ehlo()
            server.starttls()
            if config.SMTP_USER and config.SMTP_PASS:
                server.login(config.SMTP_USER, config.SMTP_PASS)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send verification email to %s", email)
        raise ServiceUnavailableError("Failed to send verification code")
    logger.info("Verification email sent to %s", email)
    return {"success": True, "test_mode": False}
