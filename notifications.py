"""
Email and SMS delivery.

Email goes out over SMTP when ``SMTP_HOST`` is configured; otherwise the
message is written to the log so local setups still expose OTP codes. SMS
goes through Twilio when its credentials are set and is logged otherwise.
Delivery returns True/False and never raises, so a mail or SMS outage cannot
undo a registration that already committed.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from config import (
    EMAIL_FROM_ADDRESS,
    EMAIL_FROM_NAME,
    OTP_TTL_MINUTES,
    PASSWORD_RESET_TTL_MINUTES,
    SMS_PROVIDER,
    SMTP_HOST,
    SMTP_PASS,
    SMTP_PORT,
    SMTP_USER,
    TWILIO_ACCOUNT_SID,
    TWILIO_AUTH_TOKEN,
    TWILIO_FROM_NUMBER,
)

logger = logging.getLogger(__name__)


def send_email(to_email: str, subject: str, text_content: str) -> bool:
    if not SMTP_HOST:
        logger.warning("[Email] SMTP not configured; message to %s: %s | %s", to_email, subject, text_content)
        return False

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = f"{EMAIL_FROM_NAME} <{EMAIL_FROM_ADDRESS}>"
    message["To"] = to_email
    message.attach(MIMEText(text_content, "plain"))

    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as server:
            server.starttls()
            if SMTP_USER and SMTP_PASS:
                server.login(SMTP_USER, SMTP_PASS)
            server.sendmail(EMAIL_FROM_ADDRESS, [to_email], message.as_string())
    except (smtplib.SMTPException, OSError):
        logger.exception("[Email] Failed to send email to %s", to_email)
        return False

    logger.info("[Email] Sent '%s' to %s", subject, to_email)
    return True


def twilio_configured() -> bool:
    return bool(TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER)


def send_sms(to_mobile: str, text_content: str) -> bool:
    if SMS_PROVIDER not in ("twilio", "console"):
        logger.error("[SMS] Unknown SMS provider %r; message to %s not sent", SMS_PROVIDER, to_mobile)
        return False
    if SMS_PROVIDER == "console" or not twilio_configured():
        logger.warning("[SMS] console provider; message to %s: %s", to_mobile, text_content)
        return True

    # Twilio expects E.164 numbers, e.g. +919999999999
    try:
        message = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN).messages.create(
            body=text_content,
            from_=TWILIO_FROM_NUMBER,
            to=to_mobile,
        )
    except (TwilioException, OSError):
        logger.exception("[SMS] Failed to send SMS to %s", to_mobile)
        return False

    logger.info("[SMS] Sent message %s to %s", message.sid, to_mobile)
    return True


def send_email_otp(to_email: str, otp: str) -> bool:
    return send_email(
        to_email,
        "Your verification code",
        f"Your email verification code is {otp}. It expires in {OTP_TTL_MINUTES} minutes.",
    )


def send_mobile_otp(to_mobile: str, otp: str) -> bool:
    return send_sms(to_mobile, f"Your verification code is {otp}. It expires in {OTP_TTL_MINUTES} minutes.")


def send_password_reset(to_email: str, reset_link: str) -> bool:
    return send_email(
        to_email,
        "Reset your password",
        f"Reset your password using this link:\n{reset_link}\n(Link valid for {PASSWORD_RESET_TTL_MINUTES} minutes)",
    )
