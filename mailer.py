"""
Outgoing mail.

Without SMTP_HOST the message is written to the log instead of being
delivered, which is what development and tests rely on.
"""
import logging
import os
import smtplib
from email.message import EmailMessage

log = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@bookstore.local")


def send_email(to_email: str, subject: str, body: str):
    if not SMTP_HOST:
        log.info("EMAIL to=%s subject=%r\n%s", to_email, subject, body)
        return
    msg = EmailMessage()
    msg["From"] = MAIL_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as smtp:
            smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASSWORD or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError):
        # runs as a background task; the request has already been answered
        log.exception("Failed to send email to %s", to_email)
        return
    log.info("Sent %r to %s", subject, to_email)


def send_otp_email(email: str, code: str, ttl_minutes: int = 5):
    subject = "Your password reset code"
    body = (
        f"Your one-time code is {code}.\n\n"
        f"It expires in {ttl_minutes} minutes. If you did not ask to reset your password, ignore this email.\n"
    )
    send_email(email, subject, body)
