import logging
import os
import smtplib
from email.message import EmailMessage

logger = logging.getLogger(__name__)


class MailNotConfigured(RuntimeError):
    pass


def send_contact_message(name: str, email: str, message: str) -> None:
    """Relay a contact-form message to the shop inbox."""
    user = os.getenv("USER_EMAIL")
    password = os.getenv("USER_PASS")
    if not user or not password:
        raise MailNotConfigured("Mail relay credentials are not set")

    msg = EmailMessage()
    msg["From"] = user
    msg["Reply-To"] = email
    msg["To"] = user
    msg["Subject"] = f"New Message from {name}"
    msg.set_content(f"Name: {name}\nEmail: {email}\nMessage: {message}\n")

    host = os.getenv("SMTP_HOST", "smtp.gmail.com")
    port = int(os.getenv("SMTP_PORT", "587"))
    with smtplib.SMTP(host, port) as smtp:
        smtp.starttls()
        smtp.login(user, password)
        smtp.send_message(msg)
    logger.info("Contact message from %s relayed", email)
