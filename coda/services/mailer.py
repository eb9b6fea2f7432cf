"""SMTP mail relay for booking inquiries and contact messages.

The assistant never books lessons itself: it collects the details and
emails them to the teacher, who confirms personally.
"""

from __future__ import annotations

import html
import logging
import smtplib
import time
from dataclasses import dataclass, field
from email.message import EmailMessage

from coda.config import (
    BUSINESS_NAME,
    MAIL_FROM,
    OWNER_EMAIL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USERNAME,
)
from coda.services.metrics import metrics

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 20


class MailDeliveryError(Exception):
    """Raised when an email cannot be sent (unconfigured or SMTP failure)."""


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    text: str
    html: str | None = None
    reply_to: str | None = None


@dataclass
class BookingDetails:
    requested_times: list[str]
    location: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    lesson_type: str | None = None
    student_age: str | None = None
    notes: list[str] = field(default_factory=list)


class Mailer:
    """Sends ``OutgoingEmail`` over SMTP with STARTTLS."""

    def __init__(
        self,
        host: str | None = SMTP_HOST,
        port: int = SMTP_PORT,
        username: str | None = SMTP_USERNAME,
        password: str | None = SMTP_PASSWORD,
        sender: str | None = MAIL_FROM,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._sender = sender

    @property
    def configured(self) -> bool:
        return bool(self._host and self._sender)

    def _build(self, email: OutgoingEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = email.to
        msg["Subject"] = email.subject
        if email.reply_to:
            msg["Reply-To"] = email.reply_to
        msg.set_content(email.text)
        if email.html:
            msg.add_alternative(email.html, subtype="html")
        return msg

    def send(self, email: OutgoingEmail) -> None:
        """Deliver *email* or raise ``MailDeliveryError``."""
        if not self.configured:
            raise MailDeliveryError("Email is not configured (SMTP_HOST / MAIL_FROM unset).")

        t0 = time.perf_counter()
        try:
            with smtplib.SMTP(self._host, self._port, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
                smtp.starttls()
                if self._username and self._password:
                    smtp.login(self._username, self._password)
                smtp.send_message(self._build(email))
        except (smtplib.SMTPException, OSError) as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure("smtp", "send", error_type=type(exc).__name__, latency_ms=elapsed)
            logger.error("Failed to send email to %s: %s", email.to, exc)
            raise MailDeliveryError(f"Could not send email: {exc}") from exc

        metrics.record_success("smtp", "send", latency_ms=(time.perf_counter() - t0) * 1000)
        logger.info("Email sent to %s (%s)", email.to, email.subject)


# ── Message builders ─────────────────────────────────────────────────


def booking_inquiry_email(
    details: BookingDetails,
    *,
    conversation_summary: str | None = None,
    to: str = OWNER_EMAIL,
) -> OutgoingEmail:
    """Email to the teacher describing a lesson booking request."""
    rows = [
        ("Name", details.name),
        ("Email", details.email),
        ("Phone/WhatsApp", details.phone),
        ("Location", details.location),
        ("Requested times", ", ".join(details.requested_times)),
        ("Lesson type", details.lesson_type),
        ("Student age", details.student_age),
    ]
    present = [(label, value) for label, value in rows if value]

    text_lines = ["New lesson booking inquiry via the Coda assistant.", ""]
    text_lines += [f"{label}: {value}" for label, value in present]
    if conversation_summary:
        text_lines += ["", "Conversation summary:", conversation_summary]

    html_rows = "".join(
        f"<tr><th align='left'>{html.escape(label)}</th><td>{html.escape(str(value))}</td></tr>"
        for label, value in present
    )
    html_body = f"<h2>New Lesson Booking Inquiry</h2><table>{html_rows}</table>"
    if conversation_summary:
        html_body += f"<p><em>{html.escape(conversation_summary)}</em></p>"

    who = details.name or details.email or details.phone or "a prospective student"
    return OutgoingEmail(
        to=to,
        subject=f"Booking inquiry from {who}",
        text="\n".join(text_lines),
        html=html_body,
        reply_to=details.email,
    )


def contact_form_email(
    name: str,
    email: str,
    message: str,
    *,
    to: str = OWNER_EMAIL,
    business_name: str = BUSINESS_NAME,
) -> OutgoingEmail:
    """Email relaying a message typed into the chat contact form."""
    text = f"Name: {name}\nEmail: {email}\n\nMessage:\n{message}\n\n---\nSent via {business_name} contact form"
    html_body = (
        "<h2>New Contact Form Message</h2>"
        f"<p><strong>From:</strong> {html.escape(name)} ({html.escape(email)})</p>"
        f"<p>{html.escape(message).replace(chr(10), '<br>')}</p>"
        f"<hr><p><small>Sent via {html.escape(business_name)} contact form</small></p>"
    )
    return OutgoingEmail(
        to=to,
        subject=f"Contact Form: Message from {name}",
        text=text,
        html=html_body,
        reply_to=email,
    )
