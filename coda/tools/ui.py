"""Widget and booking tools.

The ``show_*`` tools and ``initiate_booking`` answer with a short intro line
plus an attachment the chat widget renders (buttons, forms, tables).  The
``send_*`` tools relay messages to the teacher by email; nothing is ever
booked directly.
"""

from __future__ import annotations

import logging
import re
from typing import Literal

from langchain_core.messages import AnyMessage, HumanMessage
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from coda.config import BUSINESS_NAME, OWNER_EMAIL, TEACHER_NAME
from coda.engine.dispatcher import ToolErr, ToolOk, ToolSpec
from coda.services import ui_resources
from coda.services.mailer import (
    BookingDetails,
    MailDeliveryError,
    Mailer,
    booking_inquiry_email,
    contact_form_email,
)

logger = logging.getLogger(__name__)

mailer = Mailer()

Locale = Literal["en", "zh"]

# RFC 5322-ish pattern: covers the vast majority of real-world emails
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)


def _validate_email(email: str | None) -> str | None:
    """Return an error message if *email* looks invalid, else ``None``."""
    if not email or not email.strip():
        return "No email address was provided. Please ask the user for their email."
    email = email.strip()
    if not _EMAIL_RE.match(email):
        return (
            f'"{email}" does not look like a valid email address. '
            "Please ask the user to double-check and provide a corrected email."
        )
    return None


def _has_user_turns(transcript: list[AnyMessage]) -> bool:
    return any(isinstance(turn, HumanMessage) for turn in transcript)


def _pick(locale: str, en: str, zh: str) -> str:
    return zh if locale == "zh" else en


# ── Argument models ──────────────────────────────────────────────────


class LocaleArgs(BaseModel):
    locale: Locale = Field(default="en", description="Language preference (en or zh).")


class ContactButtonsArgs(LocaleArgs):
    context: str | None = Field(
        default=None,
        description='Why the buttons are shown, e.g. "general-inquiry".',
    )


class BookingDetailsArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    requested_times: list[str] = Field(
        min_length=1,
        description='Requested lesson times, e.g. ["Tuesday 3pm", "Wednesday 10am"].',
    )
    location: str = Field(min_length=1, description='Where the lessons would be, e.g. "Lucan".')
    name: str | None = Field(default=None, description="Customer name (recommended).")
    email: str | None = Field(default=None, description="Customer email (required if no phone).")
    phone: str | None = Field(default=None, description="Customer phone (required if no email).")
    lesson_type: str | None = Field(default=None, description='e.g. "30-minute individual".')
    student_age: str | None = Field(default=None, description="Age of the student.")

    def has_contact(self) -> bool:
        return bool(self.name or self.email or self.phone)


class BookingActionArgs(LocaleArgs):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    booking_details: BookingDetailsArgs


class InitiateBookingArgs(LocaleArgs):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    lesson_type: str = Field(min_length=1, description='"individual" or "group".')


class ContactEmailArgs(LocaleArgs):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(min_length=1, description="Sender name.")
    email: str = Field(description="Sender email address.")
    message: str = Field(min_length=1, description="Message content.")
    business_name: str | None = Field(default=None, description="Business name shown in the footer.")


class BookingInquiryArgs(LocaleArgs):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    booking_details: BookingDetailsArgs


# ── Handlers ─────────────────────────────────────────────────────────


def show_contact_buttons(args: ContactButtonsArgs, transcript: list[AnyMessage]) -> ToolOk:
    summary = (
        ui_resources.whatsapp_summary(transcript, args.locale)
        if _has_user_turns(transcript) else None
    )
    return ToolOk(
        _pick(args.locale, "Here are some quick ways to get in touch:", "这里有一些快速联系方式："),
        attachment=ui_resources.contact_buttons(args.locale, context=args.context, summary=summary),
    )


def show_booking_action_buttons(args: BookingActionArgs, transcript: list[AnyMessage]) -> ToolOk | ToolErr:
    details = args.booking_details
    if not details.has_contact():
        return ToolErr(
            "missing_contact",
            "booking buttons need a name, email or phone; collect contact details first",
        )
    summary = ui_resources.whatsapp_summary(
        transcript, args.locale, details.model_dump(exclude_none=True),
    )
    return ToolOk(
        _pick(
            args.locale,
            "Perfect! How would you like to send your booking request?",
            "很好！请选择您想如何发送预订请求：",
        ),
        attachment=ui_resources.booking_action_buttons(
            args.locale, details.model_dump(by_alias=True, exclude_none=True), summary,
        ),
    )


def show_email_form(args: LocaleArgs, transcript: list[AnyMessage]) -> ToolOk:
    return ToolOk(
        _pick(
            args.locale,
            f"Please fill out the form below and I'll send your details to {TEACHER_NAME}:",
            f"请填写下面的表格，我会把您的信息发送给 {TEACHER_NAME}：",
        ),
        attachment=ui_resources.email_form(args.locale),
    )


def show_pricing_table(args: LocaleArgs, transcript: list[AnyMessage]) -> ToolOk:
    return ToolOk(
        _pick(args.locale, "Here's our lesson pricing:", "这是我们的课程价格："),
        attachment=ui_resources.pricing_table(args.locale),
    )


def initiate_booking(args: InitiateBookingArgs, transcript: list[AnyMessage]) -> ToolOk:
    if args.lesson_type == "individual":
        lesson_name = _pick(args.locale, "individual lessons", "一对一课程")
    else:
        lesson_name = _pick(args.locale, "group lessons", "小组课程")
    summary = (
        ui_resources.whatsapp_summary(transcript, args.locale)
        if _has_user_turns(transcript) else None
    )
    return ToolOk(
        _pick(
            args.locale,
            f"Great! You're interested in {lesson_name}. How would you like to get in touch?",
            f"太好了！您想预订{lesson_name}。请选择您的联系方式：",
        ),
        attachment=ui_resources.contact_buttons(
            args.locale, context=f"booking-{args.lesson_type}", summary=summary,
        ),
    )


def send_contact_email(args: ContactEmailArgs, transcript: list[AnyMessage]) -> ToolOk | ToolErr:
    email_error = _validate_email(args.email)
    if email_error:
        return ToolErr("invalid_email", email_error)

    try:
        mailer.send(contact_form_email(
            args.name,
            args.email.strip(),
            args.message,
            to=OWNER_EMAIL,
            business_name=args.business_name or BUSINESS_NAME,
        ))
    except MailDeliveryError as exc:
        return ToolErr("mail_failed", str(exc))

    return ToolOk(_pick(
        args.locale,
        f"Your email has been sent successfully! {TEACHER_NAME} will get back to you soon.",
        f"您的邮件已成功发送！{TEACHER_NAME} 会尽快回复您。",
    ))


def send_booking_inquiry(args: BookingInquiryArgs, transcript: list[AnyMessage]) -> ToolOk | ToolErr:
    details = args.booking_details
    if not details.has_contact():
        return ToolErr("missing_contact", "a name, email or phone is needed before sending")
    if details.email:
        email_error = _validate_email(details.email)
        if email_error:
            return ToolErr("invalid_email", email_error)

    summary = (
        ui_resources.whatsapp_summary(transcript, args.locale)
        if _has_user_turns(transcript) else None
    )
    inquiry = booking_inquiry_email(
        BookingDetails(
            requested_times=details.requested_times,
            location=details.location,
            name=details.name,
            email=details.email.strip() if details.email else None,
            phone=details.phone,
            lesson_type=details.lesson_type,
            student_age=details.student_age,
        ),
        conversation_summary=summary,
    )
    try:
        mailer.send(inquiry)
    except MailDeliveryError as exc:
        return ToolErr("mail_failed", str(exc))

    logger.info("Booking inquiry sent for %s", details.location)
    return ToolOk(_pick(
        args.locale,
        f"Your booking request has been sent to {TEACHER_NAME}, who will confirm the time personally.",
        f"您的预订请求已发送给 {TEACHER_NAME}，老师会亲自与您确认时间。",
    ))


UI_TOOLS = [
    ToolSpec(
        name="show_contact_buttons",
        description=(
            "Show contact buttons (contact page and WhatsApp). Use when the user asks how "
            "to get in touch, but NOT after collecting booking details."
        ),
        args_schema=ContactButtonsArgs,
        handler=show_contact_buttons,
    ),
    ToolSpec(
        name="show_booking_action_buttons",
        description=(
            "Show 'Send email' and 'WhatsApp' buttons AFTER collecting booking details. "
            "Requires a location, requested times and at least one of name, email or phone."
        ),
        args_schema=BookingActionArgs,
        handler=show_booking_action_buttons,
    ),
    ToolSpec(
        name="show_email_form",
        description="Show an email contact form. Use when the user explicitly wants to send an email.",
        args_schema=LocaleArgs,
        handler=show_email_form,
    ),
    ToolSpec(
        name="show_pricing_table",
        description=(
            "Show the lesson pricing table with 'Book now' buttons. Use when the user asks "
            "about prices, costs or rates."
        ),
        args_schema=LocaleArgs,
        handler=show_pricing_table,
    ),
    ToolSpec(
        name="initiate_booking",
        description=(
            "Called when the user clicks a 'Book now' button. Shows contact options so the "
            "user can choose how to proceed."
        ),
        args_schema=InitiateBookingArgs,
        handler=initiate_booking,
    ),
    ToolSpec(
        name="send_contact_email",
        description="Called when the user submits the email form. Sends the message to the teacher.",
        args_schema=ContactEmailArgs,
        handler=send_contact_email,
    ),
    ToolSpec(
        name="send_booking_inquiry",
        description=(
            "Email the collected booking details to the teacher, who confirms the lesson "
            "personally. Only call once the user has agreed to send the request."
        ),
        args_schema=BookingInquiryArgs,
        handler=send_booking_inquiry,
    ),
]
