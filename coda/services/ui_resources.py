"""Attachment payloads for the chat widget.

Presentation tools answer with a one-line intro plus one of these payloads.
The engine forwards them verbatim; only the widget interprets ``kind`` and
``data``.
"""

from __future__ import annotations

import re
import uuid
from typing import Any
from urllib.parse import quote

from langchain_core.messages import AnyMessage, HumanMessage

from coda.config import (
    BUSINESS_NAME,
    BUSINESS_PHONE,
    CONTACT_PAGE_URL,
    OWNER_EMAIL,
    WHATSAPP_NUMBER,
)
from coda.engine.provider import content_text

MIME_TYPE = "application/vnd.coda.widget+json"
WHATSAPP_SUMMARY_MAX_CHARS = 250

_TIME_KEYWORDS = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "morning", "afternoon", "evening", "am", "pm",
)
_NAME_RE = re.compile(r"(?:my name is|i'm|i am|called)\s+([a-zA-Z]+)", re.IGNORECASE)
_LOCATION_RE = re.compile(
    r"(?:\bin|\bfrom|\barea|\blocation)\s+([a-zA-Z ]+?)(?:\.|,|$|\s+for|\s+looking)",
    re.IGNORECASE,
)

_DEFAULT_WHATSAPP = {
    "en": "Hi! I'd like to enquire about piano lessons.",
    "zh": "你好！我想咨询钢琴课程。",
}


def _resource(kind: str, locale: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "resource",
        "resource": {
            "uri": f"ui://coda/{kind}/{uuid.uuid4().hex[:12]}",
            "mimeType": MIME_TYPE,
            "kind": kind,
            "locale": locale,
            "data": data,
        },
    }


def whatsapp_link(message: str, number: str = WHATSAPP_NUMBER) -> str:
    return f"https://wa.me/{re.sub(r'[^0-9]', '', number)}?text={quote(message)}"


def whatsapp_summary(
    turns: list[AnyMessage],
    locale: str = "en",
    booking_details: dict[str, Any] | None = None,
) -> str:
    """Pre-filled WhatsApp message from booking details or, failing that,
    from what the user said in the conversation."""
    zh = locale == "zh"
    if booking_details:
        times = booking_details.get("requested_times") or []
        name = booking_details.get("name")
        location = booking_details.get("location")
        if zh:
            parts = ["你好！"]
            if name:
                parts.append(f"我叫{name}。")
            if location:
                parts.append(f"我在{location}。")
            parts.append(f"我想预订{'或'.join(times)}的钢琴课程。" if times else "我想咨询钢琴课程。")
            if booking_details.get("student_age"):
                parts.append(f"学生年龄：{booking_details['student_age']}岁。")
            return "".join(parts)[:WHATSAPP_SUMMARY_MAX_CHARS]

        parts = ["Hi!"]
        if name:
            parts.append(f"I'm {name}" + (f" from {location}." if location else "."))
        elif location:
            parts.append(f"I'm from {location}.")
        if times:
            parts.append(f"I'm looking to book piano lessons at {' or '.join(times)}.")
        else:
            parts.append("I'm interested in piano lessons.")
        if booking_details.get("student_age"):
            parts.append(f"Student age: {booking_details['student_age']}.")
        if booking_details.get("lesson_type"):
            parts.append(f"Looking for {booking_details['lesson_type']}.")
        return " ".join(parts)[:WHATSAPP_SUMMARY_MAX_CHARS]

    user_texts = [content_text(t.content) for t in turns if isinstance(t, HumanMessage)]
    if not user_texts:
        return _DEFAULT_WHATSAPP["zh" if zh else "en"]

    joined = " ".join(user_texts)
    name_match = _NAME_RE.search(joined)
    location_match = _LOCATION_RE.search(joined)
    time_mentions = [t for t in user_texts if any(k in t.lower().split() for k in _TIME_KEYWORDS)]

    parts = ["你好！" if zh else "Hi!"]
    if name_match:
        parts.append(f"我叫{name_match.group(1)}。" if zh else f"I'm {name_match.group(1)}.")
    if location_match:
        place = location_match.group(1).strip()
        parts.append(f"我在{place}。" if zh else f"I'm from {place}.")
    if time_mentions:
        parts.append(("我方便的时间：" if zh else "Times that suit me: ") + time_mentions[-1].strip())
    else:
        parts.append(_DEFAULT_WHATSAPP["zh" if zh else "en"].split("！" if zh else "! ", 1)[-1])
    return " ".join(parts)[:WHATSAPP_SUMMARY_MAX_CHARS]


def contact_buttons(
    locale: str = "en",
    *,
    context: str | None = None,
    summary: str | None = None,
) -> dict[str, Any]:
    message = summary or _DEFAULT_WHATSAPP.get(locale, _DEFAULT_WHATSAPP["en"])
    return _resource("contact-buttons", locale, {
        "context": context,
        "contactPageUrl": CONTACT_PAGE_URL,
        "whatsappUrl": whatsapp_link(message),
        "phone": BUSINESS_PHONE,
    })


def booking_action_buttons(locale: str, booking_details: dict[str, Any], summary: str) -> dict[str, Any]:
    return _resource("booking-actions", locale, {
        "bookingDetails": booking_details,
        "email": OWNER_EMAIL,
        "whatsappUrl": whatsapp_link(summary),
    })


def email_form(locale: str = "en") -> dict[str, Any]:
    return _resource("email-form", locale, {
        "recipient": OWNER_EMAIL,
        "businessName": BUSINESS_NAME,
        "fields": ["name", "email", "message"],
    })


def pricing_table(locale: str = "en", prices: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return _resource("pricing-table", locale, {
        "currency": "EUR",
        "rows": prices or DEFAULT_PRICES,
        "bookAction": "initiate_booking",
    })


DEFAULT_PRICES: list[dict[str, Any]] = [
    {"lessonType": "individual", "minutes": 30, "price": 30},
    {"lessonType": "individual", "minutes": 45, "price": 40},
    {"lessonType": "individual", "minutes": 60, "price": 50},
    {"lessonType": "group", "minutes": 60, "price": 20, "perStudent": True},
]
