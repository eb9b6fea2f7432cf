"""Centralized configuration for the Coda assistant backend.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/coda/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/coda/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_secret(name: str) -> str | None:
    """Return a secret from env-var or SSM, or ``None`` when unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _optional_secret(name)
    if value:
        return value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /coda/{name} (AWS)."
    )


def _int_env(name: str, default: int, minimum: int | None = None) -> int:
    value = int(os.getenv(name, str(default)))
    if minimum is not None and value < minimum:
        raise OSError(f"Invalid configuration: {name}={value} (must be at least {minimum}).")
    return value


# ── LLM ─────────────────────────────────────────────────────────────
AI_API_KEY: str = _require_env("AI_API_KEY")
AI_PROVIDER: str = os.getenv("AI_PROVIDER", "anthropic").lower()
AI_MODEL: str = os.getenv(
    "AI_MODEL",
    "gpt-4o-mini" if AI_PROVIDER == "openai" else "claude-sonnet-4-5",
)

# ── Session quotas ──────────────────────────────────────────────────
MAX_MESSAGES_PER_SESSION: int = _int_env("MAX_MESSAGES_PER_SESSION", 25, minimum=1)
SESSION_TTL_HOURS: int = _int_env("SESSION_TTL_HOURS", 24)
MAX_SESSIONS_PER_ORIGIN_PER_DAY: int = _int_env("MAX_SESSIONS_PER_ORIGIN_PER_DAY", 3)
SESSION_SWEEP_INTERVAL_SECONDS: int = _int_env("SESSION_SWEEP_INTERVAL_SECONDS", 3600)

# ── Agent loop ──────────────────────────────────────────────────────
MAX_HISTORY_TURNS: int = _int_env("MAX_HISTORY_TURNS", 20, minimum=1)
MAX_TOOL_ITERATIONS: int = _int_env("MAX_TOOL_ITERATIONS", 5, minimum=1)

# ── Knowledge base ──────────────────────────────────────────────────
KNOWLEDGE_DIR: Path = Path(
    os.getenv("KNOWLEDGE_DIR", str(Path(__file__).resolve().parent.parent / "knowledge"))
)

# ── Calendly (optional: availability tool degrades gracefully) ──────
CALENDLY_API_TOKEN: str | None = _optional_secret("CALENDLY_API_TOKEN")
CALENDLY_BASE_URL: str = "https://api.calendly.com"
STUDIO_TIMEZONE: str = os.getenv("STUDIO_TIMEZONE", "Europe/Dublin")

# ── Mail (optional: booking / contact emails degrade gracefully) ────
SMTP_HOST: str | None = os.getenv("SMTP_HOST")
SMTP_PORT: int = _int_env("SMTP_PORT", 587)
SMTP_USERNAME: str | None = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD: str | None = _optional_secret("SMTP_PASSWORD")
MAIL_FROM: str | None = os.getenv("MAIL_FROM") or SMTP_USERNAME
OWNER_EMAIL: str = os.getenv("OWNER_EMAIL", "studio@example.com")

# ── Business details ────────────────────────────────────────────────
BUSINESS_NAME: str = os.getenv("BUSINESS_NAME", "CC Piano")
TEACHER_NAME: str = os.getenv("TEACHER_NAME", "CC")
BUSINESS_PHONE: str = os.getenv("BUSINESS_PHONE", "+353 00 000 0000")
WHATSAPP_NUMBER: str = os.getenv("WHATSAPP_NUMBER", "353000000000")
CONTACT_PAGE_URL: str = os.getenv("CONTACT_PAGE_URL", "https://example.com/contact")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _int_env("SERVER_PORT", 8000)
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
