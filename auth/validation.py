"""
auth/validation.py -- Input rules applied by the engine before storage is touched.

The API layer validates shape with Pydantic as well, but the engine is also
driven by the CLI and by tests, so it re-checks everything it relies on.
Each function returns a list of human-readable messages; empty means valid.
"""

from __future__ import annotations

import re

MAX_EMAIL_LENGTH = 100
MAX_NAME_LENGTH = 50

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
COUNTRY_PATTERN = r"^[A-Za-z]{2}$"

_EMAIL_RE = re.compile(EMAIL_PATTERN)
_PHONE_RE = re.compile(PHONE_PATTERN)
_COUNTRY_RE = re.compile(COUNTRY_PATTERN)


def email_errors(email: str | None) -> list[str]:
    if not email or not email.strip():
        return ["Email is required"]
    email = email.strip()
    if len(email) > MAX_EMAIL_LENGTH:
        return [f"Email must not exceed {MAX_EMAIL_LENGTH} characters"]
    if not _EMAIL_RE.match(email):
        return ["Invalid email format"]
    return []


def profile_errors(
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
    country: str | None = None,
    locale: str | None = None,
) -> list[str]:
    """Check the optional profile fields. None means "not provided"."""
    errors: list[str] = []
    if first_name and len(first_name) > MAX_NAME_LENGTH:
        errors.append(f"First name must not exceed {MAX_NAME_LENGTH} characters")
    if last_name and len(last_name) > MAX_NAME_LENGTH:
        errors.append(f"Last name must not exceed {MAX_NAME_LENGTH} characters")
    if phone and not _PHONE_RE.match(phone):
        errors.append("Invalid phone number format")
    if country and not _COUNTRY_RE.match(country):
        errors.append("Country code must be 2 characters (ISO format)")
    if locale is not None and not (2 <= len(locale) <= 10):
        errors.append("Locale must be between 2 and 10 characters")
    return errors


def normalize_email(email: str) -> str:
    """Canonical form used for storage, lookup and uniqueness."""
    return email.strip().lower()
