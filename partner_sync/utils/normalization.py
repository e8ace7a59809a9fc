"""
Value normalization utilities for remote record parsing and identity keys.

Provides consistent normalization of the loosely-typed values the PRM returns
so that eligibility rules and identity lookups compare like with like.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

# Length of the short (case-sensitive) form of an external CRM ID
SHORT_CRM_ID_LENGTH = 15

# Length of the long (case-insensitive checksum) form of an external CRM ID
LONG_CRM_ID_LENGTH = 18

_TRUE_VALUES = {"1", "true", "yes", "y"}
_FALSE_VALUES = {"0", "false", "no", "n"}


def normalize_text(value: Any) -> str | None:
    """
    Normalize a remote text value.

    Args:
        value: Raw value from an API payload

    Returns:
        Stripped string with inner whitespace collapsed, or None when the value
        is missing or blank
    """
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


def normalize_email(value: Any) -> str | None:
    """
    Normalize an email address for storage and lookup.

    Lowercases and strips the address. No validation is performed here;
    malformed addresses are the eligibility filter's concern.
    """
    text = normalize_text(value)
    if text is None:
        return None
    return text.replace(" ", "").lower()


def name_key(value: Any) -> str | None:
    """
    Build the case-insensitive lookup key for a display name.

    Args:
        value: Display name

    Returns:
        Casefolded name with collapsed whitespace, or None when blank
    """
    text = normalize_text(value)
    return text.casefold() if text else None


def email_domain(email: str | None) -> str:
    """Return the lowercase domain part of an email address, or ''."""
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].lower()


def email_local_part(email: str | None) -> str:
    """Return the lowercase local part of an email address, or ''."""
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[0].lower()


def is_valid_email(email: str | None) -> bool:
    """
    Check that an email address has a non-empty local part and domain.

    Args:
        email: Address to check

    Returns:
        True if the address is structurally usable
    """
    if not email or "@" not in email:
        return False
    local, _, domain = email.rpartition("@")
    return bool(local) and bool(domain)


def short_crm_id(crm_id: str | None) -> str | None:
    """
    Get the 15-character prefix of a long external CRM ID.

    Only 18-character IDs have a short form; anything else returns None so
    that a short ID can never be widened to match a long one.
    """
    if crm_id and len(crm_id) == LONG_CRM_ID_LENGTH:
        return crm_id[:SHORT_CRM_ID_LENGTH]
    return None


def parse_bool(value: Any) -> bool | None:
    """
    Parse a remote boolean that may arrive as a bool or a yes/no string.

    Returns:
        True/False, or None when the value is missing or unrecognized
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a remote ISO-8601 timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC. A trailing 'Z' is accepted.

    Returns:
        Aware datetime in UTC, or None when the value is missing or invalid
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = normalize_text(value)
        if text is None:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
