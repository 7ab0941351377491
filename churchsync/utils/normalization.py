"""Data normalization utilities for identity matching."""

import re
from typing import Any, Optional


def strip_phone(phone: Optional[str]) -> str:
    """
    Remove every non-digit character, preserving a leading "+".

    "+233 (24) 412-3456" → "+233244123456", "024 412 3456" → "0244123456"
    """
    if not phone:
        return ""
    cleaned = phone.strip()
    digits = re.sub(r"\D", "", cleaned)
    if not digits:
        return ""
    return f"+{digits}" if cleaned.startswith("+") else digits


def normalize_phone(
    phone: Optional[str], default_country_code: Optional[str] = None
) -> Optional[str]:
    """
    Normalize a phone number for storage and matching.

    Without a default country code this is ``strip_phone``. With one (e.g.
    "233"), numbers are expanded to E.164:
    - "0244123456" (national trunk prefix) → "+233244123456"
    - "00233244123456" (international prefix) → "+233244123456"
    - "233244123456" → "+233244123456"
    - "+233244123456" → unchanged

    Args:
        phone: Raw phone input
        default_country_code: Calling code without "+", or None

    Returns:
        Normalized phone or None if there are no digits
    """
    stripped = strip_phone(phone)
    if not stripped:
        return None
    if stripped.startswith("+") or not default_country_code:
        return stripped

    code = default_country_code.lstrip("+")
    if stripped.startswith("00"):
        return f"+{stripped[2:]}"
    if stripped.startswith("0"):
        return f"+{code}{stripped[1:]}"
    if stripped.startswith(code) and len(stripped) > len(code) + 6:
        return f"+{stripped}"
    return stripped


def phone_match_variants(
    phone: Optional[str], default_country_code: Optional[str] = None
) -> list[str]:
    """
    All stored spellings that denote the same number.

    Rows written before E.164 normalization may hold the national form
    ("0244123456") or bare digits, so lookups compare against each variant.
    """
    variants: list[str] = []

    def _add(value: Optional[str]) -> None:
        if value and value not in variants:
            variants.append(value)

    canonical = normalize_phone(phone, default_country_code)
    _add(canonical)
    _add(strip_phone(phone))
    if canonical and default_country_code:
        code_prefix = f"+{default_country_code.lstrip('+')}"
        if canonical.startswith(code_prefix):
            national = canonical[len(code_prefix):]
            _add(f"0{national}")
            _add(canonical[1:])
    return variants


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Args:
        email: Raw email input

    Returns:
        Lowercased email or None if empty
    """
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def normalize_name(name: Optional[str]) -> Optional[str]:
    """Strip whitespace and collapse multiple spaces."""
    if not name:
        return None
    collapsed = " ".join(name.split())
    return collapsed or None


def is_empty(value: Any) -> bool:
    """Empty in the record store sense: None, blank string, or empty list."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False
