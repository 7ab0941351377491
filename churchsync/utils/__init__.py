"""Utility modules."""

from churchsync.utils.formula import And, Eq, IsBlank, IsTrue, LinkContains, LowerEq, NotEq, Or
from churchsync.utils.normalization import (
    normalize_email,
    normalize_name,
    normalize_phone,
    phone_match_variants,
)

__all__ = [
    "And",
    "Eq",
    "IsBlank",
    "IsTrue",
    "LinkContains",
    "LowerEq",
    "NotEq",
    "Or",
    "normalize_email",
    "normalize_name",
    "normalize_phone",
    "phone_match_variants",
]
