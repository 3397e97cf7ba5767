"""
Region identifier canonicalization.

Administrative codes carry meaningful leading zeros ("03153019"), but many
tools read them as integers and drop the zeros. Every identifier is therefore
compared as a fixed-width, zero-padded string.
"""

from __future__ import annotations

import math
from typing import Any

DEFAULT_ID_WIDTH = 8


def canonical_id(value: Any, width: int = DEFAULT_ID_WIDTH) -> str | None:
    """
    Return the canonical string form of a region identifier, or None when the
    value is empty or all zeros (the "no valid code" sentinel).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        # JSON numbers like 3153019.0 come from spreadsheets; fractional codes are not codes.
        if not math.isfinite(value) or not value.is_integer():
            return None
        value = int(value)
    s = str(value).strip()
    if not s:
        return None
    if s.isdigit():
        if set(s) == {"0"}:
            return None
        return s.zfill(width)
    return s


def id_variants(region_id: str) -> list[str]:
    """Both the padded form and the integer-parsed unpadded form, for matching stripped codes."""
    s = str(region_id).strip()
    if s.isdigit():
        unpadded = str(int(s))
        return [s] if unpadded == s else [s, unpadded]
    return [s]
