"""Shared utilities used across the freight bot."""

import re
import unicodedata
from datetime import datetime, timezone
from typing import Callable, Optional

POSTAL_CODE_DIGITS = 8

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def normalize_postal_code(value: Optional[str]) -> Optional[str]:
    """Strip everything except digits; return None unless exactly 8 remain.

    Examples:
        >>> normalize_postal_code("01001-000")
        '01001000'
        >>> normalize_postal_code("01001000")
        '01001000'
        >>> normalize_postal_code("0100-1000x9") is None
        True
    """
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) != POSTAL_CODE_DIGITS:
        return None
    return digits


def strip_accents(value: str) -> str:
    """Lowercase, trim and remove diacritics ("Cotação" -> "cotacao")."""
    decomposed = unicodedata.normalize("NFD", value.lower().strip())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))
