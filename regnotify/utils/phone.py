"""Phone number normalization for SMS delivery."""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """Normalize a North American phone number to E.164.

    - 10 digits ``8325551234`` -> ``+18325551234``
    - 11 digits starting with 1 -> ``+18325551234``
    - Anything already in ``+<digits>`` form is kept as-is

    Args:
        raw: Phone number as typed by staff or the customer

    Returns:
        E.164 string, or None when the input cannot be normalized
    """
    if not raw or not raw.strip():
        return None

    stripped = raw.strip()
    digits = _NON_DIGITS.sub("", stripped)

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if stripped.startswith("+") and 8 <= len(digits) <= 15:
        return f"+{digits}"

    return None
