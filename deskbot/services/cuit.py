"""CUIT (Argentine tax id) helpers and peso formatting."""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from deskbot.logging_config import mask_cuit

__all__ = ["clean_cuit", "validate_cuit", "format_cuit", "mask_cuit", "format_ars", "find_cuit"]

_CUIT_MULTIPLIERS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)
CUIT_PATTERN = re.compile(r"(?<!\d)(\d{2})[-. ]?(\d{8})[-. ]?(\d)(?!\d)")


def clean_cuit(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def validate_cuit(value: Optional[str]) -> bool:
    """Check length and the mod-11 verifier digit."""
    digits = clean_cuit(value)
    if len(digits) != 11:
        return False

    total = sum(int(d) * m for d, m in zip(digits[:10], _CUIT_MULTIPLIERS))
    remainder = total % 11
    check_digit = remainder if remainder < 2 else 11 - remainder
    return check_digit == int(digits[10])


def format_cuit(value: Optional[str]) -> str:
    digits = clean_cuit(value)
    if len(digits) != 11:
        return value or ""
    return f"{digits[:2]}-{digits[2:10]}-{digits[10]}"


def find_cuit(text: Optional[str]) -> Optional[str]:
    """First 11-digit id in free text, cleaned."""
    match = CUIT_PATTERN.search(text or "")
    if not match:
        return None
    return "".join(match.groups())


def format_ars(value: Union[int, float, Decimal, str, None]) -> str:
    """Format pesos: ``1500 -> $1.500``, ``1500.5 -> $1.500,50``."""
    if value is None:
        return "$0"
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return "$0"

    sign = "-" if amount < 0 else ""
    integer, _, decimals = f"{abs(amount):.2f}".partition(".")
    grouped = f"{int(integer):,}".replace(",", ".")
    if decimals == "00":
        return f"{sign}${grouped}"
    return f"{sign}${grouped},{decimals}"
