# Backend/services/formatting.py
"""
Currency / percentage formatting and the commercial rounding rule.
Amounts are Colombian pesos (COP), formatted without decimals.
"""

import math
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple


def format_cop(value: float) -> str:
    """1500000 -> '$1.500.000' (dot thousands separator, no decimals)"""
    if value is None or not math.isfinite(value):
        return "N/A"
    rounded = int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    digits = f"{abs(rounded):,}".replace(",", ".")
    return f"-${digits}" if rounded < 0 else f"${digits}"


def format_percent(value: float) -> str:
    return f"{value:.2f}%"


def number_to_words(amount: float) -> str:
    """
    Spell an amount in millions / thousands of pesos, as used in approval letters.
    Below one million the amount reads as zero million.
    """
    millions = math.floor(amount / 1_000_000)
    if millions == 0:
        return "Zero million pesos"
    if millions == 1:
        return "One million pesos"
    thousands = math.floor((amount % 1_000_000) / 1000)
    if thousands > 0:
        return f"{millions} million {thousands} thousand pesos"
    return f"{millions} million pesos"


def _round_half_up(value: float, step: int) -> float:
    return math.floor(value / step + 0.5) * step


def commercial_round(amount: float) -> float:
    """
    Round a monetary amount to a 'commercial' figure:
    >= 100M to the nearest 10M, >= 10M to the nearest 1M, otherwise to the nearest 100K.
    """
    if amount >= 100_000_000:
        return _round_half_up(amount, 10_000_000)
    elif amount >= 10_000_000:
        return _round_half_up(amount, 1_000_000)
    else:
        return _round_half_up(amount, 100_000)


def commercial_step(amount: float) -> int:
    """Rounding step of the bracket an amount falls into"""
    if amount >= 100_000_000:
        return 10_000_000
    if amount >= 10_000_000:
        return 1_000_000
    return 100_000


def format_limit_detail(limit: float, term: int) -> str:
    """Detail line logged to the sheet for an approval"""
    return f"Limit: {format_cop(limit)} - Term: {term} days"


# Matches both the current English detail and the legacy Spanish one
# ("Cupo: $50.000.000 - Plazo: 30 días").
_DETAIL_PATTERN = re.compile(
    r"(?:limit|cupo)\s*:\s*\$?\s*([\d.,]+).*?(?:term|plazo)\s*:\s*(\d+)",
    re.IGNORECASE,
)


def parse_limit_detail(detail: Optional[str]) -> Tuple[Optional[float], Optional[int]]:
    """Recover (approved limit, term in days) from a sheet detail line"""
    if not detail:
        return None, None
    match = _DETAIL_PATTERN.search(detail)
    if not match:
        return None, None
    digits = re.sub(r"[.,]", "", match.group(1))
    if not digits:
        return None, None
    return float(digits), int(match.group(2))
