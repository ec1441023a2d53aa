"""
Precision constants and helpers for BTPC amounts.

All amounts inside the wallet core are integers in base units:

    1 BTP = 100,000,000 units (smallest indivisible unit)

User-facing strings carry at most 8 fractional digits and are parsed
exactly, never through ``float``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from btpc_wallet.errors import InvalidInput

# Number of decimal places for BTP amounts.
BTP_DECIMALS: int = 8

# 1 BTP expressed in base units.
UNITS_PER_BTP: int = 10 ** BTP_DECIMALS  # 100_000_000

# Largest value the u64 wire field can carry.
MAX_UNITS: int = 2 ** 64 - 1


def parse_amount(text: str) -> int:
    """Parse a decimal BTP string (``"1.23456789"``) into base units.

    >>> parse_amount("1.5")
    150000000
    >>> parse_amount("0.0001")
    10000
    """
    raw = text.strip()
    if not raw or raw.startswith(("-", "+")):
        raise InvalidInput(f"invalid amount: {text!r}")
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise InvalidInput(f"invalid amount: {text!r}") from exc
    if not value.is_finite():
        raise InvalidInput(f"invalid amount: {text!r}")
    if -value.as_tuple().exponent > BTP_DECIMALS:
        raise InvalidInput(f"too many decimals (max {BTP_DECIMALS}): {text!r}")
    units = int(value * UNITS_PER_BTP)
    if units > MAX_UNITS:
        raise InvalidInput(f"amount overflows: {text!r}")
    return units


def units_to_btp(units: int) -> Decimal:
    """Convert base units to an exact ``Decimal`` BTP value."""
    return Decimal(units) / UNITS_PER_BTP


def format_amount(units: int, currency: str = "BTP") -> str:
    """Return a human-readable string with 8 decimal places."""
    return f"{units_to_btp(units):.{BTP_DECIMALS}f} {currency}"
