"""Lossless conversion between decimal amounts and integer base units.

All conversion goes through ``decimal.Decimal`` string parsing. Floats are
never used: a binary float cannot represent most decimal fractions and the
error shows up in the last base unit.
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Union

from swapflow.errors import InvalidAmount
from swapflow.swap.transactions import MAX_UINT256

# Enough precision for 2**256 and 77 fractional digits
_PRECISION = 200

# Digits of the largest uint256 value
_MAX_UINT256_DIGITS = len(str(MAX_UINT256))


def _parse(value: Union[str, int, Decimal]) -> Decimal:
    if isinstance(value, float):
        raise InvalidAmount("Amounts must be given as strings, not floats.")
    if isinstance(value, (int, Decimal)):
        value = str(value)
    if not isinstance(value, str):
        raise InvalidAmount(f"Invalid amount: {value!r}")

    text = value.strip()
    if not text:
        raise InvalidAmount("Enter an amount.")
    if "," in text or "_" in text:
        raise InvalidAmount(f"Invalid amount: {value!r}")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            raise InvalidAmount(f"Invalid amount: {value!r}")

    if not parsed.is_finite():
        raise InvalidAmount(f"Invalid amount: {value!r}")
    return parsed


def to_base_units(
    amount: Union[str, int, Decimal],
    decimals: int,
    *,
    require_positive: bool = True,
) -> str:
    """Convert a decimal amount to an integer string of base units.

    Extra fractional digits beyond ``decimals`` are truncated, never rounded.

    Examples:
        >>> to_base_units("1.23456789", 6)
        '1234567'
        >>> to_base_units("1.5e-3", 18)
        '1500000000000000'

    Raises:
        InvalidAmount: non-numeric, NaN/Infinity or negative input; more
            base units than a uint256 holds; zero or an amount that
            truncates to zero when ``require_positive`` is set
    """
    if decimals < 0:
        raise InvalidAmount(f"Invalid decimals: {decimals}")

    parsed = _parse(amount)
    if parsed < 0:
        raise InvalidAmount("Amount cannot be negative.")
    # Bound the size before building the integer
    if parsed and parsed.adjusted() + decimals >= _MAX_UINT256_DIGITS:
        raise InvalidAmount("Amount is too large.")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = parsed.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN)

    base_units = int(scaled)
    if base_units > MAX_UINT256:
        raise InvalidAmount("Amount is too large.")
    if require_positive and base_units <= 0:
        if parsed > 0:
            raise InvalidAmount(f"Amount is below the smallest unit ({decimals} decimals).")
        raise InvalidAmount("Amount must be greater than zero.")

    return str(base_units)


def from_base_units(base_units: Union[str, int], decimals: int) -> str:
    """Convert integer base units back to a plain decimal string.

    Trailing fractional zeros are stripped.

    Raises:
        InvalidAmount: if ``base_units`` is not a non-negative integer
    """
    if decimals < 0:
        raise InvalidAmount(f"Invalid decimals: {decimals}")

    text = str(base_units).strip()
    if not text.isdigit():
        raise InvalidAmount(f"Invalid base units: {base_units!r}")

    text = text.lstrip("0") or "0"
    if decimals == 0:
        return text

    text = text.rjust(decimals + 1, "0")
    whole, fraction = text[:-decimals], text[-decimals:]
    fraction = fraction.rstrip("0")
    if not fraction:
        return whole
    return f"{whole}.{fraction}"


def format_amount(amount: Union[str, int, Decimal], max_decimals: int = 6) -> str:
    """Format a decimal amount for display, truncating extra digits."""
    parsed = _parse(amount)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        quantum = Decimal(1).scaleb(-max_decimals)
        try:
            truncated = parsed.quantize(quantum, rounding=ROUND_DOWN)
        except InvalidOperation:
            raise InvalidAmount("Amount is too large to display.")

    text = f"{truncated:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text
