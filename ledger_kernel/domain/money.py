"""
Money helpers -- Decimal-only arithmetic for ledger amounts.

Responsibility:
    Central conversion and rounding functions so that every record, engine
    and store handles money identically.  Binary floating point is rejected
    at the boundary.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - No floats: ``to_decimal`` refuses ``float`` input outright.
    - ``round_money`` is the only sanctioned rounding function.
    - Tolerance comparisons (``is_settled``, ``exceeds``) take the
      tolerance as a parameter; it is configuration, never a literal here.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")
DEFAULT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Convert a host-supplied amount into a Decimal.

    Raises:
        TypeError: if ``value`` is a float.
        ValueError: if ``value`` is not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary amounts must not be float/bool, got {value!r}")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


def round_money(
    value: Decimal,
    decimal_places: int = DEFAULT_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to ``decimal_places``."""
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def floor_zero(value: Decimal) -> Decimal:
    """max(0, value)."""
    return value if value > ZERO else ZERO


def is_settled(remaining: Decimal, tolerance: Decimal) -> bool:
    """True when a remaining balance is within rounding tolerance of zero."""
    return remaining <= tolerance


def exceeds(requested: Decimal, cap: Decimal, tolerance: Decimal) -> bool:
    """True when ``requested`` is above ``cap`` by more than the tolerance."""
    return requested > cap + tolerance
