"""
Module: payroll_kernel.db.types
Responsibility: Annotated type aliases and the rounding helpers used for every
    monetary and percentage value in the payroll kernel.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the payroll kernel.  All monetary amounts use
      Decimal with explicit precision.
    - round_money() and round_percentage() are the ONLY sanctioned rounding
      functions.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Percentage (0-100) with 4 decimal places after rounding
Percentage = Annotated[Decimal, Numeric(38, 9)]

# Short identifier strings (employee ids, branch codes, statuses)
ShortCode = Annotated[str, String(64)]

MONEY_DECIMAL_PLACES = 2
PERCENTAGE_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    This is the ONLY sanctioned rounding function for money in the kernel.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_percentage(value: Decimal) -> Decimal:
    """Round a percentage to PERCENTAGE_DECIMAL_PLACES."""
    return round_money(value, PERCENTAGE_DECIMAL_PLACES)


def to_decimal(value, default: Decimal = ZERO) -> Decimal:
    """
    Coerce a loosely-typed stored value to Decimal.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1"), not its binary
    expansion.  None, empty strings and garbage fall back to ``default``.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return default
    return result if result.is_finite() else default
