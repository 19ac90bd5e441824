"""Conversions between provider minor units and record major units.

Provider calls carry integer minor units (cents); local records carry
major-unit decimals. Every boundary crossing goes through these helpers.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

MINOR_UNITS_PER_MAJOR = 100

Number = Union[int, float, str, Decimal]


def to_minor_units(amount: Number) -> int:
    """Convert a major-unit amount (150.00) to integer minor units (15000)."""
    value = Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(amount: int) -> float:
    """Convert integer minor units (15000) to a major-unit amount (150.0)."""
    value = Decimal(int(amount)) / MINOR_UNITS_PER_MAJOR
    return float(value.quantize(Decimal("0.01")))
