"""
calculator.py - Split multiplier and ownership percentage arithmetic

All arithmetic is exact integer arithmetic. Percentages are fixed-point:

    percentage_scaled = balance * 100 * 10**precision // total

so a holder of 2 out of 3 units at precision 6 has percentage_scaled
66_666_666, formatted as "66.666666". Each holder is floored on its own,
so the scaled values can sum to less than 100 * 10**precision. That gap is
the rounding residual; it is reported, never redistributed.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional

from .core import PERCENTAGE_PRECISION, PERCENT, ROUNDING_NOTE


def _check_precision(precision: int) -> int:
    if isinstance(precision, bool) or not isinstance(precision, int) or precision < 0:
        raise ValueError(f"Precision must be a non-negative int, got {precision!r}")
    return 10 ** precision


def displayed_balance(base_balance: int, multiplier: int) -> int:
    """Displayed units for a base balance."""
    if multiplier <= 0:
        raise ValueError(f"Multiplier must be positive, got {multiplier}")
    return base_balance * multiplier


def displayed_balances(base_balances: Mapping[str, int], multiplier: int) -> Dict[str, int]:
    return {account: displayed_balance(base, multiplier) for account, base in base_balances.items()}


def full_scale(precision: int = PERCENTAGE_PRECISION) -> int:
    """Scaled value of exactly 100%."""
    return PERCENT * _check_precision(precision)


def percentage_scaled(balance: int, total: int, precision: int = PERCENTAGE_PRECISION) -> int:
    """
    Ownership fraction as a fixed-point percentage, floored.

    Args:
        balance: Holder balance (any unit, same as total)
        total: Total supply, must be positive
        precision: Fractional digits kept

    Raises:
        ValueError: If total <= 0 (callers handle empty supply themselves)
    """
    if total <= 0:
        raise ValueError(f"Total supply must be positive, got {total}")
    return balance * PERCENT * _check_precision(precision) // total


def format_percentage(scaled: int, precision: int = PERCENTAGE_PRECISION) -> str:
    """
    Render a scaled percentage with exactly `precision` fractional digits.

    Example:
        format_percentage(66_666_666)  # "66.666666"
        format_percentage(5, 2)        # "0.05"
    """
    scale = _check_precision(precision)
    sign = "-" if scaled < 0 else ""
    whole, fraction = divmod(abs(scaled), scale)
    if precision == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{fraction:0{precision}d}"


def parse_percentage(text: str, precision: int = PERCENTAGE_PRECISION) -> int:
    """
    Inverse of format_percentage. Extra fractional digits are truncated,
    missing ones are zero-padded.
    """
    scale = _check_precision(precision)
    text = text.strip()
    negative = text.startswith("-")
    whole, _, fraction = text.lstrip("+-").partition(".")
    if (not whole and not fraction) or (whole and not whole.isdigit()) \
            or (fraction and not fraction.isdigit()):
        raise ValueError(f"Not a percentage: {text!r}")
    fraction = (fraction + "0" * precision)[:precision]
    value = int(whole or "0") * scale + (int(fraction) if fraction else 0)
    return -value if negative else value


def ownership_percentage(balance: int, total: int, precision: int = PERCENTAGE_PRECISION) -> str:
    """Formatted percentage; "0.000000" style zero when total is 0."""
    if total == 0:
        return format_percentage(0, precision)
    return format_percentage(percentage_scaled(balance, total, precision), precision)


def rounding_residual(scaled_values: Iterable[int], precision: int = PERCENTAGE_PRECISION) -> int:
    """How far the scaled percentages fall short of exactly 100%."""
    return full_scale(precision) - sum(scaled_values)


def rounding_note(residual: int) -> Optional[str]:
    return ROUNDING_NOTE if residual != 0 else None


@dataclass(frozen=True, slots=True)
class PercentageSum:
    """
    Sum of a set of holder percentages.

    Attributes:
        sum: Formatted sum (e.g. "99.999999")
        residual: full_scale - sum of scaled values
        note: ROUNDING_NOTE when residual != 0, else None
    """
    sum: str
    residual: int
    note: Optional[str]


def calculate_percentage_sum(
    percentages: Iterable[str],
    precision: int = PERCENTAGE_PRECISION,
) -> PercentageSum:
    """
    Sum formatted percentages exactly and detect a rounding gap.

    An empty input sums to zero and carries no note: there is nothing
    to reconcile.
    """
    scaled = [parse_percentage(p, precision) for p in percentages]
    if not scaled:
        return PercentageSum(format_percentage(0, precision), 0, None)
    residual = rounding_residual(scaled, precision)
    return PercentageSum(format_percentage(sum(scaled), precision), residual, rounding_note(residual))
