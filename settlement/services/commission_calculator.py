"""
Commission arithmetic.

Pure functions, no I/O. All amounts are Decimal and results are rounded
to two decimal places with ROUND_HALF_UP.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple, Union

from settlement.models.commission import AdjustmentKind

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, str]


def quantize_money(value: Number) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_commission(
    amount: Number,
    percentage: Number,
    min_amount: Optional[Number] = None,
    max_amount: Optional[Number] = None,
) -> Decimal:
    """
    Commission for a gross service amount.

    raw = amount * percentage / 100, raised to min_amount when below it,
    then lowered to max_amount when above it, then rounded.
    """
    amount = Decimal(amount)
    if amount < 0:
        raise ValueError("Service amount cannot be negative")

    commission = amount * Decimal(percentage) / HUNDRED

    if min_amount is not None and commission < Decimal(min_amount):
        commission = Decimal(min_amount)
    if max_amount is not None and commission > Decimal(max_amount):
        commission = Decimal(max_amount)

    return quantize_money(commission)


def calculate(amount: Number, policy) -> Decimal:
    """Commission for amount under a CommissionPolicy."""
    return calculate_commission(amount, policy.percentage, policy.min_amount, policy.max_amount)


def apply_adjustment(amount_before: Number, kind: str, delta: Number) -> Decimal:
    """
    Amount after one adjustment.

    BONUS adds |delta|, DISCOUNT subtracts |delta| with a floor of zero,
    CORRECTION replaces the amount with |delta|.
    """
    before = Decimal(amount_before)
    magnitude = abs(Decimal(delta))

    if kind == AdjustmentKind.BONUS.value:
        after = before + magnitude
    elif kind == AdjustmentKind.DISCOUNT.value:
        after = max(Decimal("0"), before - magnitude)
    elif kind == AdjustmentKind.CORRECTION.value:
        after = magnitude
    else:
        raise ValueError(f"Unknown adjustment kind: {kind}")

    return quantize_money(after)


def replay_adjustments(
    calculated_amount: Number,
    adjustments: Iterable[Tuple[str, Number]],
) -> Decimal:
    """Re-derive the current commission from the pristine amount and (kind, delta) pairs in order."""
    amount = quantize_money(calculated_amount)
    for kind, delta in adjustments:
        amount = apply_adjustment(amount, kind, delta)
    return amount
