"""Deduction calculator for slot payouts.

Net payable formula, applied in this order with no intermediate rounding:

    base              = monthly_amount * duration
    settled           = settled_sum      if settled_deduction_enabled else 0
    last slot         = monthly_amount   unless last_slot_waived
    administration    = ADMIN_FEE        unless admin_fee_waived
    sub-total         = base - settled - last slot - administration
    total             = sub-total - additional_cost

The total is never clamped at zero: an over-deducted slot shows a negative
payable amount so staff can spot it.

All functions here are pure and operate on ``Decimal`` only.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from kasmoni.services.errors import ValidationError

ADMIN_FEE = Decimal("200")

ZERO = Decimal("0")

# Money columns are Numeric(12, 2); finer amounts would be rounded on store
CENT = Decimal("0.01")


def _fits_cents(amount: Decimal) -> bool:
    if amount.as_tuple().exponent >= -2:
        return True
    try:
        return amount == amount.quantize(CENT)
    except InvalidOperation:
        return False


def to_money(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert an int, string or Decimal to Decimal.

    Floats are refused: binary floating point drifts under repeated
    toggling and summation.

    Raises:
        ValidationError: If the value is a float, bool, None, not numeric, or
            has more than two decimal places
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None or isinstance(value, float):
        raise ValidationError(f"{field_name} must be a Decimal, int or numeric string, got {value!r}")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValidationError(f"{field_name} is not numeric: {value!r}") from e
    else:
        raise ValidationError(f"{field_name} must be numeric, got {type(value).__name__}")

    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number, got {value!r}")
    if not _fits_cents(result):
        raise ValidationError(f"{field_name} cannot have more than 2 decimal places, got {value!r}")
    return result


def validate_additional_cost(value: Any) -> Decimal:
    """Parse an additional cost, rejecting negative or non-numeric input."""
    cost = to_money(value, "additional_cost")
    if cost < ZERO:
        raise ValidationError(f"additional_cost cannot be negative, got {cost}")
    return cost


@dataclass(frozen=True)
class PayoutToggles:
    """Caller-owned toggle draft for one slot.

    The detail view edits a copy of this value and hands it to the
    calculator; nothing here is shared between sessions.
    """

    last_slot_waived: bool = False
    admin_fee_waived: bool = False
    settled_deduction_enabled: bool = True
    additional_cost: Decimal = field(default=ZERO)

    def __post_init__(self):
        object.__setattr__(self, "additional_cost", validate_additional_cost(self.additional_cost))


@dataclass(frozen=True)
class PayoutBase:
    """Inputs that come from the group snapshot and the payment ledger."""

    monthly_amount: Decimal
    duration: int
    settled_sum: Decimal = ZERO

    def __post_init__(self):
        object.__setattr__(self, "monthly_amount", to_money(self.monthly_amount, "monthly_amount"))
        object.__setattr__(self, "settled_sum", to_money(self.settled_sum, "settled_sum"))
        if isinstance(self.duration, bool) or not isinstance(self.duration, int):
            raise ValidationError(f"duration must be an integer, got {self.duration!r}")

    @property
    def base_amount(self) -> Decimal:
        return self.monthly_amount * self.duration


@dataclass(frozen=True)
class PayoutBreakdown:
    """Every line of the payout calculation, as shown on the detail view."""

    base_amount: Decimal
    settled_deduction: Decimal
    last_slot_deduction: Decimal
    admin_fee_deduction: Decimal
    sub_total: Decimal
    additional_cost: Decimal
    total: Decimal

    @property
    def total_deductions(self) -> Decimal:
        return (
            self.settled_deduction
            + self.last_slot_deduction
            + self.admin_fee_deduction
            + self.additional_cost
        )


def compute_breakdown(
    base: PayoutBase,
    toggles: PayoutToggles,
    admin_fee: Decimal = ADMIN_FEE,
) -> PayoutBreakdown:
    """
    Compute the full payout breakdown for one slot.

    Args:
        base: Monthly amount, duration and settled payment sum
        toggles: Waivers, settled deduction switch and additional cost
        admin_fee: Fixed administration fee (default 200)

    Returns:
        PayoutBreakdown with base, each deduction, sub-total and total
    """
    admin_fee = to_money(admin_fee, "admin_fee")

    base_amount = base.base_amount
    settled_deduction = base.settled_sum if toggles.settled_deduction_enabled else ZERO
    last_slot_deduction = ZERO if toggles.last_slot_waived else base.monthly_amount
    admin_fee_deduction = ZERO if toggles.admin_fee_waived else admin_fee

    sub_total = base_amount - settled_deduction - last_slot_deduction - admin_fee_deduction
    total = sub_total - toggles.additional_cost

    return PayoutBreakdown(
        base_amount=base_amount,
        settled_deduction=settled_deduction,
        last_slot_deduction=last_slot_deduction,
        admin_fee_deduction=admin_fee_deduction,
        sub_total=sub_total,
        additional_cost=toggles.additional_cost,
        total=total,
    )


def compute_total(
    base: PayoutBase,
    toggles: PayoutToggles,
    admin_fee: Decimal = ADMIN_FEE,
) -> Decimal:
    """Net payable amount for one slot (see module docstring)."""
    return compute_breakdown(base, toggles, admin_fee).total


def format_money(amount: Decimal, currency: str = "SRD") -> str:
    """Format an amount for display: "SRD 41,500.00", "-SRD 200.00"."""
    quantized = Decimal(amount).quantize(CENT)
    sign = "-" if quantized < ZERO else ""
    return f"{sign}{currency} {abs(quantized):,.2f}"


__all__ = [
    "ADMIN_FEE",
    "PayoutToggles",
    "PayoutBase",
    "PayoutBreakdown",
    "compute_breakdown",
    "compute_total",
    "to_money",
    "validate_additional_cost",
    "format_money",
]
