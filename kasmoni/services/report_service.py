"""Aggregate reporter: month-level payout totals.

Each slot's payable amount is its persisted ``calculated_total_amount`` when
one exists; otherwise it is recomputed live from the stored toggles (or the
defaults for a slot never opened). Both paths run the same calculator, so a
cached amount and a live recompute with the same toggles are always equal.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from kasmoni.services.config import Settings, get_settings
from kasmoni.services.deduction_service import (
    ADMIN_FEE,
    ZERO,
    PayoutBase,
    PayoutToggles,
    compute_total,
)
from kasmoni.services.errors import ValidationError
from kasmoni.services.months import current_month, normalize_month
from kasmoni.services.slot_resolver import CompletionBucket, SlotDescriptor, SlotResolverService

logger = logging.getLogger(__name__)

FILTER_FIELDS = ("all", "member_name", "group_name", "bank_name")
SORT_FIELDS = ("member_name", "group_name", "total_amount", "to_receive", "status", "receive_month")


@dataclass(frozen=True)
class PayoutRow:
    """One slot in a month report with its effective payable amount."""

    slot: SlotDescriptor
    payable: Decimal
    settled_sum: Decimal
    from_cache: bool

    @property
    def paid(self) -> bool:
        return self.slot.paid


@dataclass(frozen=True)
class PayoutSummary:
    """Month totals over all resolved slots."""

    total_payouts: int = 0
    paid_payouts: int = 0
    total_base_amount: Decimal = ZERO
    total_payable: Decimal = ZERO
    total_paid: Decimal = ZERO
    outstanding: Decimal = ZERO
    bucket_counts: dict[CompletionBucket, int] = field(
        default_factory=lambda: {bucket: 0 for bucket in CompletionBucket}
    )


@dataclass(frozen=True)
class MonthReport:
    month: str
    rows: list[PayoutRow]
    summary: PayoutSummary


def live_payable(
    slot: SlotDescriptor, settled_sum: Decimal, admin_fee: Decimal = ADMIN_FEE
) -> Decimal:
    """Recompute a slot's payable amount from stored toggles or defaults."""
    if slot.payout is not None:
        base = PayoutBase(slot.payout.monthly_amount, slot.payout.duration, settled_sum)
        toggles = slot.payout.toggles
    else:
        base = PayoutBase(slot.monthly_amount, slot.duration, settled_sum)
        toggles = PayoutToggles()
    return compute_total(base, toggles, admin_fee)


def payable_amount(
    slot: SlotDescriptor, settled_sum: Decimal, admin_fee: Decimal = ADMIN_FEE
) -> tuple[Decimal, bool]:
    """
    Effective payable amount for a slot.

    Returns:
        (amount, from_cache): the persisted total when present, otherwise
        the live recompute
    """
    if slot.payout is not None and slot.payout.calculated_total_amount is not None:
        return slot.payout.calculated_total_amount, True
    return live_payable(slot, settled_sum, admin_fee), False


def summarize(rows: Iterable[PayoutRow]) -> PayoutSummary:
    """Fold payout rows into month totals. Empty input gives all zeros."""
    rows = list(rows)
    bucket_counts = {bucket: 0 for bucket in CompletionBucket}
    total_base = ZERO
    total_payable = ZERO
    total_paid = ZERO
    paid_count = 0

    for row in rows:
        total_base += row.slot.base_amount
        total_payable += row.payable
        if row.paid:
            total_paid += row.payable
            paid_count += 1
        bucket_counts[row.slot.progress.bucket] += 1

    return PayoutSummary(
        total_payouts=len(rows),
        paid_payouts=paid_count,
        total_base_amount=total_base,
        total_payable=total_payable,
        total_paid=total_paid,
        outstanding=total_payable - total_paid,
        bucket_counts=bucket_counts,
    )


def filter_rows(rows: Iterable[PayoutRow], field_name: str, text: str) -> list[PayoutRow]:
    """Case-insensitive substring filter on member, group or bank name."""
    if field_name not in FILTER_FIELDS:
        raise ValidationError(f"Unknown filter field {field_name!r}")
    rows = list(rows)
    needle = (text or "").strip().lower()
    if field_name == "all" or not needle:
        return rows

    def value(row: PayoutRow) -> str:
        return (getattr(row.slot, field_name) or "").lower()

    return [row for row in rows if needle in value(row)]


def filter_by_bucket(rows: Iterable[PayoutRow], status: str) -> list[PayoutRow]:
    """
    Filter by collection status.

    ``pending`` keeps every partially collected slot (0% < x < 100%) and so
    overlaps ``processing`` (50% <= x < 100%), matching the payouts list.
    """
    rows = list(rows)
    if status == "all":
        return rows
    try:
        bucket = CompletionBucket(status)
    except ValueError as e:
        raise ValidationError(f"Unknown status filter {status!r}") from e

    if bucket == CompletionBucket.PENDING:
        return [row for row in rows if 0 < row.slot.progress.percentage < 100]
    return [row for row in rows if row.slot.progress.bucket == bucket]


def sort_rows(rows: Iterable[PayoutRow], field_name: str, descending: bool = False) -> list[PayoutRow]:
    """Sort rows by one of SORT_FIELDS (stable)."""
    keys = {
        "member_name": lambda row: row.slot.member_name.lower(),
        "group_name": lambda row: row.slot.group_name.lower(),
        "total_amount": lambda row: row.slot.base_amount,
        "to_receive": lambda row: row.payable,
        "status": lambda row: row.slot.progress.percentage,
        "receive_month": lambda row: row.slot.receive_month,
    }
    if field_name not in keys:
        raise ValidationError(f"Unknown sort field {field_name!r}")
    return sorted(rows, key=keys[field_name], reverse=descending)


class ReportService:
    """Build month reports from resolved slots."""

    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        """Initialize with async database session and optional settings."""
        self.session = session
        self.settings = settings or get_settings()
        self.resolver = SlotResolverService(session)

    async def month_rows(self, month: Optional[str] = None) -> list[PayoutRow]:
        """Resolve a month's slots and attach each slot's payable amount."""
        target_month = normalize_month(month) if month else current_month()
        slots = await self.resolver.resolve(target_month)
        if not slots:
            return []

        settled = await self.resolver.settled_totals([slot.member_id for slot in slots], target_month)

        rows = []
        for slot in slots:
            settled_sum = settled.get(slot.member_id, ZERO)
            payable, from_cache = payable_amount(slot, settled_sum, self.settings.admin_fee)
            rows.append(
                PayoutRow(slot=slot, payable=payable, settled_sum=settled_sum, from_cache=from_cache)
            )
        return rows

    async def month_report(self, month: Optional[str] = None) -> MonthReport:
        """
        Rows and totals for a month.

        Args:
            month: Target month (YYYY-MM), defaults to the current month

        Returns:
            MonthReport; a month without slots has no rows and zero totals
        """
        target_month = normalize_month(month) if month else current_month()
        rows = await self.month_rows(target_month)
        summary = summarize(rows)
        logger.info(
            f"Payout report {target_month}: {summary.total_payouts} slots, "
            f"payable={summary.total_payable} paid={summary.total_paid} "
            f"outstanding={summary.outstanding}"
        )
        return MonthReport(month=target_month, rows=rows, summary=summary)


__all__ = [
    "PayoutRow",
    "PayoutSummary",
    "MonthReport",
    "live_payable",
    "payable_amount",
    "summarize",
    "filter_rows",
    "filter_by_bucket",
    "sort_rows",
    "ReportService",
]
