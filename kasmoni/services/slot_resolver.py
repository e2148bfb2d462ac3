"""Slot resolver: which slots pay out in a month, and how far collection got.

For a target month the resolver returns one ``SlotDescriptor`` per slot whose
assigned month matches, each carrying its group's collection progress:

    collected = distinct slots with a received/settled payment for the month
    total     = slots in the group
    collected is capped at total

Progress maps to a completion bucket: 0% failed, under 50% pending, 50% up to
100% processing, 100% completed. A group without slots reports 0/0 (failed).
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kasmoni.models.group import Group
from kasmoni.models.member import Member
from kasmoni.models.payment import COLLECTED_STATUSES, Payment, PaymentStatus
from kasmoni.models.payout import PayoutRecord
from kasmoni.models.slot import Slot
from kasmoni.services.deduction_service import ZERO, PayoutToggles
from kasmoni.services.errors import StoreUnavailable
from kasmoni.services.months import current_month, normalize_month

logger = logging.getLogger(__name__)

# Higher wins when picking a member's status for the month
STATUS_PRIORITY = {
    PaymentStatus.SETTLED: 3,
    PaymentStatus.RECEIVED: 2,
    PaymentStatus.PENDING: 1,
}


class CompletionBucket(str, Enum):
    """Processing state derived from a group's collection percentage."""

    FAILED = "failed"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass(frozen=True)
class CollectionProgress:
    """Collected/total slot counts for one group and month."""

    collected: int
    total: int

    @property
    def percentage(self) -> Decimal:
        if self.total <= 0:
            return ZERO
        return Decimal(self.collected) * 100 / Decimal(self.total)

    @property
    def bucket(self) -> CompletionBucket:
        percentage = self.percentage
        if percentage >= 100:
            return CompletionBucket.COMPLETED
        if percentage >= 50:
            return CompletionBucket.PROCESSING
        if percentage > 0:
            return CompletionBucket.PENDING
        return CompletionBucket.FAILED

    @property
    def label(self) -> str:
        return f"{self.collected}/{self.total}"


@dataclass(frozen=True)
class PayoutSnapshot:
    """Persisted payout fields attached to a slot descriptor."""

    record_id: int
    monthly_amount: Decimal
    duration: int
    toggles: PayoutToggles
    calculated_total_amount: Optional[Decimal]
    paid: bool
    version: int

    @classmethod
    def from_record(cls, record: PayoutRecord) -> "PayoutSnapshot":
        return cls(
            record_id=record.id,
            monthly_amount=Decimal(record.monthly_amount),
            duration=record.duration,
            toggles=record.toggles,
            calculated_total_amount=(
                Decimal(record.calculated_total_amount)
                if record.calculated_total_amount is not None
                else None
            ),
            paid=bool(record.paid),
            version=record.version,
        )


@dataclass(frozen=True)
class SlotDescriptor:
    """One slot paying out in the resolved month."""

    slot_id: int
    member_id: int
    member_name: str
    group_id: int
    group_name: str
    monthly_amount: Decimal
    duration: int
    receive_month: str
    progress: CollectionProgress
    national_id: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    payout: Optional[PayoutSnapshot] = None

    @property
    def base_amount(self) -> Decimal:
        return self.monthly_amount * self.duration

    @property
    def status(self) -> str:
        return self.progress.label

    @property
    def paid(self) -> bool:
        return self.payout is not None and self.payout.paid


@dataclass(frozen=True)
class MemberPaymentStatus:
    """Most authoritative payment status of one member for a group and month."""

    member_id: int
    member_name: str
    status: PaymentStatus
    payment_date: Optional[date] = None
    amount: Optional[Decimal] = None


def pick_authoritative(payments: Iterable[Payment]) -> Optional[Payment]:
    """
    Choose the payment that decides a member's status.

    Priority settled > received > pending; ties go to the latest payment
    date, then the highest id. ``not_paid`` rows never win.
    """
    candidates = [p for p in payments if p.status in STATUS_PRIORITY]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda p: (STATUS_PRIORITY[p.status], p.payment_date or date.min, p.id or 0),
    )


class SlotResolverService:
    """Resolve payout slots and collection progress for a month."""

    def __init__(self, session: AsyncSession):
        """Initialize with async database session."""
        self.session = session

    async def _execute(self, stmt, action: str):
        try:
            return await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Store failure while {action}: {e}")
            raise StoreUnavailable(f"Store unavailable while {action}") from e

    async def resolve(self, month: Optional[str] = None) -> list[SlotDescriptor]:
        """
        Resolve every slot whose payout falls in ``month``.

        Args:
            month: Target month (YYYY-MM), defaults to the current month

        Returns:
            Slot descriptors ordered by group name, member name and slot id.
            Empty list when no slot is assigned to the month.

        Raises:
            ValidationError: If month is malformed
            StoreUnavailable: If any query fails (no partial result is returned)
        """
        target_month = normalize_month(month) if month else current_month()

        stmt = (
            select(Slot, Group, Member)
            .join(Group, Slot.group_id == Group.id)
            .join(Member, Slot.member_id == Member.id)
            .where(Slot.assigned_month == target_month)
            .order_by(Group.name, Member.first_name, Member.last_name, Slot.id)
        )
        result = await self._execute(stmt, f"loading slots for {target_month}")
        rows = result.all()
        if not rows:
            logger.debug(f"No payout slots for {target_month}")
            return []

        group_ids = sorted({group.id for _, group, _ in rows})
        slot_ids = [slot.id for slot, _, _ in rows]

        progress = await self.collection_progress_for_groups(group_ids, target_month)
        payouts = await self._load_payouts(slot_ids)

        descriptors = []
        for slot, group, member in rows:
            record = payouts.get(slot.id)
            descriptors.append(
                SlotDescriptor(
                    slot_id=slot.id,
                    member_id=member.id,
                    member_name=member.full_name,
                    group_id=group.id,
                    group_name=group.name,
                    monthly_amount=Decimal(group.monthly_amount),
                    duration=group.duration,
                    receive_month=target_month,
                    progress=progress[group.id],
                    national_id=member.national_id,
                    bank_name=member.bank_name,
                    account_number=member.account_number,
                    payout=PayoutSnapshot.from_record(record) if record else None,
                )
            )

        logger.info(f"Resolved {len(descriptors)} payout slots for {target_month}")
        return descriptors

    async def collection_progress(self, group_id: int, month: str) -> CollectionProgress:
        """Collected/total progress for a single group and month."""
        progress = await self.collection_progress_for_groups([group_id], normalize_month(month))
        return progress[group_id]

    async def collection_progress_for_groups(
        self, group_ids: list[int], month: str
    ) -> dict[int, CollectionProgress]:
        """Collected/total progress for several groups in two queries."""
        if not group_ids:
            return {}

        totals_stmt = (
            select(Slot.group_id, func.count(Slot.id))
            .where(Slot.group_id.in_(group_ids))
            .group_by(Slot.group_id)
        )
        totals_result = await self._execute(totals_stmt, "counting group slots")
        totals = {group_id: count for group_id, count in totals_result.all()}

        collected_stmt = (
            select(Payment.group_id, func.count(distinct(Payment.slot_id)))
            .where(
                Payment.group_id.in_(group_ids),
                Payment.payment_month == month,
                Payment.status.in_(COLLECTED_STATUSES),
                Payment.slot_id.is_not(None),
            )
            .group_by(Payment.group_id)
        )
        collected_result = await self._execute(collected_stmt, "counting collected payments")
        collected = {group_id: count for group_id, count in collected_result.all()}

        progress = {}
        for group_id in group_ids:
            total = totals.get(group_id, 0)
            progress[group_id] = CollectionProgress(
                collected=min(collected.get(group_id, 0), total),
                total=total,
            )
        return progress

    async def _load_payouts(self, slot_ids: list[int]) -> dict[int, PayoutRecord]:
        stmt = (
            select(PayoutRecord)
            .where(PayoutRecord.slot_id.in_(slot_ids))
            .execution_options(populate_existing=True)
        )
        result = await self._execute(stmt, "loading payout records")
        return {record.slot_id: record for record in result.scalars().all()}

    async def settled_total(self, member_id: int, month: str) -> Decimal:
        """
        Sum of the member's settled payments for a month.

        Args:
            member_id: Member whose contributions are netted
            month: Payment month (YYYY-MM)

        Returns:
            Exact Decimal sum, zero when there are none
        """
        totals = await self.settled_totals([member_id], month)
        return totals.get(member_id, ZERO)

    async def settled_totals(self, member_ids: Iterable[int], month: str) -> dict[int, Decimal]:
        """Settled payment sums for several members in one query."""
        member_ids = sorted(set(member_ids))
        if not member_ids:
            return {}

        stmt = select(Payment.member_id, Payment.amount).where(
            Payment.member_id.in_(member_ids),
            Payment.payment_month == normalize_month(month),
            Payment.status == PaymentStatus.SETTLED,
        )
        result = await self._execute(stmt, "summing settled payments")

        totals = {member_id: ZERO for member_id in member_ids}
        for member_id, amount in result.all():
            totals[member_id] += Decimal(amount)
        return totals

    async def member_payment_statuses(self, group_id: int, month: str) -> list[MemberPaymentStatus]:
        """
        Per-member payment status for a group and month.

        Every member holding a slot in the group is listed once; members
        without a qualifying payment report ``not_paid``.
        """
        target_month = normalize_month(month)

        members_stmt = (
            select(Member)
            .join(Slot, Slot.member_id == Member.id)
            .where(Slot.group_id == group_id)
            .distinct()
            .order_by(Member.first_name, Member.last_name, Member.id)
        )
        members_result = await self._execute(members_stmt, "loading group members")
        members = members_result.scalars().all()

        payments_stmt = select(Payment).where(
            Payment.group_id == group_id,
            Payment.payment_month == target_month,
        )
        payments_result = await self._execute(payments_stmt, "loading group payments")

        by_member: dict[int, list[Payment]] = {}
        for payment in payments_result.scalars().all():
            by_member.setdefault(payment.member_id, []).append(payment)

        statuses = []
        for member in members:
            best = pick_authoritative(by_member.get(member.id, []))
            statuses.append(
                MemberPaymentStatus(
                    member_id=member.id,
                    member_name=member.full_name,
                    status=best.status if best else PaymentStatus.NOT_PAID,
                    payment_date=best.payment_date if best else None,
                    amount=Decimal(best.amount) if best else None,
                )
            )
        return statuses


__all__ = [
    "CompletionBucket",
    "CollectionProgress",
    "PayoutSnapshot",
    "SlotDescriptor",
    "MemberPaymentStatus",
    "pick_authoritative",
    "SlotResolverService",
]
