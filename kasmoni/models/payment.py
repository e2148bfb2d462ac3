"""Payment ORM model for member contributions."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kasmoni.models import Base, TimestampMixin


class PaymentStatus(str, Enum):
    """Status of a contribution payment."""

    NOT_PAID = "not_paid"
    PENDING = "pending"
    RECEIVED = "received"
    """Collected in cash or by transfer"""

    SETTLED = "settled"
    """Netted against the member's own payout instead of collected"""


# Statuses that count towards a group's collected total
COLLECTED_STATUSES = (PaymentStatus.RECEIVED, PaymentStatus.SETTLED)


class PaymentMethod(str, Enum):
    """How money moved, shared by contributions and payouts."""

    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


class Payment(Base, TimestampMixin):
    """Model representing one contribution record.

    Several payments may exist for the same member, group and month; only
    ``received`` and ``settled`` payments count as collected.
    """

    __tablename__ = "payments"

    member_id: Mapped[int] = mapped_column(
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slot_id: Mapped[int | None] = mapped_column(
        ForeignKey("group_members.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Slot this contribution is credited to",
    )
    payment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        default=date.today,
    )
    payment_month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Contribution month (YYYY-MM)",
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    member: Mapped["Member"] = relationship(  # noqa: F821
        "Member",
        foreign_keys=[member_id],
    )
    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        foreign_keys=[group_id],
    )

    # Indexes for common queries
    __table_args__ = (
        Index("idx_payment_group_month", "group_id", "payment_month"),
        Index("idx_payment_member_month", "member_id", "payment_month"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, member_id={self.member_id}, group_id={self.group_id}, "
            f"month={self.payment_month}, amount={self.amount}, status={self.status})>"
        )


__all__ = ["Payment", "PaymentStatus", "PaymentMethod", "COLLECTED_STATUSES"]
