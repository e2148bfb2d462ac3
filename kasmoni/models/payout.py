"""Payout record ORM model: the reconciled settlement of one slot."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kasmoni.models import Base, TimestampMixin
from kasmoni.models.payment import PaymentMethod
from kasmoni.services.deduction_service import PayoutToggles


class PayoutRecord(Base, TimestampMixin):
    """
    Persisted payout computation for a single slot.

    At most one record exists per slot (unique ``slot_id``). ``monthly_amount``
    and ``duration`` are snapshots taken when the record is first drafted, so
    later group edits never change historical payouts. ``calculated_total_amount``
    caches the deduction calculator output for list and summary views.

    ``version`` increases on every write. Concurrent editors overwrite each
    other (last writer wins) unless the caller passes the version it loaded.
    """

    __tablename__ = "payouts"

    slot_id: Mapped[int] = mapped_column(
        ForeignKey("group_members.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="Slot this payout settles (unique)",
    )
    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_id: Mapped[int] = mapped_column(
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Snapshot of the group at draft time
    monthly_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)

    # Toggles
    last_slot_waived: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Member already paid the last slot; skip its deduction",
    )
    admin_fee_waived: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Administration fee already paid; skip its deduction",
    )
    settled_deduction_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Net settled contributions against this payout",
    )
    additional_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
    )

    calculated_total_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Cached net payable amount; may be negative when over-deducted",
    )
    paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payout_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payout_month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        index=True,
        comment="Payout month (YYYY-MM)",
    )

    # Payment details
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod),
        nullable=False,
        default=PaymentMethod.BANK_TRANSFER,
    )
    sender_bank_id: Mapped[int | None] = mapped_column(
        ForeignKey("banks.id"),
        nullable=True,
    )
    receiver_bank_id: Mapped[int | None] = mapped_column(
        ForeignKey("banks.id"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(String(100), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    slot: Mapped["Slot"] = relationship(  # noqa: F821
        "Slot",
        foreign_keys=[slot_id],
    )
    sender_bank: Mapped["Bank | None"] = relationship(  # noqa: F821
        "Bank",
        foreign_keys=[sender_bank_id],
    )
    receiver_bank: Mapped["Bank | None"] = relationship(  # noqa: F821
        "Bank",
        foreign_keys=[receiver_bank_id],
    )

    __table_args__ = (Index("idx_payout_group_month", "group_id", "payout_month"),)

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    @property
    def toggles(self) -> PayoutToggles:
        """Current toggle state as an immutable value."""
        return PayoutToggles(
            last_slot_waived=bool(self.last_slot_waived),
            admin_fee_waived=bool(self.admin_fee_waived),
            settled_deduction_enabled=bool(self.settled_deduction_enabled),
            additional_cost=Decimal(self.additional_cost or 0),
        )

    def apply_toggles(self, toggles: PayoutToggles) -> None:
        """Copy toggle values onto this record (no write)."""
        self.last_slot_waived = toggles.last_slot_waived
        self.admin_fee_waived = toggles.admin_fee_waived
        self.settled_deduction_enabled = toggles.settled_deduction_enabled
        self.additional_cost = toggles.additional_cost

    def __repr__(self) -> str:
        return (
            f"<PayoutRecord(id={self.id}, slot_id={self.slot_id}, paid={self.paid}, "
            f"calculated_total_amount={self.calculated_total_amount}, version={self.version})>"
        )


__all__ = ["PayoutRecord"]
