"""Group ORM model for rotating savings groups."""

from decimal import Decimal

from sqlalchemy import Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kasmoni.models import Base, TimestampMixin
from kasmoni.services.months import month_span


class Group(Base, TimestampMixin):
    """Model representing a kasmoni group.

    Members pay ``monthly_amount`` every month from ``start_month`` to
    ``end_month``; each month one slot receives the pooled sum.
    """

    __tablename__ = "groups"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Group name",
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    monthly_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Fixed monthly contribution per slot",
    )
    max_members: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Maximum number of slots",
    )
    duration: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Number of months from start_month to end_month inclusive",
    )
    start_month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="First contribution month (YYYY-MM)",
    )
    end_month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Last contribution month (YYYY-MM)",
    )

    # Relationships
    slots: Mapped[list["Slot"]] = relationship(  # noqa: F821
        "Slot",
        back_populates="group",
        cascade="all, delete-orphan",
    )

    @property
    def base_amount(self) -> Decimal:
        """Gross payout for one slot: monthly amount times duration."""
        return Decimal(self.monthly_amount) * self.duration

    def validate_duration(self) -> bool:
        """Check duration matches the start/end month span and is at least one."""
        return self.duration >= 1 and self.duration == month_span(self.start_month, self.end_month)

    def __repr__(self) -> str:
        return (
            f"<Group(id={self.id}, name={self.name!r}, monthly_amount={self.monthly_amount}, "
            f"duration={self.duration})>"
        )


__all__ = ["Group"]
