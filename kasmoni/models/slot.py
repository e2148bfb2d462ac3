"""Slot ORM model: a member's assigned payout month within a group."""

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kasmoni.models import Base, TimestampMixin


class Slot(Base, TimestampMixin):
    """Model representing one payout slot.

    A group has at most one slot per month. A member may hold several slots
    in the same group; each slot settles independently.
    """

    __tablename__ = "group_members"

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
    assigned_month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Month in which this slot receives the payout (YYYY-MM)",
    )

    # Relationships
    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="slots",
        foreign_keys=[group_id],
    )
    member: Mapped["Member"] = relationship(  # noqa: F821
        "Member",
        back_populates="slots",
        foreign_keys=[member_id],
    )

    __table_args__ = (
        UniqueConstraint("group_id", "assigned_month", name="uq_slot_group_month"),
        Index("idx_slot_assigned_month", "assigned_month"),
    )

    def __repr__(self) -> str:
        return (
            f"<Slot(id={self.id}, group_id={self.group_id}, member_id={self.member_id}, "
            f"assigned_month={self.assigned_month})>"
        )


__all__ = ["Slot"]
