"""Member ORM model for association members."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kasmoni.models import Base, TimestampMixin


class Member(Base, TimestampMixin):
    """Association member who holds one or more slots across groups."""

    __tablename__ = "members"

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    national_id: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="National identification number",
    )
    bank_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Bank receiving the member's payouts",
    )
    account_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    slots: Mapped[list["Slot"]] = relationship(  # noqa: F821
        "Slot",
        back_populates="member",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, name={self.full_name!r})>"


__all__ = ["Member"]
