"""Bank ORM model referenced by payout payment details."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from kasmoni.models import Base, TimestampMixin


class Bank(Base, TimestampMixin):
    """Bank used as sender or receiver of a payout transfer."""

    __tablename__ = "banks"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    short_name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Bank(id={self.id}, short_name={self.short_name!r})>"


__all__ = ["Bank"]
