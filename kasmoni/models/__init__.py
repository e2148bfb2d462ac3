"""ORM models for kasmoni groups, contributions and payouts.

Every table mixes in ``TimestampMixin`` for its surrogate key and row
timestamps. Money columns are ``Numeric(12, 2)`` and month keys are
``YYYY-MM`` strings.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """Integer primary key plus UTC created/updated timestamps."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


# Model modules import Base from here, so they load last
from kasmoni.models.audit_log import AuditLog  # noqa: E402
from kasmoni.models.bank import Bank  # noqa: E402
from kasmoni.models.group import Group  # noqa: E402
from kasmoni.models.member import Member  # noqa: E402
from kasmoni.models.payment import Payment, PaymentMethod, PaymentStatus  # noqa: E402
from kasmoni.models.payout import PayoutRecord  # noqa: E402
from kasmoni.models.slot import Slot  # noqa: E402

__all__ = [
    "Base",
    "TimestampMixin",
    "AuditLog",
    "Bank",
    "Group",
    "Member",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "PayoutRecord",
    "Slot",
]
