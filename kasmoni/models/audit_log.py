"""Audit log model for tracking payout lifecycle events."""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from kasmoni.models import Base, TimestampMixin


class AuditLog(Base, TimestampMixin):
    """Audit log entry for payout record changes.

    Records who (actor_id) did what (action) to which entity (entity_type,
    entity_id) with a snapshot of the written fields (changes).
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(index=False)
    """Entity type being audited: "payout"."""

    entity_id: Mapped[int] = mapped_column(index=False)
    """Primary key of the entity being audited."""

    action: Mapped[str] = mapped_column(index=False)
    """Action performed: "create", "update", "mark_paid", "mark_unpaid"."""

    actor_id: Mapped[int | None] = mapped_column(nullable=True, index=False)
    """Staff user who performed the action. None for system writes."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot of written fields."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor_id={self.actor_id})>"
        )


__all__ = ["AuditLog"]
