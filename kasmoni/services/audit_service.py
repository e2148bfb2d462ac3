"""Audit service for logging payout lifecycle events."""

from sqlalchemy.ext.asyncio import AsyncSession

from kasmoni.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Entries are added to the caller's session and commit together with the
    change they describe.
    """

    @staticmethod
    def log(
        session: AsyncSession,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: int | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            session: Database session
            entity_type: Type of entity ("payout")
            entity_id: Primary key of the entity
            action: Action performed ("create", "update", "mark_paid", ...)
            actor_id: Staff user who performed the action (optional)
            changes: Optional JSON snapshot of changed fields

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=changes,
        )
        session.add(audit)
        return audit


__all__ = ["AuditService"]
