"""Payout record reconciler: one persisted settlement per slot.

State machine per slot::

    NoRecord --save--> Saved(paid=False) <--set_paid--> Paid(paid=True)

Records handed to callers are detached from the session. The caller edits
them freely as a draft; only ``save``, ``set_paid`` and
``recompute_and_persist`` write, each in a single transaction, and each
returns a freshly loaded record. The caller's object never receives the new
``calculated_total_amount`` directly, so a failed (rolled back) write cannot
leave it ahead of the store.

Concurrent editors of the same slot overwrite each other (last writer wins).
Passing ``expected_version`` to ``save`` or ``recompute_and_persist``, or
enabling ``reject_stale_writes``, turns a stale write into
``ConcurrentEditError``. In that mode a recompute must name the version it
expects.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kasmoni.models.group import Group
from kasmoni.models.payment import PaymentMethod
from kasmoni.models.payout import PayoutRecord
from kasmoni.models.slot import Slot
from kasmoni.services.audit_service import AuditService
from kasmoni.services.config import Settings, get_settings
from kasmoni.services.deduction_service import (
    ZERO,
    PayoutBase,
    PayoutBreakdown,
    PayoutToggles,
    compute_breakdown,
    to_money,
    validate_additional_cost,
)
from kasmoni.services.errors import (
    ConcurrentEditError,
    NotFoundError,
    PrerequisiteNotMet,
    StoreUnavailable,
    ValidationError,
)
from kasmoni.services.months import normalize_month
from kasmoni.services.slot_resolver import SlotResolverService

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 100

# Columns a save copies from the caller's draft
EDITABLE_FIELDS = (
    "last_slot_waived",
    "admin_fee_waived",
    "settled_deduction_enabled",
    "additional_cost",
    "payout_date",
    "payout_month",
    "payment_method",
    "sender_bank_id",
    "receiver_bank_id",
    "notes",
)


def _audit_value(value: Any) -> Any:
    """Make a column value JSON-safe for the audit snapshot."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, PaymentMethod):
        return value.value
    return value


class PayoutRecordService:
    """Load, save and mark payout records keyed by slot id."""

    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        """Initialize with async database session and optional settings."""
        self.session = session
        self.settings = settings or get_settings()
        self.resolver = SlotResolverService(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _fetch(self, slot_id: int) -> Optional[PayoutRecord]:
        stmt = (
            select(PayoutRecord)
            .where(PayoutRecord.slot_id == slot_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Store failure while loading payout for slot {slot_id}: {e}")
            raise StoreUnavailable(f"Store unavailable while loading payout for slot {slot_id}") from e

        record = result.scalar_one_or_none()
        if record is not None:
            self.session.expunge(record)
        return record

    async def load(self, slot_id: int) -> Optional[PayoutRecord]:
        """
        Load the persisted payout record for a slot.

        Returns:
            Detached PayoutRecord, or None when the slot has never been saved
            (callers then use defaults, see ``new_draft``)

        Raises:
            StoreUnavailable: If the query fails
        """
        return await self._fetch(slot_id)

    async def new_draft(self, slot_id: int) -> PayoutRecord:
        """
        Build an unsaved record with default toggles for a slot.

        Monthly amount and duration are snapshotted from the slot's group.

        Raises:
            NotFoundError: If the slot does not exist
            StoreUnavailable: If the query fails
        """
        stmt = select(Slot, Group).join(Group, Slot.group_id == Group.id).where(Slot.id == slot_id)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Store failure while loading slot {slot_id}: {e}")
            raise StoreUnavailable(f"Store unavailable while loading slot {slot_id}") from e

        row = result.first()
        if row is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        slot, group = row

        return PayoutRecord(
            slot_id=slot.id,
            group_id=group.id,
            member_id=slot.member_id,
            monthly_amount=Decimal(group.monthly_amount),
            duration=group.duration,
            last_slot_waived=False,
            admin_fee_waived=False,
            settled_deduction_enabled=True,
            additional_cost=ZERO,
            calculated_total_amount=None,
            paid=False,
            payout_date=date.today(),
            payout_month=slot.assigned_month,
            payment_method=PaymentMethod.BANK_TRANSFER,
            sender_bank_id=None,
            receiver_bank_id=None,
            notes=None,
            version=0,
        )

    async def load_or_draft(self, slot_id: int) -> PayoutRecord:
        """Persisted record for the slot, or a default draft when absent."""
        record = await self.load(slot_id)
        if record is not None:
            return record
        return await self.new_draft(slot_id)

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    async def breakdown(
        self, record: PayoutRecord, toggles: Optional[PayoutToggles] = None
    ) -> PayoutBreakdown:
        """Full calculation for a record using the live settled payment sum."""
        settled_sum = await self.resolver.settled_total(record.member_id, record.payout_month)
        base = PayoutBase(
            monthly_amount=to_money(record.monthly_amount, "monthly_amount"),
            duration=record.duration,
            settled_sum=settled_sum,
        )
        return compute_breakdown(base, toggles or record.toggles, self.settings.admin_fee)

    async def calculate(self, record: PayoutRecord, toggles: Optional[PayoutToggles] = None) -> Decimal:
        """Net payable amount for a record (toggles default to the record's own)."""
        return (await self.breakdown(record, toggles)).total

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def validate(self, record: PayoutRecord) -> None:
        """
        Reject invalid input before any write.

        Raises:
            ValidationError: Bank transfer without both banks, notes over 100
                characters, negative or non-numeric additional cost, malformed
                payout month, or missing slot
        """
        if record.slot_id is None:
            raise ValidationError("Payout record has no slot")

        record.additional_cost = validate_additional_cost(
            ZERO if record.additional_cost is None else record.additional_cost
        )
        record.payout_month = normalize_month(record.payout_month)

        try:
            method = PaymentMethod(record.payment_method or PaymentMethod.BANK_TRANSFER)
        except ValueError as e:
            raise ValidationError(f"Unknown payment method {record.payment_method!r}") from e
        record.payment_method = method

        if method == PaymentMethod.BANK_TRANSFER:
            if record.sender_bank_id is None or record.receiver_bank_id is None:
                raise ValidationError("Bank transfer requires both sender and receiver bank")
        else:
            record.sender_bank_id = None
            record.receiver_bank_id = None

        if record.notes is not None and len(record.notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters")

    async def _stored_version(self, slot_id: int) -> Optional[tuple[int, int, bool]]:
        """Fresh (id, version, paid) of the stored row, bypassing the identity map."""
        stmt = select(PayoutRecord.id, PayoutRecord.version, PayoutRecord.paid).where(
            PayoutRecord.slot_id == slot_id
        )
        result = await self.session.execute(stmt)
        row = result.first()
        return tuple(row) if row is not None else None

    async def save(
        self,
        record: PayoutRecord,
        expected_version: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> PayoutRecord:
        """
        Validate, recompute and upsert a payout record keyed by slot id.

        An existing row for the slot is updated in place, otherwise a row is
        inserted; a slot never gets a second record. The paid flag is not
        changed by a save (use ``set_paid``).

        Args:
            record: Draft or previously loaded record
            expected_version: Version the caller loaded; a different stored
                version raises ConcurrentEditError
            actor_id: Staff user recorded in the audit log

        Returns:
            Freshly loaded persisted record

        Raises:
            ValidationError: Input rejected, nothing written
            ConcurrentEditError: Stored version differs from expected_version
            StoreUnavailable: Write failed and was rolled back
        """
        self.validate(record)

        if expected_version is None and self.settings.reject_stale_writes and record.id is not None:
            expected_version = record.version

        values = {field: getattr(record, field) for field in EDITABLE_FIELDS}
        values["group_id"] = record.group_id
        values["member_id"] = record.member_id
        values["monthly_amount"] = to_money(record.monthly_amount, "monthly_amount")
        values["duration"] = record.duration

        try:
            values["calculated_total_amount"] = await self.calculate(record)
            payout_id, action = await self._upsert(record.slot_id, values, expected_version)
            AuditService.log(
                self.session,
                entity_type="payout",
                entity_id=payout_id,
                action=action,
                actor_id=actor_id,
                changes={key: _audit_value(value) for key, value in values.items()},
            )
            await self.session.commit()
        except ConcurrentEditError:
            await self.session.rollback()
            logger.warning(f"Rejected stale save for slot {record.slot_id}")
            raise
        except (SQLAlchemyError, StoreUnavailable) as e:
            await self.session.rollback()
            logger.error(f"Failed to save payout for slot {record.slot_id}: {e}")
            if isinstance(e, StoreUnavailable):
                raise
            raise StoreUnavailable(f"Store unavailable while saving payout for slot {record.slot_id}") from e

        logger.info(
            f"Payout {action}d for slot {record.slot_id}: "
            f"total={values['calculated_total_amount']} version={values['version']}"
        )
        return await self._fetch(record.slot_id)

    async def _upsert(
        self, slot_id: int, values: dict[str, Any], expected_version: Optional[int]
    ) -> tuple[int, str]:
        stored = await self._stored_version(slot_id)

        if stored is None:
            values["version"] = 1
            try:
                result = await self.session.execute(
                    insert(PayoutRecord)
                    .values(slot_id=slot_id, paid=False, **values)
                    .returning(PayoutRecord.id)
                )
                return result.scalar_one(), "create"
            except IntegrityError:
                # Another session inserted the slot's row first; update it instead.
                # Nothing else was written in this transaction yet.
                await self.session.rollback()
                logger.info(f"Payout for slot {slot_id} created concurrently, updating")
                stored = await self._stored_version(slot_id)
                if stored is None:
                    raise

        payout_id, version, _paid = stored
        if expected_version is not None and expected_version != version:
            raise ConcurrentEditError(slot_id, expected_version, version)

        values["version"] = version + 1
        await self.session.execute(
            update(PayoutRecord).where(PayoutRecord.id == payout_id).values(**values)
        )
        return payout_id, "update"

    async def set_paid(
        self,
        slot_id: int,
        paid: bool,
        actor_id: Optional[int] = None,
        draft: Optional[PayoutRecord] = None,
    ) -> PayoutRecord:
        """
        Flip the paid flag of a saved payout record.

        Only ``paid`` (and the version) change; toggles and the cached total
        stay as stored.

        Args:
            slot_id: Slot whose payout is marked
            paid: New paid status
            actor_id: Staff user recorded in the audit log
            draft: Caller's working copy; if it holds unsaved edits the call
                is refused until they are saved

        Raises:
            PrerequisiteNotMet: No saved record yet, or draft has unsaved edits
            StoreUnavailable: Write failed and was rolled back
        """
        if draft is not None and draft.id is None:
            raise PrerequisiteNotMet("Save the payout details before marking the payout as paid")

        try:
            stored = await self._fetch(slot_id)
            if stored is None:
                raise PrerequisiteNotMet(
                    f"Payout for slot {slot_id} has not been saved; save it before marking as paid"
                )
            if draft is not None and self._has_unsaved_edits(draft, stored):
                raise PrerequisiteNotMet("Save the changed payout details before changing paid status")

            await self.session.execute(
                update(PayoutRecord)
                .where(PayoutRecord.id == stored.id)
                .values(paid=paid, version=stored.version + 1)
            )
            AuditService.log(
                self.session,
                entity_type="payout",
                entity_id=stored.id,
                action="mark_paid" if paid else "mark_unpaid",
                actor_id=actor_id,
                changes={"paid": paid},
            )
            await self.session.commit()
        except PrerequisiteNotMet:
            await self.session.rollback()
            raise
        except (SQLAlchemyError, StoreUnavailable) as e:
            await self.session.rollback()
            logger.error(f"Failed to update paid status for slot {slot_id}: {e}")
            if isinstance(e, StoreUnavailable):
                raise
            raise StoreUnavailable(f"Store unavailable while updating payout for slot {slot_id}") from e

        logger.info(f"Payout for slot {slot_id} marked {'paid' if paid else 'unpaid'}")
        return await self._fetch(slot_id)

    @staticmethod
    def _has_unsaved_edits(draft: PayoutRecord, stored: PayoutRecord) -> bool:
        for field in EDITABLE_FIELDS:
            draft_value = getattr(draft, field)
            stored_value = getattr(stored, field)
            if isinstance(stored_value, Decimal) and draft_value is not None:
                try:
                    if to_money(draft_value, field) != stored_value:
                        return True
                except ValidationError:
                    # An unsavable value can never match the stored one
                    return True
            elif draft_value != stored_value:
                return True
        return False

    async def recompute_and_persist(
        self,
        slot_id: int,
        toggles: PayoutToggles,
        expected_version: Optional[int] = None,
    ) -> Optional[PayoutRecord]:
        """
        Recompute the cached total for new toggles and write it.

        Cache maintenance for list and summary views while a detail view is
        open. Slots without a saved record are skipped (returns None).

        Args:
            slot_id: Slot whose payout is recomputed
            toggles: Toggle state to store
            expected_version: Version the detail view last saw; a different
                stored version raises ConcurrentEditError, as in ``save``.
                Required when ``reject_stale_writes`` is on

        Raises:
            ConcurrentEditError: Another writer changed the record first
            ValidationError: No expected_version while stale writes are rejected
            StoreUnavailable: Write failed and was rolled back
        """
        try:
            stored = await self._fetch(slot_id)
            if stored is None:
                logger.debug(f"Skipping recompute for slot {slot_id}: no saved payout")
                return None
            if expected_version is None and self.settings.reject_stale_writes:
                raise ValidationError(
                    f"Recompute for slot {slot_id} needs the loaded version while stale writes are rejected"
                )
            if expected_version is not None and expected_version != stored.version:
                raise ConcurrentEditError(slot_id, expected_version, stored.version)

            total = await self.calculate(stored, toggles)
            await self.session.execute(
                update(PayoutRecord)
                .where(PayoutRecord.id == stored.id)
                .values(
                    last_slot_waived=toggles.last_slot_waived,
                    admin_fee_waived=toggles.admin_fee_waived,
                    settled_deduction_enabled=toggles.settled_deduction_enabled,
                    additional_cost=toggles.additional_cost,
                    calculated_total_amount=total,
                    version=stored.version + 1,
                )
            )
            await self.session.commit()
        except (ConcurrentEditError, ValidationError):
            await self.session.rollback()
            logger.warning(f"Rejected stale recompute for slot {slot_id}")
            raise
        except (SQLAlchemyError, StoreUnavailable) as e:
            await self.session.rollback()
            logger.error(f"Failed to persist recomputed payout for slot {slot_id}: {e}")
            if isinstance(e, StoreUnavailable):
                raise
            raise StoreUnavailable(f"Store unavailable while recomputing payout for slot {slot_id}") from e

        logger.debug(f"Recomputed payout for slot {slot_id}: total={total}")
        return await self._fetch(slot_id)


__all__ = ["PayoutRecordService", "MAX_NOTES_LENGTH"]
