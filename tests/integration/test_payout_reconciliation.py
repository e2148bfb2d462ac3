"""Integration tests for payout record load, save and paid lifecycle."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.dml import Insert, Update

from kasmoni.models.audit_log import AuditLog
from kasmoni.models.payment import PaymentMethod, PaymentStatus
from kasmoni.models.payout import PayoutRecord
from kasmoni.services.deduction_service import PayoutToggles
from kasmoni.services.errors import (
    ConcurrentEditError,
    NotFoundError,
    PrerequisiteNotMet,
    StoreUnavailable,
    ValidationError,
)
from kasmoni.services.payout_outbox import PayoutWriteOutbox
from kasmoni.services.payout_service import PayoutRecordService


@pytest.fixture
def service(async_db_session, settings):
    return PayoutRecordService(async_db_session, settings)


@pytest.fixture
async def ann_slot(kasmoni_data, add_payment):
    """Ann's Alpha slot with 3000 settled in the payout month; returns the slot id."""
    alpha = kasmoni_data["groups"]["alpha"]
    ann = kasmoni_data["members"]["ann"]
    await add_payment(ann, alpha, "1000", PaymentStatus.SETTLED)
    await add_payment(ann, alpha, "2000", PaymentStatus.SETTLED)
    return kasmoni_data["slots"]["ann"].id


@pytest.fixture
def bank_ids(banks):
    sender, receiver = banks
    return sender.id, receiver.id


async def draft_with_banks(service, slot_id, bank_ids, **fields):
    record = await service.load_or_draft(slot_id)
    record.sender_bank_id, record.receiver_bank_id = bank_ids
    for name, value in fields.items():
        setattr(record, name, value)
    return record


async def count_payouts(session, slot_id):
    result = await session.execute(
        select(func.count(PayoutRecord.id)).where(PayoutRecord.slot_id == slot_id)
    )
    return result.scalar_one()


class TestLoad:
    async def test_load_unsaved_slot_returns_none(self, service, ann_slot):
        assert await service.load(ann_slot) is None

    async def test_new_draft_has_defaults(self, service, ann_slot):
        """Test a draft snapshots the group and starts with default toggles."""
        draft = await service.load_or_draft(ann_slot)

        assert draft.id is None
        assert draft.is_persisted is False
        assert draft.monthly_amount == Decimal("5000")
        assert draft.duration == 10
        assert draft.payout_month == "2025-08"
        assert draft.toggles == PayoutToggles()
        assert draft.paid is False
        assert draft.payment_method == PaymentMethod.BANK_TRANSFER

    async def test_new_draft_unknown_slot(self, service, kasmoni_data):
        with pytest.raises(NotFoundError):
            await service.new_draft(99999)

    async def test_calculate_draft_uses_live_settled_sum(self, service, ann_slot):
        draft = await service.load_or_draft(ann_slot)

        assert await service.calculate(draft) == Decimal("41800")
        breakdown = await service.breakdown(draft, PayoutToggles(additional_cost=Decimal("300")))
        assert breakdown.settled_deduction == Decimal("3000")
        assert breakdown.total == Decimal("41500")


class TestSave:
    """Tests for saving payout records."""

    async def test_first_save_creates_record(self, service, async_db_session, ann_slot, bank_ids):
        """Test reference payout: 50000 - 3000 - 5000 - 200 - 300 = 41500."""
        draft = await draft_with_banks(service, ann_slot, bank_ids, additional_cost=Decimal("300"))

        saved = await service.save(draft, actor_id=7)

        assert saved.id is not None
        assert saved.calculated_total_amount == Decimal("41500")
        assert saved.paid is False
        assert saved.version == 1
        assert draft.calculated_total_amount is None

        audit = (await async_db_session.execute(select(AuditLog))).scalars().all()
        assert [(a.action, a.actor_id, a.entity_id) for a in audit] == [("create", 7, saved.id)]
        assert audit[0].changes["additional_cost"] == "300"

    async def test_repeated_saves_keep_one_record(self, service, async_db_session, ann_slot, bank_ids):
        """Test save is an upsert keyed on the slot and load returns the last save."""
        for cost in ("100", "200", "350"):
            record = await draft_with_banks(service, ann_slot, bank_ids, additional_cost=Decimal(cost))
            await service.save(record)

        assert await count_payouts(async_db_session, ann_slot) == 1
        loaded = await service.load(ann_slot)
        assert loaded.additional_cost == Decimal("350")
        assert loaded.calculated_total_amount == Decimal("41450")
        assert loaded.version == 3

    async def test_saving_two_unsaved_drafts_updates_same_row(
        self, service, async_db_session, ann_slot, bank_ids
    ):
        """Test a second draft for an already saved slot updates instead of inserting."""
        first = await draft_with_banks(service, ann_slot, bank_ids)
        second = await service.new_draft(ann_slot)
        second.sender_bank_id, second.receiver_bank_id = bank_ids
        second.last_slot_waived = True

        await service.save(first)
        saved = await service.save(second)

        assert await count_payouts(async_db_session, ann_slot) == 1
        assert saved.last_slot_waived is True
        assert saved.calculated_total_amount == Decimal("46800")

    async def test_save_preserves_paid_flag(self, service, ann_slot, bank_ids):
        record = await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        paid = await service.set_paid(ann_slot, True)

        paid.notes = "Transferred at branch"
        saved = await service.save(paid)

        assert saved.paid is True
        assert saved.notes == "Transferred at branch"
        assert saved.version == record.version + 2

    async def test_all_waivers(self, service, ann_slot, bank_ids):
        draft = await draft_with_banks(service, ann_slot, bank_ids)
        draft.apply_toggles(
            PayoutToggles(last_slot_waived=True, admin_fee_waived=True, settled_deduction_enabled=False)
        )

        saved = await service.save(draft)

        assert saved.calculated_total_amount == Decimal("50000")

    async def test_save_with_record_snapshot_ignores_group_edits(
        self, service, async_db_session, kasmoni_data, ann_slot, bank_ids
    ):
        """Test the stored monthly amount is a snapshot, not the live group value."""
        saved = await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        alpha = kasmoni_data["groups"]["alpha"]
        alpha.monthly_amount = Decimal("9000")
        await async_db_session.commit()

        resaved = await service.save(saved)

        assert resaved.monthly_amount == Decimal("5000")
        assert resaved.calculated_total_amount == Decimal("41800")


class TestSaveValidation:
    async def test_bank_transfer_requires_banks(self, service, async_db_session, ann_slot):
        draft = await service.load_or_draft(ann_slot)
        draft.sender_bank_id = None

        with pytest.raises(ValidationError, match="sender and receiver bank"):
            await service.save(draft)

        assert await count_payouts(async_db_session, ann_slot) == 0

    async def test_cash_clears_banks(self, service, ann_slot, bank_ids):
        draft = await draft_with_banks(service, ann_slot, bank_ids, payment_method=PaymentMethod.CASH)

        saved = await service.save(draft)

        assert saved.payment_method == PaymentMethod.CASH
        assert saved.sender_bank_id is None
        assert saved.receiver_bank_id is None

    async def test_negative_additional_cost(self, service, ann_slot, bank_ids):
        draft = await draft_with_banks(service, ann_slot, bank_ids, additional_cost=Decimal("-5"))

        with pytest.raises(ValidationError, match="cannot be negative"):
            await service.save(draft)

    async def test_non_numeric_additional_cost(self, service, ann_slot, bank_ids):
        draft = await draft_with_banks(service, ann_slot, bank_ids, additional_cost="ten")

        with pytest.raises(ValidationError):
            await service.save(draft)

    async def test_sub_cent_additional_cost(self, service, async_db_session, ann_slot, bank_ids):
        """Test a cost the money columns would round is refused before any write."""
        draft = await draft_with_banks(service, ann_slot, bank_ids, additional_cost=Decimal("0.005"))

        with pytest.raises(ValidationError, match="2 decimal places"):
            await service.save(draft)

        assert await count_payouts(async_db_session, ann_slot) == 0

    async def test_cached_total_matches_reload(self, service, ann_slot, bank_ids):
        """Test the stored total equals a live recompute from the stored toggles."""
        draft = await draft_with_banks(service, ann_slot, bank_ids, additional_cost=Decimal("12.34"))

        saved = await service.save(draft)
        reloaded = await service.load(ann_slot)

        assert reloaded.additional_cost == Decimal("12.34")
        assert reloaded.calculated_total_amount == Decimal("41787.66")
        assert await service.calculate(reloaded) == saved.calculated_total_amount

    async def test_set_paid_with_sub_cent_draft(self, service, ann_slot, bank_ids):
        saved = await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        saved.additional_cost = Decimal("0.005")

        with pytest.raises(PrerequisiteNotMet):
            await service.set_paid(ann_slot, True, draft=saved)

    async def test_notes_too_long(self, service, ann_slot, bank_ids):
        draft = await draft_with_banks(service, ann_slot, bank_ids, notes="x" * 101)

        with pytest.raises(ValidationError, match="100 characters"):
            await service.save(draft)

    async def test_notes_at_limit_accepted(self, service, ann_slot, bank_ids):
        draft = await draft_with_banks(service, ann_slot, bank_ids, notes="x" * 100)

        saved = await service.save(draft)

        assert len(saved.notes) == 100

    async def test_unknown_payment_method(self, service, ann_slot, bank_ids):
        draft = await draft_with_banks(service, ann_slot, bank_ids, payment_method="cheque")

        with pytest.raises(ValidationError, match="Unknown payment method"):
            await service.save(draft)


class TestConcurrentEdits:
    async def test_last_writer_wins_by_default(self, service, ann_slot, bank_ids):
        """Test two editors holding the same version both succeed; the later save wins."""
        await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        first = await service.load(ann_slot)
        second = await service.load(ann_slot)

        first.additional_cost = Decimal("100")
        second.additional_cost = Decimal("500")
        await service.save(first)
        await service.save(second)

        loaded = await service.load(ann_slot)
        assert loaded.additional_cost == Decimal("500")
        assert loaded.version == 3

    async def test_expected_version_rejects_stale_write(self, service, ann_slot, bank_ids):
        await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        first = await service.load(ann_slot)
        second = await service.load(ann_slot)

        first.additional_cost = Decimal("100")
        await service.save(first, expected_version=first.version)

        second.additional_cost = Decimal("500")
        with pytest.raises(ConcurrentEditError) as exc_info:
            await service.save(second, expected_version=second.version)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        loaded = await service.load(ann_slot)
        assert loaded.additional_cost == Decimal("100")

    async def test_reject_stale_writes_setting(self, async_db_session, settings, ann_slot, bank_ids):
        """Test the setting uses the loaded version without an explicit argument."""
        service = PayoutRecordService(
            async_db_session, settings.model_copy(update={"reject_stale_writes": True})
        )
        await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        first = await service.load(ann_slot)
        second = await service.load(ann_slot)

        await service.save(first)
        with pytest.raises(ConcurrentEditError):
            await service.save(second)

    @pytest.fixture
    def strict_service(self, async_db_session, settings):
        return PayoutRecordService(
            async_db_session, settings.model_copy(update={"reject_stale_writes": True})
        )

    async def test_stale_recompute_rejected(self, strict_service, ann_slot, bank_ids):
        """Test a cache write from an outdated view cannot overwrite a newer save."""
        await strict_service.save(await draft_with_banks(strict_service, ann_slot, bank_ids))
        view = await strict_service.load(ann_slot)
        other = await strict_service.load(ann_slot)
        other.additional_cost = Decimal("999")
        await strict_service.save(other)

        with pytest.raises(ConcurrentEditError) as exc_info:
            await strict_service.recompute_and_persist(
                ann_slot, PayoutToggles(admin_fee_waived=True), expected_version=view.version
            )

        assert exc_info.value.actual_version == 2
        loaded = await strict_service.load(ann_slot)
        assert loaded.additional_cost == Decimal("999")
        assert loaded.admin_fee_waived is False
        assert loaded.version == 2

    async def test_recompute_without_version_refused_in_strict_mode(
        self, strict_service, ann_slot, bank_ids
    ):
        await strict_service.save(await draft_with_banks(strict_service, ann_slot, bank_ids))

        with pytest.raises(ValidationError, match="needs the loaded version"):
            await strict_service.recompute_and_persist(ann_slot, PayoutToggles(admin_fee_waived=True))

        assert (await strict_service.load(ann_slot)).version == 1

    async def test_current_version_recompute_accepted(self, strict_service, ann_slot, bank_ids):
        saved = await strict_service.save(await draft_with_banks(strict_service, ann_slot, bank_ids))

        updated = await strict_service.recompute_and_persist(
            ann_slot, PayoutToggles(admin_fee_waived=True), expected_version=saved.version
        )

        assert updated.version == 2
        assert updated.calculated_total_amount == Decimal("42000")

    async def test_outbox_stale_write_rejected(self, strict_service, ann_slot, bank_ids):
        """Test debounced writes from one view chain versions but fail after a foreign save."""
        saved = await strict_service.save(await draft_with_banks(strict_service, ann_slot, bank_ids))
        outbox = PayoutWriteOutbox(strict_service.recompute_and_persist, delay=10)

        outbox.submit(ann_slot, PayoutToggles(additional_cost=Decimal("100")), saved.version)
        await outbox.flush()
        outbox.submit(ann_slot, PayoutToggles(additional_cost=Decimal("200")), saved.version)
        await outbox.flush()
        assert outbox.known_version(ann_slot) == 3

        other = await strict_service.load(ann_slot)
        other.additional_cost = Decimal("999")
        await strict_service.save(other)

        outbox.submit(ann_slot, PayoutToggles(additional_cost=Decimal("300")))
        with pytest.raises(ConcurrentEditError):
            await outbox.flush()

        loaded = await strict_service.load(ann_slot)
        assert loaded.additional_cost == Decimal("999")
        assert not outbox.has_pending()


class TestSetPaid:
    """Tests for the paid lifecycle."""

    async def test_set_paid_before_save(self, service, ann_slot):
        with pytest.raises(PrerequisiteNotMet):
            await service.set_paid(ann_slot, True)

    async def test_set_paid_with_unsaved_draft(self, service, ann_slot):
        draft = await service.load_or_draft(ann_slot)

        with pytest.raises(PrerequisiteNotMet):
            await service.set_paid(ann_slot, True, draft=draft)

    async def test_set_paid_with_unsaved_edits(self, service, ann_slot, bank_ids):
        saved = await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        saved.admin_fee_waived = True

        with pytest.raises(PrerequisiteNotMet, match="Save the changed payout details"):
            await service.set_paid(ann_slot, True, draft=saved)

        assert (await service.load(ann_slot)).paid is False

    async def test_mark_paid_then_unpaid(self, service, async_db_session, ann_slot, bank_ids):
        """Test paid flips both ways and leaves toggles and total untouched."""
        saved = await service.save(
            await draft_with_banks(service, ann_slot, bank_ids, additional_cost=Decimal("300"))
        )

        paid = await service.set_paid(ann_slot, True, actor_id=3, draft=saved)
        assert paid.paid is True
        assert paid.calculated_total_amount == Decimal("41500")
        assert paid.additional_cost == Decimal("300")

        unpaid = await service.set_paid(ann_slot, False, actor_id=3)
        assert unpaid.paid is False
        assert unpaid.calculated_total_amount == Decimal("41500")

        actions = (
            await async_db_session.execute(select(AuditLog.action).order_by(AuditLog.id))
        ).scalars().all()
        assert actions == ["create", "mark_paid", "mark_unpaid"]


class TestStoreFailures:
    @pytest.fixture
    def failing_writes(self, async_db_session, monkeypatch):
        """Make every INSERT and UPDATE fail like a dropped connection."""
        original_execute = async_db_session.execute

        async def execute(statement, *args, **kwargs):
            if isinstance(statement, (Insert, Update)):
                raise OperationalError(str(statement), {}, Exception("connection lost"))
            return await original_execute(statement, *args, **kwargs)

        monkeypatch.setattr(async_db_session, "execute", execute)
        return monkeypatch

    async def test_failed_first_save_leaves_nothing(
        self, service, async_db_session, ann_slot, bank_ids, failing_writes
    ):
        draft = await draft_with_banks(service, ann_slot, bank_ids, additional_cost=Decimal("300"))

        with pytest.raises(StoreUnavailable):
            await service.save(draft)

        failing_writes.undo()
        assert draft.calculated_total_amount is None
        assert await service.load(ann_slot) is None
        assert (await async_db_session.execute(select(func.count(AuditLog.id)))).scalar_one() == 0

    async def test_failed_update_keeps_previous_state(
        self, service, async_db_session, ann_slot, bank_ids, monkeypatch
    ):
        saved = await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        original_execute = async_db_session.execute

        async def execute(statement, *args, **kwargs):
            if isinstance(statement, Update):
                raise OperationalError(str(statement), {}, Exception("connection lost"))
            return await original_execute(statement, *args, **kwargs)

        monkeypatch.setattr(async_db_session, "execute", execute)
        saved.additional_cost = Decimal("999")

        with pytest.raises(StoreUnavailable):
            await service.save(saved)
        with pytest.raises(StoreUnavailable):
            await service.set_paid(ann_slot, True)

        monkeypatch.undo()
        loaded = await service.load(ann_slot)
        assert loaded.additional_cost == Decimal("0")
        assert loaded.calculated_total_amount == Decimal("41800")
        assert loaded.paid is False
        assert loaded.version == 1


class TestRecomputeAndPersist:
    async def test_unsaved_slot_is_skipped(self, service, ann_slot):
        assert await service.recompute_and_persist(ann_slot, PayoutToggles()) is None
        assert await service.load(ann_slot) is None

    async def test_updates_cached_total_and_toggles(self, service, ann_slot, bank_ids):
        saved = await service.save(await draft_with_banks(service, ann_slot, bank_ids))

        updated = await service.recompute_and_persist(
            ann_slot, PayoutToggles(last_slot_waived=True, additional_cost=Decimal("300"))
        )

        assert updated.last_slot_waived is True
        assert updated.calculated_total_amount == Decimal("46500")
        assert updated.version == saved.version + 1
        assert updated.paid is False

    async def test_outbox_writes_only_latest_toggles(self, service, ann_slot, bank_ids):
        """Test a burst of toggle changes through the outbox ends in the last state."""
        await service.save(await draft_with_banks(service, ann_slot, bank_ids))
        outbox = PayoutWriteOutbox(service.recompute_and_persist, delay=10)

        for cost in ("100", "200", "300"):
            outbox.submit(ann_slot, PayoutToggles(additional_cost=Decimal(cost)))
        await outbox.flush()

        loaded = await service.load(ann_slot)
        assert loaded.additional_cost == Decimal("300")
        assert loaded.calculated_total_amount == Decimal("41500")
        assert loaded.version == 2

    async def test_payout_date_survives_recompute(self, service, ann_slot, bank_ids):
        draft = await draft_with_banks(service, ann_slot, bank_ids, payout_date=date(2025, 8, 28))
        await service.save(draft)

        updated = await service.recompute_and_persist(ann_slot, PayoutToggles(admin_fee_waived=True))

        assert updated.payout_date == date(2025, 8, 28)
        assert updated.calculated_total_amount == Decimal("42000")
