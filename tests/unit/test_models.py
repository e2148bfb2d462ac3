"""Unit tests for model helpers (no database)."""

from decimal import Decimal

from kasmoni.models import Base
from kasmoni.models.group import Group
from kasmoni.models.member import Member
from kasmoni.models.payout import PayoutRecord
from kasmoni.services.deduction_service import PayoutToggles


def make_group(duration=10, start="2025-01", end="2025-10"):
    return Group(
        name="Alpha",
        monthly_amount=Decimal("5000"),
        max_members=10,
        duration=duration,
        start_month=start,
        end_month=end,
    )


class TestGroup:
    def test_base_amount(self):
        assert make_group().base_amount == Decimal("50000")

    def test_duration_matches_month_span(self):
        assert make_group().validate_duration() is True

    def test_duration_mismatch(self):
        assert make_group(duration=9).validate_duration() is False

    def test_reversed_months_invalid(self):
        assert make_group(duration=0, start="2025-05", end="2025-04").validate_duration() is False


def test_member_full_name():
    assert Member(first_name="Ann", last_name="Adams").full_name == "Ann Adams"


class TestPayoutRecordToggles:
    def test_apply_and_read_toggles(self):
        """Toggles copied onto a record read back unchanged."""
        record = PayoutRecord(slot_id=1, monthly_amount=Decimal("5000"), duration=10)
        toggles = PayoutToggles(
            last_slot_waived=True,
            admin_fee_waived=False,
            settled_deduction_enabled=False,
            additional_cost=Decimal("12.50"),
        )

        record.apply_toggles(toggles)

        assert record.toggles == toggles
        assert record.is_persisted is False


def test_every_table_has_key_and_timestamps():
    """Each mapped table carries the shared id and UTC timestamp columns."""
    assert {"groups", "members", "banks", "group_members", "payments", "payouts", "audit_logs"} <= set(
        Base.metadata.tables
    )
    for table in Base.metadata.tables.values():
        assert table.c.id.primary_key
        assert table.c.created_at.type.timezone is True
        assert table.c.updated_at.onupdate is not None
