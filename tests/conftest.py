"""Pytest configuration and shared fixtures.

Every test gets its own in-memory SQLite database with all tables created.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from kasmoni.models import Base
from kasmoni.models.bank import Bank
from kasmoni.models.group import Group
from kasmoni.models.member import Member
from kasmoni.models.payment import Payment, PaymentMethod, PaymentStatus
from kasmoni.models.slot import Slot
from kasmoni.services.config import Settings

PAYOUT_MONTH = "2025-08"


@pytest.fixture
def settings():
    """Settings with a short debounce and the standard admin fee."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        admin_fee=Decimal("200"),
        recompute_debounce_seconds=0.01,
        reject_stale_writes=False,
    )


@pytest.fixture
async def async_engine():
    """Create async in-memory engine with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_db_session(async_engine):
    """Create async test database session."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session() as session:
        yield session


@pytest.fixture
async def banks(async_db_session):
    """Create sender and receiver banks."""
    sender = Bank(name="De Surinaamsche Bank", short_name="DSB")
    receiver = Bank(name="Hakrinbank", short_name="HKB")
    async_db_session.add_all([sender, receiver])
    await async_db_session.commit()
    return sender, receiver


@pytest.fixture
async def kasmoni_data(async_db_session):
    """
    Create two groups with members and slots.

    Alpha: 5000/month, 2025-01..2025-10 (duration 10), four slots:
        Ann 2025-08, Bob 2025-09, Cara 2025-10, Dan 2025-07
    Beta: 1000/month, 2025-03..2025-08 (duration 6), one slot:
        Eve 2025-08
    """
    alpha = Group(
        name="Alpha",
        monthly_amount=Decimal("5000"),
        max_members=10,
        duration=10,
        start_month="2025-01",
        end_month="2025-10",
    )
    beta = Group(
        name="Beta",
        monthly_amount=Decimal("1000"),
        max_members=6,
        duration=6,
        start_month="2025-03",
        end_month="2025-08",
    )
    members = {
        key: Member(
            first_name=first,
            last_name=last,
            national_id=f"FZ{index:05d}",
            bank_name="DSB" if index % 2 else "Hakrinbank",
            account_number=f"100{index:04d}",
        )
        for index, (key, first, last) in enumerate(
            [
                ("ann", "Ann", "Adams"),
                ("bob", "Bob", "Brown"),
                ("cara", "Cara", "Clark"),
                ("dan", "Dan", "Dole"),
                ("eve", "Eve", "Evans"),
            ],
            start=1,
        )
    }
    async_db_session.add_all([alpha, beta, *members.values()])
    await async_db_session.flush()

    slots = {
        "ann": Slot(group_id=alpha.id, member_id=members["ann"].id, assigned_month="2025-08"),
        "bob": Slot(group_id=alpha.id, member_id=members["bob"].id, assigned_month="2025-09"),
        "cara": Slot(group_id=alpha.id, member_id=members["cara"].id, assigned_month="2025-10"),
        "dan": Slot(group_id=alpha.id, member_id=members["dan"].id, assigned_month="2025-07"),
        "eve": Slot(group_id=beta.id, member_id=members["eve"].id, assigned_month="2025-08"),
    }
    async_db_session.add_all(slots.values())
    await async_db_session.commit()

    return {"groups": {"alpha": alpha, "beta": beta}, "members": members, "slots": slots}


@pytest.fixture
def add_payment(async_db_session):
    """Return a coroutine adding one payment row."""

    async def _add_payment(
        member,
        group,
        amount,
        status=PaymentStatus.RECEIVED,
        slot=None,
        month=PAYOUT_MONTH,
        payment_date=date(2025, 8, 5),
    ) -> Payment:
        payment = Payment(
            member_id=member.id,
            group_id=group.id,
            slot_id=slot.id if slot is not None else None,
            payment_month=month,
            payment_date=payment_date,
            amount=Decimal(amount),
            status=status,
            payment_method=PaymentMethod.CASH,
        )
        async_db_session.add(payment)
        await async_db_session.commit()
        return payment

    return _add_payment
