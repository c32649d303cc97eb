"""Unit tests for plan-based invoice quotas."""

from datetime import datetime, timezone

import pytest

from services.queue.quota import QuotaService, billing_period_start
from services.records.models import InvoiceRecord, OwnerProfile
from services.records.store import InMemoryRecordStore
from services.shared.config import Settings
from services.shared.errors import QuotaExceeded

NOW = datetime(2024, 3, 20, 12, 0, tzinfo=timezone.utc)


async def seed_invoices(store: InMemoryRecordStore, owner_id: str, count: int, created_at: datetime) -> None:
    for n in range(count):
        await store.create_invoice(
            InvoiceRecord(id=f"{owner_id}-{created_at:%m}-{n}", owner_id=owner_id, created_at=created_at)
        )


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


def test_billing_period_start() -> None:
    assert billing_period_start(NOW) == datetime(2024, 3, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_limit_reached_raises(store: InMemoryRecordStore) -> None:
    """50 invoices on the 50-invoice starter plan is over quota."""
    await seed_invoices(store, "owner-1", 50, NOW)
    quota = QuotaService(Settings(), store)

    with pytest.raises(QuotaExceeded) as exc_info:
        await quota.check("owner-1", now=NOW)

    assert exc_info.value.used == 50
    assert exc_info.value.limit == 50
    assert "50/50" in str(exc_info.value)


@pytest.mark.asyncio
async def test_previous_period_not_counted(store: InMemoryRecordStore) -> None:
    await seed_invoices(store, "owner-1", 50, datetime(2024, 2, 28, tzinfo=timezone.utc))
    await seed_invoices(store, "owner-1", 3, NOW)

    usage = await QuotaService(Settings(), store).check("owner-1", now=NOW)

    assert usage.used == 3
    assert usage.limit == 50
    assert usage.plan == "starter"


@pytest.mark.asyncio
async def test_plan_from_owner_profile(store: InMemoryRecordStore) -> None:
    store.profiles["owner-1"] = OwnerProfile(owner_id="owner-1", plan="professional")
    await seed_invoices(store, "owner-1", 60, NOW)

    usage = await QuotaService(Settings(), store).check("owner-1", now=NOW)

    assert usage.plan == "professional"
    assert usage.limit == 200


@pytest.mark.asyncio
async def test_unlimited_plan(store: InMemoryRecordStore) -> None:
    """A limit of -1 never runs out."""
    store.profiles["owner-1"] = OwnerProfile(owner_id="owner-1", plan="business")
    await seed_invoices(store, "owner-1", 500, NOW)

    usage = await QuotaService(Settings(), store).check("owner-1", now=NOW)

    assert usage.unlimited is True
    assert usage.exceeded is False


@pytest.mark.asyncio
async def test_unknown_plan_falls_back_to_default(store: InMemoryRecordStore) -> None:
    store.profiles["owner-1"] = OwnerProfile(owner_id="owner-1", plan="legacy-gold")

    usage = await QuotaService(Settings(), store).usage("owner-1", now=NOW)

    assert usage.plan == "starter"
    assert usage.limit == 50
