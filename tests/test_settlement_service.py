from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select, func

from settlement.core.exceptions import (
    BillableEventNotFound,
    CommissionCancelledError,
    PolicyNotFound,
    ValidationError,
)
from settlement.models.billable_event import BillableEvent
from settlement.models.commission import (
    CommissionRecord,
    CommissionStatus,
    SettlementFailure,
)
from settlement.services.commission_policy_service import PolicyResolver
from settlement.services.settlement_ledger import SettlementLedger
from settlement.services.settlement_service import SettlementService

from tests.helpers import create_booking, create_policy, create_revenue


async def count_records(db) -> int:
    return (await db.execute(select(func.count(CommissionRecord.id)))).scalar()


@pytest.mark.asyncio
async def test_settle_applies_min_bound(db):
    await create_policy(db, percentage="15", min_amount="5", max_amount="50")
    event = await create_revenue(db, amount="20.00")

    record = await SettlementService(db).settle(event)

    assert record.status == CommissionStatus.SETTLED.value
    assert record.commission_amount == Decimal("5.00")
    assert record.calculated_amount == Decimal("5.00")
    assert record.gross_service_amount == Decimal("20.00")
    assert record.applied_percentage == Decimal("15")
    assert record.settled_at is not None


@pytest.mark.asyncio
async def test_settle_writes_commission_ledger_entry(db):
    await create_policy(db, percentage="15", min_amount="5", max_amount="50")
    event = await create_revenue(db, amount="100.00")

    await SettlementService(db).settle(event)

    entry = await db.get(BillableEvent, "e123:commission")
    assert entry.kind == "COMMISSION"
    assert entry.amount == Decimal("15.00")
    assert entry.source_event_id == "e123"
    assert "15" in entry.description
    assert "100.00" in entry.notes


@pytest.mark.asyncio
async def test_settle_is_idempotent(db):
    await create_policy(db, percentage="15")
    event = await create_revenue(db, amount="100.00")
    service = SettlementService(db)

    first = await service.settle(event)
    second = await service.settle(event)

    assert second.id == first.id
    assert await count_records(db) == 1


@pytest.mark.asyncio
async def test_existing_record_not_recomputed_after_policy_change(db):
    await create_policy(db, percentage="15")
    event = await create_revenue(db, amount="100.00")
    service = SettlementService(db)
    await service.settle(event)

    await create_policy(db, service_id="svc-cut", percentage="50")
    event.service_id = "svc-cut"
    await db.commit()

    record = await service.settle(event)
    assert record.commission_amount == Decimal("15.00")


@pytest.mark.asyncio
async def test_unconfirmed_revenue_is_not_settled(db):
    await create_policy(db)
    event = await create_revenue(db, confirmed=False)

    assert await SettlementService(db).settle(event) is None
    assert await count_records(db) == 0


@pytest.mark.asyncio
async def test_expense_is_not_settled(db):
    await create_policy(db)
    event = await create_revenue(db, kind="EXPENSE")

    assert await SettlementService(db).settle(event) is None


@pytest.mark.asyncio
async def test_service_resolved_from_booking(db):
    await create_policy(db, percentage="10")
    await create_policy(db, service_id="svc-cut", percentage="20")
    await create_booking(db, booking_id="e123", service_id="svc-cut")
    event = await create_revenue(db, amount="50.00")

    record = await SettlementService(db).settle(event)

    assert record.service_id == "svc-cut"
    assert record.applied_percentage == Decimal("20")
    assert record.commission_amount == Decimal("10.00")


@pytest.mark.asyncio
async def test_interrupted_settlement_is_completed(db):
    policy = await create_policy(db, percentage="15")
    event = await create_revenue(db, amount="100.00")
    record, created = await SettlementLedger(db).record_commission(event, policy, Decimal("15.00"))
    await db.commit()
    assert created
    assert record.status == CommissionStatus.CALCULATED.value

    settled = await SettlementService(db).settle(event)

    assert settled.id == record.id
    assert settled.status == CommissionStatus.SETTLED.value


@pytest.mark.asyncio
async def test_completing_interrupted_settlement_resolves_failure(db):
    await create_revenue(db, event_id="e500", amount="40.00")
    service = SettlementService(db)
    with pytest.raises(PolicyNotFound):
        await service.settle_by_id("e500")

    policy = await create_policy(db, percentage="25")
    event = await db.get(BillableEvent, "e500", populate_existing=True)
    await SettlementLedger(db).record_commission(event, policy, Decimal("10.00"))
    await db.commit()

    record = await service.settle(event)

    assert record.status == CommissionStatus.SETTLED.value
    assert await service.list_failures() == []


@pytest.mark.asyncio
async def test_missing_policy_goes_to_failure_queue(db):
    await create_revenue(db, event_id="e500", amount="40.00")
    service = SettlementService(db)

    with pytest.raises(PolicyNotFound):
        await service.settle_by_id("e500")

    failures = await service.list_failures()
    assert len(failures) == 1
    assert failures[0].billable_event_id == "e500"
    assert failures[0].error_type == "PolicyNotFound"
    assert await count_records(db) == 0

    with pytest.raises(PolicyNotFound):
        await service.settle_by_id("e500")
    failure = (await db.execute(select(SettlementFailure))).scalar_one()
    assert failure.attempts == 2


@pytest.mark.asyncio
async def test_failure_resolved_once_policy_exists(db):
    await create_revenue(db, event_id="e500", amount="40.00")
    service = SettlementService(db)
    with pytest.raises(PolicyNotFound):
        await service.settle_by_id("e500")

    await create_policy(db, percentage="25")
    record = await service.settle_by_id("e500")

    assert record.commission_amount == Decimal("10.00")
    assert await service.list_failures() == []
    assert len(await service.list_failures(include_resolved=True)) == 1


@pytest.mark.asyncio
async def test_event_without_barber_rejected(db):
    await create_policy(db)
    event = await create_revenue(db, barber_id=None)

    with pytest.raises(ValidationError):
        await SettlementService(db).settle(event)


@pytest.mark.asyncio
async def test_settle_unknown_event(db):
    with pytest.raises(BillableEventNotFound):
        await SettlementService(db).settle_by_id("missing")


@pytest.mark.asyncio
async def test_confirm_revenue_from_booking(db):
    await create_booking(db, booking_id="bk-1", service_id="svc-cut", total_amount="45.00")

    event = await SettlementService(db).confirm_revenue("bk-1", amount=Decimal("40.00"))

    assert event.kind == "REVENUE"
    assert event.confirmed is True
    assert event.amount == Decimal("40.00")
    assert event.barber_id == "barber-1"
    assert event.service_id == "svc-cut"


@pytest.mark.asyncio
async def test_confirm_revenue_uses_booking_total(db):
    await create_booking(db, booking_id="bk-1", total_amount="45.00")

    event = await SettlementService(db).confirm_revenue("bk-1")

    assert event.amount == Decimal("45.00")


@pytest.mark.asyncio
async def test_confirm_revenue_existing_event(db):
    await create_revenue(db, confirmed=False, amount="20.00")

    event = await SettlementService(db).confirm_revenue("e123", amount=Decimal("99.00"))

    assert event.confirmed is True
    assert event.amount == Decimal("20.00")


@pytest.mark.asyncio
async def test_confirm_revenue_unknown_reference(db):
    with pytest.raises(BillableEventNotFound):
        await SettlementService(db).confirm_revenue("nope")


@pytest.mark.asyncio
async def test_cancel_voids_record_and_revenue(db):
    await create_policy(db, percentage="15")
    event = await create_revenue(db, amount="100.00")
    service = SettlementService(db)
    await service.settle(event)

    record = await service.cancel("e123", "Payment refunded")
    await db.commit()

    assert record.status == CommissionStatus.CANCELLED.value
    assert record.cancellation_reason == "Payment refunded"
    revenue = await db.get(BillableEvent, "e123")
    assert revenue.confirmed is False
    entry = await db.get(BillableEvent, "e123:commission")
    assert entry.confirmed is False


@pytest.mark.asyncio
async def test_reconfirmed_revenue_after_cancel_is_queued(db):
    await create_policy(db, percentage="15")
    event = await create_revenue(db, amount="100.00")
    service = SettlementService(db)
    await service.settle(event)
    await service.cancel("e123", "Payment refunded")
    await db.commit()

    event = await service.confirm_revenue("e123")
    with pytest.raises(CommissionCancelledError):
        await service.settle_or_queue(event)

    failure = (await db.execute(select(SettlementFailure))).scalar_one()
    assert failure.billable_event_id == "e123"
    assert failure.error_type == "CommissionCancelledError"
    revenue = await db.get(BillableEvent, "e123", populate_existing=True)
    assert revenue.confirmed is False
    record = await SettlementLedger(db).get_record("e123")
    assert record.status == CommissionStatus.CANCELLED.value
    assert await count_records(db) == 1


@pytest.mark.asyncio
async def test_cancel_without_record(db):
    await create_revenue(db)

    assert await SettlementService(db).cancel("e123", "Payment deleted") is None


@pytest.mark.asyncio
async def test_policy_resolver_injected(db):
    await create_policy(db, percentage="15")
    event = await create_revenue(db, amount="10.00")

    service = SettlementService(db, resolver=PolicyResolver(db))
    record = await service.settle(event)

    assert record.commission_amount == Decimal("1.50")
