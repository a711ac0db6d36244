from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select, func

from settlement.core.exceptions import (
    InvalidWebhookSignature,
    ValidationError,
    WebhookEventNotFound,
)
from settlement.models.billable_event import BillableEvent
from settlement.models.commission import CommissionRecord, CommissionStatus, SettlementFailure
from settlement.models.payment import LocalPaymentStatus, WebhookEventLog, WebhookOutcome
from settlement.services.notification_service import PaymentNotificationType
from settlement.services.payment_reconciliation_service import PaymentReconciler
from settlement.services.settlement_ledger import SettlementLedger
from settlement.services.webhook_service import (
    WebhookProcessor,
    validate_webhook_payload,
    webhook_event_id,
)

from tests.helpers import (
    FakeGateway,
    create_booking,
    create_policy,
    make_gateway,
    webhook_payload,
)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def notify(self, notification_type, payment):
        self.sent.append((notification_type, payment.gateway_payment_id))
        if self.fail:
            raise RuntimeError("SMS provider down")


async def count(db, column) -> int:
    return (await db.execute(select(func.count(column)))).scalar()


async def get_log(db, event_id) -> WebhookEventLog:
    result = await db.execute(
        select(WebhookEventLog)
        .where(WebhookEventLog.gateway_event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest_asyncio.fixture()
async def booking_with_policy(db):
    await create_policy(db, percentage="15", min_amount="5", max_amount="50")
    await create_booking(db)


def test_payload_validation_lists_every_missing_field():
    assert validate_webhook_payload({"payment": {}}) == [
        "event is required",
        "payment.id is required",
        "payment.status is required",
        "dateCreated is required",
    ]
    assert validate_webhook_payload({"event": "PAYMENT_RECEIVED", "dateCreated": "x"}) == [
        "payment is required",
    ]
    assert validate_webhook_payload([]) == ["payload must be a JSON object"]


def test_event_id_falls_back_to_digest():
    payload = webhook_payload(event_id=None)

    first = webhook_event_id(payload)

    assert first.startswith("sha256:")
    assert first == webhook_event_id(webhook_payload(event_id=None))
    assert first != webhook_event_id(webhook_payload(event_id=None, status="OVERDUE"))
    assert webhook_event_id(webhook_payload(event_id="evt_9")) == "evt_9"


@pytest.mark.asyncio
async def test_received_settles_commission(db, booking_with_policy):
    result = await WebhookProcessor(db).process(webhook_payload())

    assert result.success
    assert result.outcome == WebhookOutcome.PROCESSED
    assert result.local_status == LocalPaymentStatus.RECEIVED.value

    record = await SettlementLedger(db).get_record("e123")
    assert record.status == CommissionStatus.SETTLED.value
    assert record.commission_amount == Decimal("5.00")

    log = await get_log(db, "evt_1")
    assert log.processed is True
    assert log.outcome == WebhookOutcome.PROCESSED.value
    assert log.attempts == 1


@pytest.mark.asyncio
async def test_duplicate_delivery_settles_once(db, booking_with_policy):
    processor = WebhookProcessor(db)

    await processor.process(webhook_payload())
    second = await processor.process(webhook_payload())

    assert second.success
    assert second.outcome == WebhookOutcome.DUPLICATE
    assert await count(db, CommissionRecord.id) == 1
    assert await count(db, WebhookEventLog.id) == 1


@pytest.mark.asyncio
async def test_duplicate_without_event_id(db, booking_with_policy):
    processor = WebhookProcessor(db)

    await processor.process(webhook_payload(event_id=None))
    second = await processor.process(webhook_payload(event_id=None))

    assert second.outcome == WebhookOutcome.DUPLICATE
    assert await count(db, CommissionRecord.id) == 1


@pytest.mark.asyncio
async def test_confirmed_then_received_settles_once(db, booking_with_policy):
    processor = WebhookProcessor(db)

    await processor.process(webhook_payload(event="PAYMENT_CONFIRMED", status="CONFIRMED", event_id="evt_1"))
    result = await processor.process(webhook_payload(event="PAYMENT_RECEIVED", event_id="evt_2"))

    assert result.outcome == WebhookOutcome.PROCESSED
    assert await count(db, CommissionRecord.id) == 1


@pytest.mark.asyncio
async def test_stale_pending_after_received_is_ignored(db, booking_with_policy):
    processor = WebhookProcessor(db)
    await processor.process(webhook_payload(event_id="evt_1"))

    result = await processor.process(
        webhook_payload(event="PAYMENT_CREATED", status="PENDING", event_id="evt_0")
    )

    assert result.success
    assert result.local_status == LocalPaymentStatus.RECEIVED.value
    mirror = await PaymentReconciler(db).get_mirror("pay_1")
    assert mirror.local_status == LocalPaymentStatus.RECEIVED.value
    assert mirror.gateway_status == "RECEIVED"


@pytest.mark.asyncio
async def test_unhandled_event_is_ignored(db):
    result = await WebhookProcessor(db).process(
        webhook_payload(event="PAYMENT_BANK_SLIP_VIEWED", status="PENDING")
    )

    assert result.success
    assert result.outcome == WebhookOutcome.IGNORED
    log = await get_log(db, "evt_1")
    assert log.processed is True
    assert await PaymentReconciler(db).get_mirror("pay_1") is None


@pytest.mark.asyncio
async def test_invalid_payload_is_not_logged(db):
    payload = webhook_payload()
    del payload["payment"]["status"]

    with pytest.raises(ValidationError) as exc_info:
        await WebhookProcessor(db).process(payload)

    assert exc_info.value.errors == ["payment.status is required"]
    assert await count(db, WebhookEventLog.id) == 0


@pytest.mark.asyncio
async def test_refund_cancels_commission(db, booking_with_policy):
    processor = WebhookProcessor(db)
    await processor.process(webhook_payload(event_id="evt_1"))

    result = await processor.process(
        webhook_payload(event="PAYMENT_REFUNDED", status="REFUNDED", event_id="evt_2")
    )

    assert result.local_status == LocalPaymentStatus.CANCELLED.value
    record = await SettlementLedger(db).get_record("e123")
    assert record.status == CommissionStatus.CANCELLED.value
    assert record.cancellation_reason == "Payment pay_1 REFUNDED"


@pytest.mark.asyncio
async def test_received_after_refund_does_not_revive(db, booking_with_policy):
    processor = WebhookProcessor(db)
    await processor.process(webhook_payload(event_id="evt_1"))
    await processor.process(webhook_payload(event="PAYMENT_REFUNDED", status="REFUNDED", event_id="evt_2"))

    await processor.process(webhook_payload(event_id="evt_3"))

    mirror = await PaymentReconciler(db).get_mirror("pay_1")
    assert mirror.local_status == LocalPaymentStatus.CANCELLED.value
    record = await SettlementLedger(db).get_record("e123")
    assert record.status == CommissionStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_deleted_charge_without_commission(db):
    await create_booking(db)

    result = await WebhookProcessor(db).process(
        webhook_payload(event="PAYMENT_DELETED", status="PENDING")
    )

    assert result.outcome == WebhookOutcome.PROCESSED
    assert result.local_status == LocalPaymentStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_failed_side_effect_can_be_reprocessed(db):
    await create_booking(db)
    processor = WebhookProcessor(db)

    first = await processor.process(webhook_payload())

    assert first.success is False
    assert first.outcome == WebhookOutcome.FAILED
    log = await get_log(db, "evt_1")
    assert log.processed is False
    assert log.attempts == 1
    assert log.processing_error.startswith("No active commission policy for barber barber-1")
    mirror = await PaymentReconciler(db).get_mirror("pay_1")
    assert mirror.local_status == LocalPaymentStatus.RECEIVED.value

    await create_policy(db, percentage="15", min_amount="5", max_amount="50")
    second = await processor.reprocess("evt_1")

    assert second.success
    assert second.outcome == WebhookOutcome.PROCESSED
    record = await SettlementLedger(db).get_record("e123")
    assert record.commission_amount == Decimal("5.00")
    log = await get_log(db, "evt_1")
    assert log.processed is True
    assert log.attempts == 2
    assert log.processing_error is None


@pytest.mark.asyncio
async def test_redelivery_of_failed_event_is_retried(db):
    await create_booking(db)
    processor = WebhookProcessor(db)
    await processor.process(webhook_payload())
    await create_policy(db, percentage="15")

    result = await processor.process(webhook_payload())

    assert result.outcome == WebhookOutcome.PROCESSED
    assert await count(db, CommissionRecord.id) == 1


@pytest.mark.asyncio
async def test_reprocess_failed_batch(db):
    await create_booking(db)
    processor = WebhookProcessor(db)
    await processor.process(webhook_payload(event_id="evt_1"))

    stats = await processor.reprocess_failed()
    assert stats == {"total": 1, "processed": 0, "failed": 1}

    await create_policy(db, percentage="15")
    stats = await processor.reprocess_failed()
    assert stats == {"total": 1, "processed": 1, "failed": 0}

    assert await processor.reprocess_failed() == {"total": 0, "processed": 0, "failed": 0}


@pytest.mark.asyncio
async def test_reprocess_failed_respects_max_attempts(db):
    await create_booking(db)
    processor = WebhookProcessor(db)
    await processor.process(webhook_payload())

    stats = await processor.reprocess_failed(max_attempts=1)

    assert stats["total"] == 0


@pytest.mark.asyncio
async def test_reprocess_unknown_event(db):
    with pytest.raises(WebhookEventNotFound):
        await WebhookProcessor(db).reprocess("evt_missing")


@pytest.mark.asyncio
async def test_list_events_filters(db):
    processor = WebhookProcessor(db)
    await processor.process(webhook_payload(event="PAYMENT_BANK_SLIP_VIEWED", event_id="evt_1"))
    await processor.process(
        webhook_payload(event="PAYMENT_CHECKOUT_VIEWED", event_id="evt_2", payment_id="pay_2")
    )

    assert len(await processor.list_events()) == 2
    events = await processor.list_events(gateway_payment_id="pay_2")
    assert [e.gateway_event_id for e in events] == ["evt_2"]
    assert await processor.list_events(processed=False) == []


@pytest.mark.asyncio
async def test_signature_checked_in_production(db):
    gateway = make_gateway(FakeGateway(), environment="production", webhook_token="s3cret")
    processor = WebhookProcessor(db, gateway)

    with pytest.raises(InvalidWebhookSignature):
        await processor.process(webhook_payload(event="PAYMENT_BANK_SLIP_VIEWED"), "wrong")
    assert await count(db, WebhookEventLog.id) == 0

    result = await processor.process(webhook_payload(event="PAYMENT_BANK_SLIP_VIEWED"), "s3cret")
    assert result.success
    await gateway.aclose()


@pytest.mark.asyncio
async def test_sandbox_accepts_any_token(db, gateway):
    result = await WebhookProcessor(db, gateway).process(
        webhook_payload(event="PAYMENT_BANK_SLIP_VIEWED"), "whatever"
    )

    assert result.success


@pytest.mark.asyncio
async def test_overdue_notifies_client(db):
    notifier = RecordingNotifier()
    processor = WebhookProcessor(db, reconciler=PaymentReconciler(db, notifier=notifier))

    await processor.process(webhook_payload(event="PAYMENT_OVERDUE", status="OVERDUE", event_id="evt_1"))
    await processor.process(webhook_payload(event="PAYMENT_UPDATED", status="OVERDUE", event_id="evt_2"))

    assert notifier.sent == [(PaymentNotificationType.PAYMENT_OVERDUE, "pay_1")]


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_webhook(db, booking_with_policy):
    notifier = RecordingNotifier(fail=True)
    processor = WebhookProcessor(db, reconciler=PaymentReconciler(db, notifier=notifier))

    result = await processor.process(webhook_payload())

    assert result.outcome == WebhookOutcome.PROCESSED
    assert notifier.sent == [(PaymentNotificationType.PAYMENT_RECEIVED, "pay_1")]


@pytest.mark.asyncio
async def test_received_notification_sent_after_reprocess(db):
    await create_booking(db)
    notifier = RecordingNotifier()
    processor = WebhookProcessor(db, reconciler=PaymentReconciler(db, notifier=notifier))

    first = await processor.process(webhook_payload())
    assert first.outcome == WebhookOutcome.FAILED
    assert notifier.sent == []

    await create_policy(db, percentage="15")
    second = await processor.reprocess("evt_1")
    await processor.process(webhook_payload(event="PAYMENT_UPDATED", event_id="evt_2"))

    assert second.outcome == WebhookOutcome.PROCESSED
    assert notifier.sent == [(PaymentNotificationType.PAYMENT_RECEIVED, "pay_1")]
    mirror = await PaymentReconciler(db).get_mirror("pay_1")
    assert mirror.notified_status == LocalPaymentStatus.RECEIVED.value


@pytest.mark.asyncio
async def test_second_charge_after_refund_is_queued(db, booking_with_policy):
    processor = WebhookProcessor(db)
    await processor.process(webhook_payload(event_id="evt_1"))
    await processor.process(webhook_payload(event="PAYMENT_REFUNDED", status="REFUNDED", event_id="evt_2"))

    result = await processor.process(webhook_payload(event_id="evt_3", payment_id="pay_2"))

    assert result.success is False
    assert result.outcome == WebhookOutcome.FAILED
    log = await get_log(db, "evt_3")
    assert log.processed is False
    failure = (await db.execute(select(SettlementFailure))).scalar_one()
    assert failure.billable_event_id == "e123"
    assert failure.error_type == "CommissionCancelledError"
    revenue = await db.get(BillableEvent, "e123", populate_existing=True)
    assert revenue.confirmed is False
    record = await SettlementLedger(db).get_record("e123")
    assert record.status == CommissionStatus.CANCELLED.value
