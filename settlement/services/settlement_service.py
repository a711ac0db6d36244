"""
Automatic commission settlement.

Reacts to confirmed revenue: resolves the barber's policy, computes the
commission and records it exactly once per billable event. A record moves
CALCULATED -> SETTLED (two commits) and may later be CANCELLED; a
cancelled record is never revived.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.core.exceptions import (
    BillableEventNotFound,
    CommissionCancelledError,
    SettlementError,
    ValidationError,
)
from settlement.database import upsert_statement
from settlement.models.billable_event import BillableEvent, BillableEventKind
from settlement.models.booking import Booking
from settlement.models.commission import CommissionRecord, CommissionStatus, SettlementFailure
from settlement.services.commission_calculator import calculate
from settlement.services.commission_policy_service import PolicyResolver
from settlement.services.settlement_ledger import SettlementLedger

logger = logging.getLogger(__name__)


class SettlementService:
    """Creates, completes and cancels commission records for billable events."""

    def __init__(
        self,
        db: AsyncSession,
        resolver: Optional[PolicyResolver] = None,
        ledger: Optional[SettlementLedger] = None,
    ):
        self.db = db
        self.resolver = resolver or PolicyResolver(db)
        self.ledger = ledger or SettlementLedger(db)

    async def settle(self, event: BillableEvent) -> Optional[CommissionRecord]:
        """
        Settle the commission for a billable event.

        Returns None when the event is not confirmed revenue. An event that
        already has a record gets that record back unchanged, except that a
        CALCULATED record left by an interrupted run is completed.

        Raises:
            CommissionCancelledError: revenue confirmed again after its
                commission was cancelled (needs an operator)
            PolicyNotFound: no policy for the barber/service pair
            ValidationError: event lacks a barber or has a negative amount
        """
        if not event.is_settleable:
            logger.debug(f"Event {event.id} ({event.kind}, confirmed={event.confirmed}) is not settleable")
            return None

        existing = await self.ledger.get_record(event.id)
        if existing is not None:
            if existing.is_cancelled:
                raise CommissionCancelledError(event.id)
            if existing.status == CommissionStatus.CALCULATED.value:
                await self.ledger.mark_settled(existing)
                await self._resolve_failure(event.id)
                await self.db.commit()
            return existing

        errors = []
        if not event.barber_id:
            errors.append("barber_id is required for settlement")
        if event.amount is None or event.amount < 0:
            errors.append("amount must not be negative")
        if errors:
            raise ValidationError(errors, f"Event {event.id} cannot be settled")

        service_id = event.service_id or await self._service_from_booking(event)
        policy = await self.resolver.resolve(event.barber_id, service_id)
        amount = calculate(event.amount, policy)

        record, _ = await self.ledger.record_commission(event, policy, amount, service_id)
        await self.db.commit()

        await self.ledger.mark_settled(record)
        await self._resolve_failure(event.id)
        await self.db.commit()
        return record

    async def settle_by_id(self, billable_event_id: str) -> Optional[CommissionRecord]:
        event = await self.db.get(BillableEvent, billable_event_id)
        if event is None:
            raise BillableEventNotFound(billable_event_id)
        return await self.settle_or_queue(event)

    async def settle_or_queue(self, event: BillableEvent) -> Optional[CommissionRecord]:
        """settle(), recording failures in the operator queue before re-raising."""
        # rollback expires the instance
        event_id, barber_id = event.id, event.barber_id
        try:
            return await self.settle(event)
        except SettlementError as e:
            await self.db.rollback()
            await self._record_failure(event_id, barber_id, e)
            await self.db.commit()
            logger.error(f"Settlement failed for event {event_id}: {e.message}")
            raise

    async def confirm_revenue(
        self,
        billable_event_id: str,
        amount: Optional[Decimal] = None,
        occurred_on: Optional[date] = None,
    ) -> BillableEvent:
        """
        Mark revenue as confirmed, creating the entry from its booking if needed.

        Used when the gateway reports a payment as received. The payment's
        externalReference is the billable event id, which is the booking id
        for entries created here.
        """
        event = await self.db.get(BillableEvent, billable_event_id, populate_existing=True)
        if event is not None:
            if event.kind != BillableEventKind.REVENUE.value:
                raise ValidationError(
                    [f"billable event {billable_event_id} is {event.kind}, not REVENUE"],
                    "Cannot confirm revenue",
                )
            if not event.confirmed:
                event.confirmed = True
                await self.db.flush()
                logger.info(f"Revenue confirmed: event={event.id} amount={event.amount}")
            return event

        booking = await self.db.get(Booking, billable_event_id)
        if booking is None:
            raise BillableEventNotFound(billable_event_id)

        gross = amount if amount is not None else booking.total_amount
        if gross is None:
            raise ValidationError(
                [f"no amount available for booking {booking.id}"],
                "Cannot confirm revenue",
            )

        insert = upsert_statement(self.db, BillableEvent)
        stmt = insert.values(
            id=booking.id,
            barber_id=booking.barber_id,
            service_id=booking.service_id,
            booking_id=booking.id,
            kind=BillableEventKind.REVENUE.value,
            amount=gross,
            occurred_on=occurred_on or date.today(),
            confirmed=True,
            description=f"Payment received for booking {booking.id}",
        ).on_conflict_do_nothing(index_elements=["id"])
        await self.db.execute(stmt)

        event = await self.db.get(BillableEvent, booking.id, populate_existing=True)
        logger.info(f"Revenue recorded from booking: event={event.id} barber={event.barber_id} amount={event.amount}")
        return event

    async def cancel(self, billable_event_id: str, reason: str) -> Optional[CommissionRecord]:
        """
        Void the commission of a billable event and unconfirm the revenue.

        Adjustment history is kept. Returns None when no record exists.
        """
        event = await self.db.get(BillableEvent, billable_event_id)
        if event is not None and event.confirmed:
            event.confirmed = False

        record = await self.ledger.get_record(billable_event_id, for_update=True)
        if record is None:
            await self.db.flush()
            logger.info(f"No commission to cancel for event {billable_event_id}")
            return None

        await self.ledger.mark_cancelled(record, reason)
        return record

    async def _service_from_booking(self, event: BillableEvent) -> Optional[str]:
        booking = await self.db.get(Booking, event.booking_id or event.id)
        if booking is None:
            return None
        return booking.service_id

    async def _record_failure(
        self,
        billable_event_id: str,
        barber_id: Optional[str],
        error: SettlementError,
    ) -> None:
        now = datetime.now(timezone.utc)
        insert = upsert_statement(self.db, SettlementFailure)
        stmt = insert.values(
            billable_event_id=billable_event_id,
            barber_id=barber_id,
            error_type=type(error).__name__,
            message=error.message,
            details=error.details,
            attempts=1,
            first_failed_at=now,
            last_failed_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["billable_event_id"],
            set_={
                "error_type": stmt.excluded.error_type,
                "message": stmt.excluded.message,
                "details": stmt.excluded.details,
                "attempts": SettlementFailure.attempts + 1,
                "last_failed_at": now,
                "resolved_at": None,
            },
        )
        await self.db.execute(stmt)

    async def _resolve_failure(self, billable_event_id: str) -> None:
        await self.db.execute(
            update(SettlementFailure)
            .where(
                SettlementFailure.billable_event_id == billable_event_id,
                SettlementFailure.resolved_at.is_(None),
            )
            .values(resolved_at=datetime.now(timezone.utc))
        )

    async def list_failures(self, include_resolved: bool = False):
        query = select(SettlementFailure)
        if not include_resolved:
            query = query.where(SettlementFailure.resolved_at.is_(None))
        query = query.order_by(SettlementFailure.last_failed_at.desc())
        result = await self.db.execute(query)
        return list(result.scalars().all())
