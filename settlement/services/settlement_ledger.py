"""
Persistence of commission records.

Writes are keyed by billable_event_id: recording a commission for an
event that already has one is a no-op that returns the existing record.
Each commission is mirrored in the financial ledger by a COMMISSION
billable event whose id is "<revenue event id>:commission".
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database import upsert_statement
from settlement.models.billable_event import BillableEvent, BillableEventKind
from settlement.models.commission import (
    CommissionPolicy,
    CommissionRecord,
    CommissionStatus,
)

logger = logging.getLogger(__name__)


def commission_entry_id(billable_event_id: str) -> str:
    return f"{billable_event_id}:commission"


class SettlementLedger:
    """Reads and writes CommissionRecord rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_record(
        self,
        billable_event_id: str,
        for_update: bool = False,
    ) -> Optional[CommissionRecord]:
        query = (
            select(CommissionRecord)
            .where(CommissionRecord.billable_event_id == billable_event_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def record_commission(
        self,
        event: BillableEvent,
        policy: CommissionPolicy,
        amount: Decimal,
        service_id: Optional[str] = None,
    ) -> Tuple[CommissionRecord, bool]:
        """
        Insert a CALCULATED record for the event unless one exists.

        Returns the stored record and whether this call created it.
        """
        now = datetime.now(timezone.utc)
        insert = upsert_statement(self.db, CommissionRecord)
        stmt = insert.values(
            billable_event_id=event.id,
            barber_id=event.barber_id,
            service_id=service_id,
            policy_id=policy.id,
            gross_service_amount=event.amount,
            applied_percentage=policy.percentage,
            min_amount=policy.min_amount,
            max_amount=policy.max_amount,
            calculated_amount=amount,
            commission_amount=amount,
            status=CommissionStatus.CALCULATED.value,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["billable_event_id"])

        result = await self.db.execute(stmt)
        created = result.rowcount == 1

        if created:
            await self._write_commission_entry(event, policy, amount, service_id)
            logger.info(
                f"Commission calculated: event={event.id} barber={event.barber_id} "
                f"gross={event.amount} pct={policy.percentage} amount={amount}"
            )
        else:
            logger.info(f"Commission already recorded for event {event.id}, keeping existing record")

        record = await self.get_record(event.id)
        return record, created

    async def _write_commission_entry(
        self,
        event: BillableEvent,
        policy: CommissionPolicy,
        amount: Decimal,
        service_id: Optional[str],
    ) -> None:
        """Ledger entry describing how the commission was derived."""
        bounds = []
        if policy.min_amount is not None:
            bounds.append(f"min {policy.min_amount}")
        if policy.max_amount is not None:
            bounds.append(f"max {policy.max_amount}")
        scope = f"service {service_id}" if not policy.is_general else "general policy"

        notes = (
            f"Gross {event.amount} x {policy.percentage}% ({scope}"
            f"{', ' + ', '.join(bounds) if bounds else ''}) = {amount}"
        )

        insert = upsert_statement(self.db, BillableEvent)
        stmt = insert.values(
            id=commission_entry_id(event.id),
            barber_id=event.barber_id,
            service_id=service_id,
            booking_id=event.booking_id,
            kind=BillableEventKind.COMMISSION.value,
            amount=amount,
            occurred_on=event.occurred_on,
            confirmed=True,
            description=f"Commission {policy.percentage}% - booking {event.booking_id or event.id}",
            notes=notes,
            source_event_id=event.id,
        ).on_conflict_do_nothing(index_elements=["id"])
        await self.db.execute(stmt)

    async def sync_commission_entry(self, record: CommissionRecord) -> None:
        """Keep the COMMISSION ledger entry in line with the record."""
        entry = await self.db.get(BillableEvent, commission_entry_id(record.billable_event_id))
        if entry is None:
            return
        entry.amount = record.commission_amount
        entry.confirmed = not record.is_cancelled

    async def mark_settled(self, record: CommissionRecord) -> CommissionRecord:
        if record.status == CommissionStatus.CALCULATED.value:
            record.status = CommissionStatus.SETTLED.value
            record.settled_at = datetime.now(timezone.utc)
            await self.db.flush()
            logger.info(f"Commission settled: event={record.billable_event_id} amount={record.commission_amount}")
        return record

    async def mark_cancelled(self, record: CommissionRecord, reason: str) -> CommissionRecord:
        if record.is_cancelled:
            return record

        record.status = CommissionStatus.CANCELLED.value
        record.cancelled_at = datetime.now(timezone.utc)
        record.cancellation_reason = reason
        await self.sync_commission_entry(record)
        await self.db.flush()
        logger.info(f"Commission cancelled: event={record.billable_event_id} reason={reason}")
        return record

    async def list_records(
        self,
        barber_id: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[CommissionRecord], int]:
        query = select(CommissionRecord)
        count_query = select(func.count(CommissionRecord.id))

        filters = []
        if barber_id:
            filters.append(CommissionRecord.barber_id == barber_id)
        if status:
            filters.append(CommissionRecord.status == status)
        if start_date:
            filters.append(func.date(CommissionRecord.created_at) >= start_date)
        if end_date:
            filters.append(func.date(CommissionRecord.created_at) <= end_date)

        if filters:
            query = query.where(*filters)
            count_query = count_query.where(*filters)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(CommissionRecord.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def summary(
        self,
        barber_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Totals of a barber's commissions by status over revenue event dates."""
        def total_for(status: CommissionStatus):
            return func.coalesce(
                func.sum(
                    case(
                        (CommissionRecord.status == status.value, CommissionRecord.commission_amount),
                        else_=0,
                    )
                ),
                0,
            )

        query = (
            select(
                func.count(CommissionRecord.id),
                func.coalesce(func.sum(CommissionRecord.gross_service_amount), 0),
                total_for(CommissionStatus.SETTLED),
                total_for(CommissionStatus.CALCULATED),
                total_for(CommissionStatus.CANCELLED),
            )
            .join(BillableEvent, BillableEvent.id == CommissionRecord.billable_event_id)
            .where(CommissionRecord.barber_id == barber_id)
        )
        if start_date:
            query = query.where(BillableEvent.occurred_on >= start_date)
        if end_date:
            query = query.where(BillableEvent.occurred_on <= end_date)

        row = (await self.db.execute(query)).one()
        return {
            "barber_id": barber_id,
            "start_date": start_date,
            "end_date": end_date,
            "record_count": row[0],
            "gross_service_total": Decimal(str(row[1])).quantize(Decimal("0.01")),
            "settled_total": Decimal(str(row[2])).quantize(Decimal("0.01")),
            "calculated_total": Decimal(str(row[3])).quantize(Decimal("0.01")),
            "cancelled_total": Decimal(str(row[4])).quantize(Decimal("0.01")),
        }
