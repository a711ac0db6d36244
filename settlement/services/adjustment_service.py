"""Manual commission adjustments."""
import logging
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.core.exceptions import (
    CommissionCancelledError,
    RecordNotFound,
    ValidationError,
)
from settlement.models.commission import AdjustmentKind, CommissionAdjustment
from settlement.services.commission_calculator import apply_adjustment, replay_adjustments
from settlement.services.settlement_ledger import SettlementLedger

logger = logging.getLogger(__name__)


class AdjustmentProcessor:
    """
    Applies BONUS, DISCOUNT and CORRECTION adjustments to commission records.

    Adjustments are appended in order and never edited. The record's
    commission_amount always equals the last adjustment's amount_after.
    """

    def __init__(self, db: AsyncSession, ledger: Optional[SettlementLedger] = None):
        self.db = db
        self.ledger = ledger or SettlementLedger(db)

    async def adjust(
        self,
        billable_event_id: str,
        delta: Decimal,
        reason: str,
        kind: Union[AdjustmentKind, str],
        approved_by: str,
    ) -> CommissionAdjustment:
        """
        Append an adjustment to the record of a billable event.

        Raises:
            RecordNotFound: the event has no commission record
            CommissionCancelledError: the record is cancelled
            ValidationError: missing reason/approver or unknown kind
        """
        errors = []
        if not reason or not reason.strip():
            errors.append("reason is required")
        if not approved_by or not approved_by.strip():
            errors.append("approved_by is required")
        try:
            kind = AdjustmentKind(kind)
        except ValueError:
            errors.append(f"kind must be one of {', '.join(k.value for k in AdjustmentKind)}")
        if errors:
            raise ValidationError(errors, "Invalid adjustment")

        # Row lock serializes concurrent adjustments on PostgreSQL
        record = await self.ledger.get_record(billable_event_id, for_update=True)
        if record is None:
            raise RecordNotFound(billable_event_id)
        if record.is_cancelled:
            raise CommissionCancelledError(billable_event_id)

        amount_before = record.commission_amount
        amount_after = apply_adjustment(amount_before, kind.value, delta)

        adjustment = CommissionAdjustment(
            sequence=len(record.adjustments) + 1,
            kind=kind.value,
            delta=Decimal(delta),
            reason=reason.strip(),
            approved_by=approved_by.strip(),
            amount_before=amount_before,
            amount_after=amount_after,
        )
        record.adjustments.append(adjustment)
        record.commission_amount = amount_after

        await self.ledger.sync_commission_entry(record)
        await self.db.flush()

        logger.info(
            f"Commission adjusted: event={billable_event_id} {kind.value} {delta} "
            f"{amount_before} -> {amount_after} approved_by={approved_by}"
        )
        return adjustment

    async def replay(self, billable_event_id: str) -> Decimal:
        """Current amount re-derived from the calculated amount and the adjustment history."""
        record = await self.ledger.get_record(billable_event_id)
        if record is None:
            raise RecordNotFound(billable_event_id)
        return replay_adjustments(
            record.calculated_amount,
            [(a.kind, a.delta) for a in record.adjustments],
        )
