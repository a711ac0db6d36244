"""
Payment mirror reconciliation.

Applies a gateway payment snapshot (from a webhook or a status pull) to
the local PaymentMirror and runs the settlement side effects:
- RECEIVED with an external reference confirms the revenue and settles
  the commission (idempotent, so repeated snapshots settle once)
- CANCELLED with an external reference cancels the commission
- RECEIVED / OVERDUE transitions notify the client
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.core.exceptions import ValidationError
from settlement.database import upsert_statement
from settlement.models.commission import CommissionRecord
from settlement.models.payment import LocalPaymentStatus, PaymentMirror
from settlement.services.notification_service import (
    LoggingPaymentNotifier,
    PaymentNotificationType,
    PaymentNotifier,
)
from settlement.services.payment_status import is_forward, map_gateway_status
from settlement.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    mirror: PaymentMirror
    previous_status: Optional[str]
    local_status: str
    changed: bool
    stale: bool
    commission: Optional[CommissionRecord] = None


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _parse_amount(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class PaymentReconciler:
    """Keeps PaymentMirror rows in line with gateway-reported payments."""

    def __init__(
        self,
        db: AsyncSession,
        settlement: Optional[SettlementService] = None,
        notifier: Optional[PaymentNotifier] = None,
    ):
        self.db = db
        self.settlement = settlement or SettlementService(db)
        self.notifier = notifier or LoggingPaymentNotifier()

    async def get_mirror(self, gateway_payment_id: str, for_update: bool = False) -> Optional[PaymentMirror]:
        query = (
            select(PaymentMirror)
            .where(PaymentMirror.gateway_payment_id == gateway_payment_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def reconcile(
        self,
        payment: Dict[str, Any],
        local_status: Optional[LocalPaymentStatus] = None,
    ) -> ReconcileResult:
        """
        Apply a gateway payment snapshot.

        local_status overrides the status derived from payment["status"]
        (webhook events such as PAYMENT_DELETED imply a status of their own).
        A snapshot that would move the status backwards is stale: only
        last_synced_at is refreshed and no side effects run.
        """
        gateway_payment_id = payment.get("id")
        gateway_status = payment.get("status")
        errors = []
        if not gateway_payment_id:
            errors.append("payment.id is required")
        if not gateway_status:
            errors.append("payment.status is required")
        if errors:
            raise ValidationError(errors, "Invalid payment snapshot")

        target = local_status or map_gateway_status(gateway_status)
        now = datetime.now(timezone.utc)
        fields = {
            "external_reference": payment.get("externalReference") or None,
            "customer_id": payment.get("customer"),
            "billing_type": payment.get("billingType"),
            "value": _parse_amount(payment.get("value")),
            "due_date": _parse_date(payment.get("dueDate")),
            "payment_date": _parse_date(payment.get("paymentDate") or payment.get("clientPaymentDate")),
            "gateway_status": gateway_status,
            "raw_last_payload": payment,
        }

        insert = upsert_statement(self.db, PaymentMirror)
        stmt = insert.values(
            gateway_payment_id=gateway_payment_id,
            local_status=target.value,
            last_synced_at=now,
            created_at=now,
            **fields,
        ).on_conflict_do_nothing(index_elements=["gateway_payment_id"])
        created = (await self.db.execute(stmt)).rowcount == 1

        mirror = await self.get_mirror(gateway_payment_id, for_update=True)
        previous_status = None if created else mirror.local_status
        stale = False

        if not created:
            if is_forward(mirror.local_status, target.value):
                for key, value in fields.items():
                    if key == "external_reference" and value is None:
                        continue
                    setattr(mirror, key, value)
                mirror.local_status = target.value
            else:
                stale = True
                logger.warning(
                    f"Stale status for payment {gateway_payment_id}: "
                    f"{gateway_status} ({target.value}) after {mirror.local_status}, ignoring"
                )
            mirror.last_synced_at = now

        changed = previous_status != mirror.local_status
        await self.db.commit()

        if changed:
            logger.info(f"Payment {gateway_payment_id} status: {previous_status} -> {mirror.local_status}")

        result = ReconcileResult(
            mirror=mirror,
            previous_status=previous_status,
            local_status=mirror.local_status,
            changed=changed,
            stale=stale,
        )
        if not stale:
            result.commission = await self._apply_side_effects(mirror)
            await self._notify(mirror)
        return result

    async def _apply_side_effects(self, mirror: PaymentMirror) -> Optional[CommissionRecord]:
        reference = mirror.external_reference
        if not reference:
            return None

        if mirror.local_status == LocalPaymentStatus.RECEIVED.value:
            event = await self.settlement.confirm_revenue(
                reference,
                amount=mirror.value,
                occurred_on=mirror.payment_date,
            )
            return await self.settlement.settle_or_queue(event)

        if mirror.local_status == LocalPaymentStatus.CANCELLED.value:
            record = await self.settlement.cancel(
                reference,
                reason=f"Payment {mirror.gateway_payment_id} {mirror.gateway_status}",
            )
            await self.db.commit()
            return record

        return None

    async def _notify(self, mirror: PaymentMirror) -> None:
        """Notify the client once per status, after side effects succeeded."""
        if mirror.notified_status == mirror.local_status:
            return
        if mirror.local_status == LocalPaymentStatus.RECEIVED.value:
            notification_type = PaymentNotificationType.PAYMENT_RECEIVED
        elif mirror.local_status == LocalPaymentStatus.OVERDUE.value:
            notification_type = PaymentNotificationType.PAYMENT_OVERDUE
        else:
            return

        try:
            await self.notifier.notify(notification_type, mirror)
        except Exception as e:
            # Don't fail reconciliation for notification errors
            logger.error(f"Failed to send {notification_type.value} for payment {mirror.gateway_payment_id}: {e}")
            return

        mirror.notified_status = mirror.local_status
        await self.db.commit()
