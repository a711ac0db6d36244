"""
Payment gateway webhook processing.

Every delivery is logged by gateway event id before anything else, so a
duplicate delivery of a processed event is a no-op. An event is marked
processed only after its side effects are committed; a failed event keeps
its error and payload and can be reprocessed.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.core.exceptions import (
    InvalidWebhookSignature,
    ValidationError,
    WebhookEventNotFound,
)
from settlement.database import upsert_statement
from settlement.models.payment import LocalPaymentStatus, WebhookEventLog, WebhookOutcome
from settlement.services.gateway_client import GatewayClient
from settlement.services.payment_reconciliation_service import PaymentReconciler

logger = logging.getLogger(__name__)


class WebhookEventType:
    """Gateway webhook event types."""
    PAYMENT_CREATED = "PAYMENT_CREATED"
    PAYMENT_UPDATED = "PAYMENT_UPDATED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_OVERDUE = "PAYMENT_OVERDUE"
    PAYMENT_DELETED = "PAYMENT_DELETED"
    PAYMENT_RESTORED = "PAYMENT_RESTORED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"
    PAYMENT_RECEIVED_IN_CASH = "PAYMENT_RECEIVED_IN_CASH"
    PAYMENT_CHARGEBACK_REQUESTED = "PAYMENT_CHARGEBACK_REQUESTED"
    PAYMENT_CHARGEBACK_DISPUTE = "PAYMENT_CHARGEBACK_DISPUTE"
    PAYMENT_AWAITING_CHARGEBACK_REVERSAL = "PAYMENT_AWAITING_CHARGEBACK_REVERSAL"
    PAYMENT_DUNNING_RECEIVED = "PAYMENT_DUNNING_RECEIVED"
    PAYMENT_DUNNING_REQUESTED = "PAYMENT_DUNNING_REQUESTED"
    PAYMENT_BANK_SLIP_VIEWED = "PAYMENT_BANK_SLIP_VIEWED"
    PAYMENT_CHECKOUT_VIEWED = "PAYMENT_CHECKOUT_VIEWED"


# Handled events and the local status each implies.
# None means "derive from payment.status".
HANDLED_EVENTS: Dict[str, Optional[LocalPaymentStatus]] = {
    WebhookEventType.PAYMENT_CREATED: LocalPaymentStatus.PENDING,
    WebhookEventType.PAYMENT_UPDATED: None,
    WebhookEventType.PAYMENT_CONFIRMED: LocalPaymentStatus.RECEIVED,
    WebhookEventType.PAYMENT_RECEIVED: LocalPaymentStatus.RECEIVED,
    WebhookEventType.PAYMENT_RECEIVED_IN_CASH: LocalPaymentStatus.RECEIVED,
    WebhookEventType.PAYMENT_OVERDUE: LocalPaymentStatus.OVERDUE,
    WebhookEventType.PAYMENT_DELETED: LocalPaymentStatus.CANCELLED,
    WebhookEventType.PAYMENT_REFUNDED: LocalPaymentStatus.CANCELLED,
    WebhookEventType.PAYMENT_CHARGEBACK_REQUESTED: LocalPaymentStatus.CANCELLED,
}


@dataclass
class WebhookResult:
    success: bool
    message: str
    outcome: WebhookOutcome
    event_id: Optional[str] = None
    local_status: Optional[str] = None


def validate_webhook_payload(payload: Any) -> List[str]:
    """Return one message per missing required field."""
    if not isinstance(payload, dict):
        return ["payload must be a JSON object"]

    errors = []
    if not payload.get("event"):
        errors.append("event is required")

    payment = payload.get("payment")
    if not isinstance(payment, dict):
        errors.append("payment is required")
    else:
        if not payment.get("id"):
            errors.append("payment.id is required")
        if not payment.get("status"):
            errors.append("payment.status is required")

    if not payload.get("dateCreated"):
        errors.append("dateCreated is required")

    return errors


def webhook_event_id(payload: Dict[str, Any]) -> str:
    """Provider event id, or a deterministic digest of the delivery when absent."""
    if payload.get("id"):
        return str(payload["id"])

    payment = payload["payment"]
    key = f"{payload['event']}|{payment['id']}|{payment['status']}|{payload['dateCreated']}"
    return "sha256:" + hashlib.sha256(key.encode()).hexdigest()


class WebhookProcessor:
    """Validates, deduplicates and applies gateway webhook deliveries."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[GatewayClient] = None,
        reconciler: Optional[PaymentReconciler] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.reconciler = reconciler or PaymentReconciler(db)

    def verify_signature(self, token: Optional[str]) -> None:
        """
        Check the webhook access token when one was sent.

        Raises:
            InvalidWebhookSignature: token present and not accepted
        """
        if self.gateway is None:
            return
        if token:
            if not self.gateway.validate_webhook(token):
                raise InvalidWebhookSignature()
        elif not self.gateway.is_sandbox:
            logger.warning("Webhook received without access token")

    async def process(self, payload: Any, signature: Optional[str] = None) -> WebhookResult:
        """
        Handle one webhook delivery.

        Raises:
            InvalidWebhookSignature: bad access token
            ValidationError: required fields missing (not logged, not retryable)
        """
        self.verify_signature(signature)

        errors = validate_webhook_payload(payload)
        if errors:
            raise ValidationError(errors, "Invalid webhook payload")

        event_id = webhook_event_id(payload)
        event_type = payload["event"]
        logger.info(f"Received gateway webhook: {event_type} ({event_id}) payment={payload['payment']['id']}")

        insert = upsert_statement(self.db, WebhookEventLog)
        stmt = insert.values(
            gateway_event_id=event_id,
            event_type=event_type,
            gateway_payment_id=payload["payment"]["id"],
            payload=payload,
            received_at=datetime.now(timezone.utc),
            processed=False,
            attempts=0,
        ).on_conflict_do_nothing(index_elements=["gateway_event_id"])
        await self.db.execute(stmt)
        await self.db.commit()

        log = await self._get_log(event_id)
        if log.processed:
            logger.info(f"Webhook {event_id} already processed, skipping")
            return WebhookResult(
                success=True,
                message=f"Event {event_id} already processed",
                outcome=WebhookOutcome.DUPLICATE,
                event_id=event_id,
            )

        return await self._handle(event_id, payload)

    async def reprocess(self, gateway_event_id: str) -> WebhookResult:
        """Run a logged event again from its stored payload."""
        log = await self._get_log(gateway_event_id)
        if log is None:
            raise WebhookEventNotFound(gateway_event_id)
        if log.processed:
            return WebhookResult(
                success=True,
                message=f"Event {gateway_event_id} already processed",
                outcome=WebhookOutcome.DUPLICATE,
                event_id=gateway_event_id,
            )

        logger.info(f"Reprocessing webhook {gateway_event_id} (attempt {log.attempts + 1})")
        return await self._handle(gateway_event_id, log.payload)

    async def reprocess_failed(self, max_attempts: int = 5, limit: int = 50) -> Dict[str, int]:
        """Reprocess unprocessed events that have not exhausted max_attempts."""
        result = await self.db.execute(
            select(WebhookEventLog.gateway_event_id)
            .where(
                WebhookEventLog.processed.is_(False),
                WebhookEventLog.attempts < max_attempts,
            )
            .order_by(WebhookEventLog.received_at)
            .limit(limit)
        )
        event_ids = list(result.scalars().all())

        stats = {"total": len(event_ids), "processed": 0, "failed": 0}
        for event_id in event_ids:
            outcome = await self.reprocess(event_id)
            if outcome.success:
                stats["processed"] += 1
            else:
                stats["failed"] += 1
        return stats

    async def list_events(
        self,
        processed: Optional[bool] = None,
        gateway_payment_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[WebhookEventLog]:
        query = select(WebhookEventLog)
        if processed is not None:
            query = query.where(WebhookEventLog.processed.is_(processed))
        if gateway_payment_id:
            query = query.where(WebhookEventLog.gateway_payment_id == gateway_payment_id)
        query = query.order_by(WebhookEventLog.received_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _get_log(self, gateway_event_id: str) -> Optional[WebhookEventLog]:
        result = await self.db.execute(
            select(WebhookEventLog)
            .where(WebhookEventLog.gateway_event_id == gateway_event_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _handle(self, event_id: str, payload: Dict[str, Any]) -> WebhookResult:
        event_type = payload["event"]

        if event_type not in HANDLED_EVENTS:
            logger.info(f"Unhandled webhook event: {event_type}")
            await self._mark(event_id, WebhookOutcome.IGNORED)
            return WebhookResult(
                success=True,
                message=f"Event {event_type} received but not processed",
                outcome=WebhookOutcome.IGNORED,
                event_id=event_id,
            )

        try:
            reconciled = await self.reconciler.reconcile(payload["payment"], HANDLED_EVENTS[event_type])
        except Exception as e:
            logger.exception(f"Error processing webhook {event_type} ({event_id}): {e}")
            await self.db.rollback()
            await self._mark(event_id, WebhookOutcome.FAILED, error=str(e))
            return WebhookResult(
                success=False,
                message=f"Error processing {event_type}: {e}",
                outcome=WebhookOutcome.FAILED,
                event_id=event_id,
            )

        await self._mark(event_id, WebhookOutcome.PROCESSED)
        return WebhookResult(
            success=True,
            message=f"Event {event_type} processed",
            outcome=WebhookOutcome.PROCESSED,
            event_id=event_id,
            local_status=reconciled.local_status,
        )

    async def _mark(
        self,
        event_id: str,
        outcome: WebhookOutcome,
        error: Optional[str] = None,
    ) -> None:
        log = await self._get_log(event_id)
        log.attempts += 1
        log.outcome = outcome.value
        log.processing_error = error
        if outcome != WebhookOutcome.FAILED:
            log.processed = True
            log.processed_at = datetime.now(timezone.utc)
        await self.db.commit()
