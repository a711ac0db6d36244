"""
Payment Reconciliation Jobs

Background jobs that repair state webhooks may have missed:
- Pull the gateway status of payments still PENDING/OVERDUE locally
- Reprocess webhook events whose side effects failed

Neither is needed for correctness of a single delivery; they only
shorten recovery time.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select

from settlement.config import settings
from settlement.database import get_db_session
from settlement.models.payment import LocalPaymentStatus, PaymentMirror
from settlement.services.gateway_client import GatewayClient
from settlement.services.payment_reconciliation_service import PaymentReconciler
from settlement.services.payment_service import PaymentService
from settlement.services.webhook_service import WebhookProcessor

logger = logging.getLogger(__name__)


async def sync_pending_payments(
    gateway: GatewayClient,
    session_factory: Callable = get_db_session,
    min_age_minutes: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Pull gateway status for payments not yet settled locally.

    Runs periodically to:
    1. Find PENDING/OVERDUE mirrors not synced for a while
    2. Fetch each payment from the gateway
    3. Reconcile the mirror (settles commissions of received payments)
    """
    logger.info("Starting pending payments sync...")
    start_time = datetime.now(timezone.utc)
    min_age = settings.PAYMENT_SYNC_MIN_AGE_MINUTES if min_age_minutes is None else min_age_minutes
    cutoff_time = start_time - timedelta(minutes=min_age)

    async with session_factory() as session:
        result = await session.execute(
            select(PaymentMirror.gateway_payment_id)
            .where(
                PaymentMirror.local_status.in_([
                    LocalPaymentStatus.PENDING.value,
                    LocalPaymentStatus.OVERDUE.value,
                ]),
                PaymentMirror.last_synced_at <= cutoff_time,
            )
            .order_by(PaymentMirror.last_synced_at)
            .limit(batch_size or settings.PAYMENT_SYNC_BATCH_SIZE)
        )
        payment_ids = list(result.scalars().all())

    processed_count = 0
    updated_count = 0
    error_count = 0

    for payment_id in payment_ids:
        try:
            async with session_factory() as session:
                service = PaymentService(gateway, PaymentReconciler(session))
                outcome = await service.sync_payment_status(payment_id)
            processed_count += 1
            if outcome.changed:
                updated_count += 1
        except Exception as e:
            error_count += 1
            logger.error(f"Error syncing payment {payment_id}: {e}")

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Pending payments sync completed: {processed_count} checked, "
        f"{updated_count} updated, {error_count} errors in {duration:.2f}s"
    )
    return {
        "total": len(payment_ids),
        "processed": processed_count,
        "updated": updated_count,
        "errors": error_count,
    }


async def reprocess_failed_webhooks(
    session_factory: Callable = get_db_session,
    max_attempts: Optional[int] = None,
) -> Dict[str, int]:
    """Retry webhook events that failed, up to WEBHOOK_REPROCESS_MAX_ATTEMPTS each."""
    logger.info("Starting failed webhook reprocessing...")

    async with session_factory() as session:
        stats = await WebhookProcessor(session).reprocess_failed(
            max_attempts=max_attempts or settings.WEBHOOK_REPROCESS_MAX_ATTEMPTS,
        )

    logger.info(
        f"Webhook reprocessing completed: {stats['processed']}/{stats['total']} succeeded, "
        f"{stats['failed']} still failing"
    )
    return stats
