"""
Payment Notification Service

Notifies clients when a payment is received or becomes overdue.
Delivery (SMS, e-mail, WhatsApp) belongs to the messaging subsystem; the
default implementation only logs. Notification failures never fail the
webhook that triggered them.
"""
import logging
from enum import Enum
from typing import Protocol

from settlement.models.payment import PaymentMirror


logger = logging.getLogger(__name__)


class PaymentNotificationType(str, Enum):
    """Types of payment notifications."""
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_OVERDUE = "payment_overdue"


class PaymentNotifier(Protocol):
    async def notify(
        self,
        notification_type: PaymentNotificationType,
        payment: PaymentMirror,
    ) -> None:
        ...


class LoggingPaymentNotifier:
    """Logs notifications instead of delivering them."""

    async def notify(
        self,
        notification_type: PaymentNotificationType,
        payment: PaymentMirror,
    ) -> None:
        logger.info(
            f"[NOTIFY] {notification_type.value}: payment={payment.gateway_payment_id} "
            f"reference={payment.external_reference} value={payment.value}"
        )

