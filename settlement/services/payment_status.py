"""
Gateway payment status to local status mapping.

Local status only moves forward:
PENDING -> OVERDUE -> RECEIVED -> CANCELLED.
CANCELLED is terminal. A regression reported by the gateway (for example a
late PENDING after RECEIVED) is treated as stale and ignored.
"""
from typing import Optional

from settlement.models.payment import LocalPaymentStatus


class GatewayPaymentStatus:
    """Payment statuses reported by the gateway."""
    PENDING = "PENDING"
    AWAITING_RISK_ANALYSIS = "AWAITING_RISK_ANALYSIS"
    RECEIVED = "RECEIVED"
    CONFIRMED = "CONFIRMED"
    RECEIVED_IN_CASH = "RECEIVED_IN_CASH"
    DUNNING_RECEIVED = "DUNNING_RECEIVED"
    OVERDUE = "OVERDUE"
    DUNNING_REQUESTED = "DUNNING_REQUESTED"
    REFUNDED = "REFUNDED"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUND_IN_PROGRESS = "REFUND_IN_PROGRESS"
    CHARGEBACK_REQUESTED = "CHARGEBACK_REQUESTED"
    CHARGEBACK_DISPUTE = "CHARGEBACK_DISPUTE"
    AWAITING_CHARGEBACK_REVERSAL = "AWAITING_CHARGEBACK_REVERSAL"


STATUS_MAP = {
    GatewayPaymentStatus.PENDING: LocalPaymentStatus.PENDING,
    GatewayPaymentStatus.AWAITING_RISK_ANALYSIS: LocalPaymentStatus.PENDING,

    GatewayPaymentStatus.RECEIVED: LocalPaymentStatus.RECEIVED,
    GatewayPaymentStatus.CONFIRMED: LocalPaymentStatus.RECEIVED,
    GatewayPaymentStatus.RECEIVED_IN_CASH: LocalPaymentStatus.RECEIVED,
    GatewayPaymentStatus.DUNNING_RECEIVED: LocalPaymentStatus.RECEIVED,

    GatewayPaymentStatus.OVERDUE: LocalPaymentStatus.OVERDUE,
    GatewayPaymentStatus.DUNNING_REQUESTED: LocalPaymentStatus.OVERDUE,

    GatewayPaymentStatus.REFUNDED: LocalPaymentStatus.CANCELLED,
    GatewayPaymentStatus.REFUND_REQUESTED: LocalPaymentStatus.CANCELLED,
    GatewayPaymentStatus.REFUND_IN_PROGRESS: LocalPaymentStatus.CANCELLED,
    GatewayPaymentStatus.CHARGEBACK_REQUESTED: LocalPaymentStatus.CANCELLED,
    GatewayPaymentStatus.CHARGEBACK_DISPUTE: LocalPaymentStatus.CANCELLED,
    GatewayPaymentStatus.AWAITING_CHARGEBACK_REVERSAL: LocalPaymentStatus.CANCELLED,
}

STATUS_RANK = {
    LocalPaymentStatus.PENDING: 0,
    LocalPaymentStatus.OVERDUE: 1,
    LocalPaymentStatus.RECEIVED: 2,
    LocalPaymentStatus.CANCELLED: 3,
}


def map_gateway_status(gateway_status: Optional[str]) -> LocalPaymentStatus:
    """Local status for a gateway status. Unknown statuses map to PENDING."""
    return STATUS_MAP.get(gateway_status, LocalPaymentStatus.PENDING)


def is_forward(current: Optional[str], candidate: str) -> bool:
    """Whether moving from current to candidate keeps the status monotonic."""
    if current is None:
        return True
    current = LocalPaymentStatus(current)
    candidate = LocalPaymentStatus(candidate)
    return STATUS_RANK[candidate] >= STATUS_RANK[current]
