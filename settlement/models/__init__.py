from settlement.models.billable_event import BillableEvent, BillableEventKind
from settlement.models.booking import Booking
from settlement.models.commission import (
    CommissionPolicy,
    CommissionRecord,
    CommissionAdjustment,
    CommissionStatus,
    AdjustmentKind,
    SettlementFailure,
    GENERAL_SCOPE,
)
from settlement.models.payment import (
    PaymentMirror,
    WebhookEventLog,
    LocalPaymentStatus,
    WebhookOutcome,
)

__all__ = [
    "BillableEvent",
    "BillableEventKind",
    "Booking",
    "CommissionPolicy",
    "CommissionRecord",
    "CommissionAdjustment",
    "CommissionStatus",
    "AdjustmentKind",
    "SettlementFailure",
    "GENERAL_SCOPE",
    "PaymentMirror",
    "WebhookEventLog",
    "LocalPaymentStatus",
    "WebhookOutcome",
]
