# Services module
from settlement.services.commission_policy_service import PolicyResolver
from settlement.services.settlement_ledger import SettlementLedger
from settlement.services.settlement_service import SettlementService
from settlement.services.adjustment_service import AdjustmentProcessor

# Payment gateway
from settlement.services.gateway_client import GatewayClient, RetryPolicy
from settlement.services.payment_service import PaymentService
from settlement.services.payment_reconciliation_service import PaymentReconciler
from settlement.services.webhook_service import WebhookProcessor

__all__ = [
    "PolicyResolver",
    "SettlementLedger",
    "SettlementService",
    "AdjustmentProcessor",
    # Payment gateway
    "GatewayClient",
    "RetryPolicy",
    "PaymentService",
    "PaymentReconciler",
    "WebhookProcessor",
]
