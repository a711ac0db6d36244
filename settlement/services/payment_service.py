"""
Gateway charge service.

Handles:
- Charge validation and creation (PIX, BOLETO, CREDIT_CARD)
- Charge lookup and listing
- PIX QR code retrieval
- Manual receipt (paid in cash at the shop)
- Status pull into the local payment mirror
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from settlement.core.exceptions import ValidationError
from settlement.schemas.payment import ChargeCreate
from settlement.services.gateway_client import GatewayClient
from settlement.services.payment_reconciliation_service import PaymentReconciler, ReconcileResult

logger = logging.getLogger(__name__)


class BillingType:
    """Gateway billing types."""
    BOLETO = "BOLETO"
    CREDIT_CARD = "CREDIT_CARD"
    PIX = "PIX"


MIN_CHARGE_VALUE = {
    BillingType.PIX: Decimal("0.01"),
    BillingType.BOLETO: Decimal("3.00"),
    BillingType.CREDIT_CARD: Decimal("1.00"),
}


def validate_charge(data: ChargeCreate, today: Optional[date] = None) -> List[str]:
    """Return one message per violated rule, empty when valid."""
    today = today or date.today()
    errors = []

    if not data.customer or not data.customer.strip():
        errors.append("customer is required")

    if data.value <= 0:
        errors.append("value must be greater than zero")

    if data.billing_type not in MIN_CHARGE_VALUE:
        errors.append(f"billing_type must be one of {', '.join(MIN_CHARGE_VALUE)}")
    elif data.value > 0 and data.value < MIN_CHARGE_VALUE[data.billing_type]:
        errors.append(
            f"minimum value for {data.billing_type} is {MIN_CHARGE_VALUE[data.billing_type]}"
        )

    if data.due_date < today:
        errors.append("due_date cannot be in the past")

    return errors


class PaymentService:
    """Charge operations against the payment gateway."""

    def __init__(self, gateway: GatewayClient, reconciler: Optional[PaymentReconciler] = None):
        self.gateway = gateway
        self.reconciler = reconciler

    async def create_charge(self, data: ChargeCreate) -> Dict[str, Any]:
        """
        Validate and create a charge.

        The new charge is mirrored locally when a reconciler is available.

        Raises:
            ValidationError: input rejected locally, nothing sent
            GatewayError: gateway rejected or unreachable
        """
        errors = validate_charge(data)
        if errors:
            raise ValidationError(errors, "Invalid charge")

        body = {
            "customer": data.customer,
            "billingType": data.billing_type,
            "value": float(data.value),
            "dueDate": data.due_date.isoformat(),
        }
        if data.description:
            body["description"] = data.description
        if data.external_reference:
            body["externalReference"] = data.external_reference

        payment = await self.gateway.post("/payments", json=body)
        logger.info(
            f"Gateway charge created: {payment.get('id')} {data.billing_type} {data.value} "
            f"reference={data.external_reference}"
        )

        if self.reconciler is not None and payment.get("id"):
            await self.reconciler.reconcile(payment)
        return payment

    async def get_charge(self, gateway_payment_id: str) -> Dict[str, Any]:
        return await self.gateway.get(f"/payments/{gateway_payment_id}")

    async def list_charges(
        self,
        customer: Optional[str] = None,
        billing_type: Optional[str] = None,
        status: Optional[str] = None,
        external_reference: Optional[str] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Dict[str, Any]:
        return await self.gateway.get(
            "/payments",
            params={
                "customer": customer,
                "billingType": billing_type,
                "status": status,
                "externalReference": external_reference,
                "offset": offset,
                "limit": limit,
            },
        )

    async def get_pix_qr_code(self, gateway_payment_id: str) -> Dict[str, Any]:
        return await self.gateway.get(f"/payments/{gateway_payment_id}/pixQrCode")

    async def receive_in_cash(
        self,
        gateway_payment_id: str,
        payment_date: date,
        value: Decimal,
    ) -> Dict[str, Any]:
        """Mark a charge as paid in cash; the mirror follows through the returned snapshot."""
        if value <= 0:
            raise ValidationError(["value must be greater than zero"], "Invalid cash receipt")

        payment = await self.gateway.post(
            f"/payments/{gateway_payment_id}/receiveInCash",
            json={"paymentDate": payment_date.isoformat(), "value": float(value)},
        )
        logger.info(f"Charge {gateway_payment_id} received in cash: {value}")

        if self.reconciler is not None and payment.get("id"):
            await self.reconciler.reconcile(payment)
        return payment

    async def sync_payment_status(self, gateway_payment_id: str) -> ReconcileResult:
        """Pull the current gateway status and reconcile the mirror."""
        if self.reconciler is None:
            raise RuntimeError("sync_payment_status requires a reconciler")

        payment = await self.get_charge(gateway_payment_id)
        return await self.reconciler.reconcile(payment)
