"""
Payment API endpoints.

Provides:
- Gateway charge creation and lookup
- PIX QR code and cash receipt
- Manual status sync into the payment mirror
- Webhook handling for gateway payment events
"""
import json
from typing import Optional, List

from fastapi import APIRouter, HTTPException, Query, Request, Header, status
from sqlalchemy import select

from settlement.api.deps import DB, Gateway
from settlement.models.payment import PaymentMirror
from settlement.schemas.payment import (
    ChargeCreate,
    ReceiveInCashRequest,
    PaymentMirrorResponse,
    PaymentSyncResponse,
    WebhookEventLogResponse,
    WebhookResultResponse,
)
from settlement.services.payment_reconciliation_service import PaymentReconciler
from settlement.services.payment_service import PaymentService
from settlement.services.webhook_service import WebhookProcessor

router = APIRouter()


# ==================== CHARGES ====================

@router.post("/charges", status_code=status.HTTP_201_CREATED)
async def create_charge(
    charge_in: ChargeCreate,
    db: DB,
    gateway: Gateway,
):
    """Create a gateway charge and mirror it locally."""
    service = PaymentService(gateway, PaymentReconciler(db))
    return await service.create_charge(charge_in)


@router.get("/charges")
async def list_charges(
    gateway: Gateway,
    customer: Optional[str] = None,
    billing_type: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    external_reference: Optional[str] = None,
    offset: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
):
    """List charges as reported by the gateway."""
    return await PaymentService(gateway).list_charges(
        customer=customer,
        billing_type=billing_type,
        status=status_filter,
        external_reference=external_reference,
        offset=offset,
        limit=limit,
    )


@router.get("/charges/{gateway_payment_id}")
async def get_charge(
    gateway_payment_id: str,
    gateway: Gateway,
):
    """Charge as reported by the gateway."""
    return await PaymentService(gateway).get_charge(gateway_payment_id)


@router.get("/charges/{gateway_payment_id}/pix-qr-code")
async def get_pix_qr_code(
    gateway_payment_id: str,
    gateway: Gateway,
):
    """PIX QR code (encoded image and copy-paste payload)."""
    return await PaymentService(gateway).get_pix_qr_code(gateway_payment_id)


@router.post("/charges/{gateway_payment_id}/receive-in-cash")
async def receive_charge_in_cash(
    gateway_payment_id: str,
    receipt_in: ReceiveInCashRequest,
    db: DB,
    gateway: Gateway,
):
    """Mark a charge as paid in cash at the shop."""
    service = PaymentService(gateway, PaymentReconciler(db))
    return await service.receive_in_cash(gateway_payment_id, receipt_in.payment_date, receipt_in.value)


@router.post("/charges/{gateway_payment_id}/sync", response_model=PaymentSyncResponse)
async def sync_charge_status(
    gateway_payment_id: str,
    db: DB,
    gateway: Gateway,
):
    """Pull the charge status from the gateway into the local mirror."""
    service = PaymentService(gateway, PaymentReconciler(db))
    result = await service.sync_payment_status(gateway_payment_id)
    return PaymentSyncResponse(
        gateway_payment_id=gateway_payment_id,
        previous_status=result.previous_status,
        local_status=result.local_status,
        changed=result.changed,
        stale=result.stale,
    )


@router.get("/mirror/{gateway_payment_id}", response_model=PaymentMirrorResponse)
async def get_payment_mirror(
    gateway_payment_id: str,
    db: DB,
):
    """Local view of a gateway payment."""
    result = await db.execute(
        select(PaymentMirror).where(PaymentMirror.gateway_payment_id == gateway_payment_id)
    )
    mirror = result.scalar_one_or_none()
    if not mirror:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Payment {gateway_payment_id} not found"
        )
    return mirror


# ==================== WEBHOOK ENDPOINT ====================

@router.post(
    "/webhook",
    response_model=WebhookResultResponse,
    summary="Payment gateway webhook handler",
    description="Handle payment events from the gateway. This endpoint is called by gateway servers.",
    include_in_schema=False,
)
async def gateway_webhook(
    request: Request,
    db: DB,
    gateway: Gateway,
    access_token: Optional[str] = Header(None, alias="asaas-access-token"),
):
    """
    Handle gateway webhook events.

    Security:
    - Verifies the asaas-access-token header against GATEWAY_WEBHOOK_TOKEN
      (skipped in sandbox)
    - Idempotent: duplicate deliveries are acknowledged without side effects

    Processing failures still answer 200 with success=false so the gateway
    does not pause the queue; the event stays in the log for reprocessing.
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload"
        )

    result = await WebhookProcessor(db, gateway).process(payload, access_token)
    return WebhookResultResponse(
        success=result.success,
        message=result.message,
        outcome=result.outcome.value,
        event_id=result.event_id,
        local_status=result.local_status,
    )


@router.get("/webhook/events", response_model=List[WebhookEventLogResponse])
async def list_webhook_events(
    db: DB,
    processed: Optional[bool] = None,
    gateway_payment_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Logged webhook deliveries."""
    return await WebhookProcessor(db).list_events(
        processed=processed,
        gateway_payment_id=gateway_payment_id,
        skip=skip,
        limit=limit,
    )


@router.post("/webhook/events/{gateway_event_id}/reprocess", response_model=WebhookResultResponse)
async def reprocess_webhook_event(
    gateway_event_id: str,
    db: DB,
):
    """Run a failed webhook event again from its stored payload."""
    result = await WebhookProcessor(db).reprocess(gateway_event_id)
    return WebhookResultResponse(
        success=result.success,
        message=result.message,
        outcome=result.outcome.value,
        event_id=result.event_id,
        local_status=result.local_status,
    )
