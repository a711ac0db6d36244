"""Pydantic schemas for gateway charges, the payment mirror and webhooks."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from settlement.schemas.base import BaseResponseSchema, BaseCreateSchema


class ChargeCreate(BaseCreateSchema):
    """New gateway charge for a booking."""
    customer: str = ""
    billing_type: str
    value: Decimal
    due_date: date
    description: Optional[str] = None
    external_reference: Optional[str] = None


class ReceiveInCashRequest(BaseCreateSchema):
    payment_date: date
    value: Decimal


class PaymentMirrorResponse(BaseResponseSchema):
    id: UUID
    gateway_payment_id: str
    external_reference: Optional[str] = None
    customer_id: Optional[str] = None
    billing_type: Optional[str] = None
    value: Optional[Decimal] = None
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    gateway_status: str
    local_status: str
    notified_status: Optional[str] = None
    last_synced_at: datetime


class PaymentSyncResponse(BaseModel):
    gateway_payment_id: str
    previous_status: Optional[str] = None
    local_status: str
    changed: bool
    stale: bool


class WebhookEventLogResponse(BaseResponseSchema):
    id: UUID
    gateway_event_id: str
    event_type: str
    gateway_payment_id: Optional[str] = None
    received_at: datetime
    processed: bool
    processed_at: Optional[datetime] = None
    outcome: Optional[str] = None
    processing_error: Optional[str] = None
    attempts: int


class WebhookResultResponse(BaseModel):
    success: bool
    message: str
    outcome: str
    event_id: Optional[str] = None
    local_status: Optional[str] = None
