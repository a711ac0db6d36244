"""Pydantic schemas for commission policies, records and adjustments."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import Field

from settlement.models.commission import AdjustmentKind
from settlement.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== Policy ====================

class CommissionPolicyUpsert(BaseCreateSchema):
    """Create or replace the policy for (barber_id, service_id)."""
    barber_id: str = ""
    service_id: Optional[str] = None
    percentage: Decimal
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    active: bool = True


class CommissionPolicyResponse(BaseResponseSchema):
    id: UUID
    barber_id: str
    service_id: Optional[str] = None
    percentage: Decimal
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    active: bool
    created_at: datetime
    updated_at: datetime


# ==================== Settlement ====================

class SettlementRequest(BaseCreateSchema):
    """Settle an existing billable event."""
    billable_event_id: str


class BillableEventResponse(BaseResponseSchema):
    id: str
    barber_id: Optional[str] = None
    service_id: Optional[str] = None
    booking_id: Optional[str] = None
    kind: str
    amount: Decimal
    occurred_on: date
    confirmed: bool
    description: Optional[str] = None
    notes: Optional[str] = None
    source_event_id: Optional[str] = None


# ==================== Record ====================

class CommissionAdjustmentCreate(BaseCreateSchema):
    kind: AdjustmentKind
    delta: Decimal
    reason: str = Field(..., min_length=1)
    approved_by: str = Field(..., min_length=1)


class CommissionAdjustmentResponse(BaseResponseSchema):
    id: UUID
    sequence: int
    kind: str
    delta: Decimal
    reason: str
    approved_by: str
    amount_before: Decimal
    amount_after: Decimal
    applied_at: datetime


class CommissionRecordResponse(BaseResponseSchema):
    id: UUID
    billable_event_id: str
    barber_id: str
    service_id: Optional[str] = None
    policy_id: Optional[UUID] = None
    gross_service_amount: Decimal
    applied_percentage: Decimal
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    calculated_amount: Decimal
    commission_amount: Decimal
    status: str
    settled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    adjustments: List[CommissionAdjustmentResponse] = []


class CommissionCancelRequest(BaseCreateSchema):
    reason: str = Field(..., min_length=1)


class SettlementFailureResponse(BaseResponseSchema):
    id: UUID
    billable_event_id: str
    barber_id: Optional[str] = None
    error_type: str
    message: str
    attempts: int
    first_failed_at: datetime
    last_failed_at: datetime
    resolved_at: Optional[datetime] = None


# ==================== Reports ====================

class CommissionSummaryResponse(BaseResponseSchema):
    barber_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    record_count: int
    gross_service_total: Decimal
    settled_total: Decimal
    calculated_total: Decimal
    cancelled_total: Decimal
