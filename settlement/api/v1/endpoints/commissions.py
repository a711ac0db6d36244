"""API endpoints for commission policies, settlement and adjustments."""
from typing import Optional, List
from datetime import date

from fastapi import APIRouter, status, Query

from settlement.api.deps import DB
from settlement.core.exceptions import RecordNotFound
from settlement.models.commission import CommissionStatus
from settlement.schemas.base import ListResponse
from settlement.schemas.commission import (
    CommissionPolicyUpsert,
    CommissionPolicyResponse,
    SettlementRequest,
    CommissionRecordResponse,
    CommissionAdjustmentCreate,
    CommissionCancelRequest,
    SettlementFailureResponse,
    CommissionSummaryResponse,
)
from settlement.services.adjustment_service import AdjustmentProcessor
from settlement.services.commission_policy_service import PolicyResolver
from settlement.services.settlement_ledger import SettlementLedger
from settlement.services.settlement_service import SettlementService

router = APIRouter()


# ==================== Policies ====================

@router.put("/policies", response_model=CommissionPolicyResponse)
async def upsert_commission_policy(
    policy_in: CommissionPolicyUpsert,
    db: DB,
):
    """Create or replace the policy for a barber, general or per service."""
    policy = await PolicyResolver(db).upsert_policy(policy_in)
    await db.commit()
    return policy


@router.get("/policies", response_model=List[CommissionPolicyResponse])
async def list_commission_policies(
    db: DB,
    barber_id: Optional[str] = None,
    active_only: bool = False,
):
    """List commission policies."""
    return await PolicyResolver(db).list_policies(barber_id=barber_id, active_only=active_only)


@router.get("/policies/resolve", response_model=CommissionPolicyResponse)
async def resolve_commission_policy(
    db: DB,
    barber_id: str,
    service_id: Optional[str] = None,
    fallback_to_general: bool = True,
):
    """Policy that would apply to a barber/service pair."""
    return await PolicyResolver(db).resolve(barber_id, service_id, fallback_to_general)


# ==================== Settlement ====================

@router.post("/settlements", response_model=Optional[CommissionRecordResponse])
async def settle_billable_event(
    request: SettlementRequest,
    db: DB,
):
    """
    Settle the commission of a billable event.

    Returns null when the event is not confirmed revenue. Settling an
    already settled event returns the existing record.
    """
    return await SettlementService(db).settle_by_id(request.billable_event_id)


@router.get("/failures", response_model=List[SettlementFailureResponse])
async def list_settlement_failures(
    db: DB,
    include_resolved: bool = False,
):
    """Events that could not be settled, e.g. barber without a policy."""
    return await SettlementService(db).list_failures(include_resolved=include_resolved)


# ==================== Records ====================

@router.get("/records", response_model=ListResponse[CommissionRecordResponse])
async def list_commission_records(
    db: DB,
    barber_id: Optional[str] = None,
    status_filter: Optional[CommissionStatus] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List commission records."""
    items, total = await SettlementLedger(db).list_records(
        barber_id=barber_id,
        status=status_filter.value if status_filter else None,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return ListResponse[CommissionRecordResponse](
        items=[CommissionRecordResponse.model_validate(r) for r in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get("/records/{billable_event_id}", response_model=CommissionRecordResponse)
async def get_commission_record(
    billable_event_id: str,
    db: DB,
):
    """Commission record of a billable event, with its adjustments."""
    record = await SettlementLedger(db).get_record(billable_event_id)
    if not record:
        raise RecordNotFound(billable_event_id)
    return record


@router.post(
    "/records/{billable_event_id}/adjustments",
    response_model=CommissionRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def adjust_commission(
    billable_event_id: str,
    adjustment_in: CommissionAdjustmentCreate,
    db: DB,
):
    """Apply a bonus, discount or correction to a commission."""
    ledger = SettlementLedger(db)
    await AdjustmentProcessor(db, ledger).adjust(
        billable_event_id,
        delta=adjustment_in.delta,
        reason=adjustment_in.reason,
        kind=adjustment_in.kind,
        approved_by=adjustment_in.approved_by,
    )
    await db.commit()
    return await ledger.get_record(billable_event_id)


@router.post("/records/{billable_event_id}/cancel", response_model=CommissionRecordResponse)
async def cancel_commission(
    billable_event_id: str,
    cancel_in: CommissionCancelRequest,
    db: DB,
):
    """Cancel a commission. Adjustment history is kept."""
    record = await SettlementService(db).cancel(billable_event_id, cancel_in.reason)
    if record is None:
        raise RecordNotFound(billable_event_id)
    await db.commit()
    return record


# ==================== Reports ====================

@router.get("/summary/{barber_id}", response_model=CommissionSummaryResponse)
async def get_commission_summary(
    barber_id: str,
    db: DB,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    """Commission totals of a barber by status."""
    return await SettlementLedger(db).summary(barber_id, start_date, end_date)
