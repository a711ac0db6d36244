from fastapi import APIRouter

from settlement.api.v1.endpoints import (
    commissions,
    payments,
)

api_router = APIRouter()

# Commission policies, settlement and adjustments
api_router.include_router(
    commissions.router,
    prefix="/commissions",
    tags=["Commissions"]
)

# Gateway charges, payment mirror and webhooks
api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["Payments"]
)
