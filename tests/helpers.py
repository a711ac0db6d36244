"""Factories and fakes shared by the test modules."""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from settlement.models.billable_event import BillableEvent, BillableEventKind
from settlement.models.booking import Booking
from settlement.models.commission import CommissionPolicy, GENERAL_SCOPE
from settlement.services.gateway_client import GatewayClient, RetryPolicy

GATEWAY_URL = "https://gateway.test/api/v3"
GATEWAY_PATH = "/api/v3"


# ---------------------------------------------------------
# Database factories
# ---------------------------------------------------------
async def create_policy(
    db,
    barber_id: str = "barber-1",
    service_id: Optional[str] = None,
    percentage: str = "15",
    min_amount: Optional[str] = None,
    max_amount: Optional[str] = None,
    active: bool = True,
) -> CommissionPolicy:
    policy = CommissionPolicy(
        barber_id=barber_id,
        service_id=service_id,
        scope_key=service_id or GENERAL_SCOPE,
        percentage=Decimal(percentage),
        min_amount=Decimal(min_amount) if min_amount is not None else None,
        max_amount=Decimal(max_amount) if max_amount is not None else None,
        active=active,
    )
    db.add(policy)
    await db.commit()
    return policy


async def create_revenue(
    db,
    event_id: str = "e123",
    barber_id: Optional[str] = "barber-1",
    amount: str = "20.00",
    service_id: Optional[str] = None,
    confirmed: bool = True,
    kind: str = BillableEventKind.REVENUE.value,
) -> BillableEvent:
    event = BillableEvent(
        id=event_id,
        barber_id=barber_id,
        service_id=service_id,
        booking_id=event_id,
        kind=kind,
        amount=Decimal(amount),
        occurred_on=date(2024, 3, 15),
        confirmed=confirmed,
    )
    db.add(event)
    await db.commit()
    return event


async def create_booking(
    db,
    booking_id: str = "e123",
    barber_id: str = "barber-1",
    service_id: Optional[str] = None,
    total_amount: Optional[str] = "20.00",
) -> Booking:
    booking = Booking(
        id=booking_id,
        barber_id=barber_id,
        service_id=service_id,
        client_id="client-1",
        total_amount=Decimal(total_amount) if total_amount is not None else None,
    )
    db.add(booking)
    await db.commit()
    return booking


def gateway_payment(
    payment_id: str = "pay_1",
    status: str = "RECEIVED",
    external_reference: Optional[str] = "e123",
    value: float = 20.0,
    billing_type: str = "PIX",
) -> Dict[str, Any]:
    return {
        "object": "payment",
        "id": payment_id,
        "customer": "cus_1",
        "billingType": billing_type,
        "value": value,
        "netValue": value,
        "status": status,
        "dueDate": (date.today() + timedelta(days=3)).isoformat(),
        "paymentDate": date.today().isoformat() if status == "RECEIVED" else None,
        "externalReference": external_reference,
    }


def webhook_payload(
    event: str = "PAYMENT_RECEIVED",
    status: str = "RECEIVED",
    event_id: Optional[str] = "evt_1",
    payment_id: str = "pay_1",
    external_reference: Optional[str] = "e123",
    date_created: str = "2024-03-15 10:00:00",
) -> Dict[str, Any]:
    payload = {
        "event": event,
        "dateCreated": date_created,
        "payment": gateway_payment(payment_id, status, external_reference),
    }
    if event_id:
        payload["id"] = event_id
    return payload


def session_scope(sessionmaker):
    """get_db_session() equivalent bound to the test engine."""
    @asynccontextmanager
    async def _scope():
        async with sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    return _scope


# ---------------------------------------------------------
# Gateway fakes
# ---------------------------------------------------------
class RecordingSleep:
    """Replaces asyncio.sleep in GatewayClient and records the delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeGateway:
    """
    Routes (method, path) to queued responses.

    The last queued response for a route is repeated. A queued exception
    is raised instead of returning a response.
    """

    def __init__(self):
        self.routes: Dict[tuple, list] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, status_code: int = 200, json: Any = None, error: Exception = None):
        self.routes.setdefault((method, path), []).append((status_code, json, error))
        return self

    def calls(self, method: str, path: str) -> int:
        return sum(
            1 for r in self.requests
            if r.method == method and r.url.path == GATEWAY_PATH + path
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len(GATEWAY_PATH):]
        queue = self.routes.get((request.method, path))
        if not queue:
            return httpx.Response(
                404,
                json={"errors": [{"code": "not_found", "description": "Resource not found"}]},
            )

        status_code, body, error = queue[0] if len(queue) == 1 else queue.pop(0)
        if error is not None:
            raise error
        return httpx.Response(status_code, json=body)


def make_gateway(
    fake: FakeGateway,
    environment: str = "sandbox",
    webhook_token: Optional[str] = None,
    sleep: Optional[RecordingSleep] = None,
    max_attempts: int = 3,
) -> GatewayClient:
    return GatewayClient(
        base_url=GATEWAY_URL,
        api_key="test-api-key",
        environment=environment,
        webhook_token=webhook_token,
        retry=RetryPolicy(max_attempts=max_attempts),
        transport=httpx.MockTransport(fake.handler),
        sleep=sleep or RecordingSleep(),
    )
