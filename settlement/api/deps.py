from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.database import get_db
from settlement.services.gateway_client import GatewayClient


def get_gateway_client(request: Request) -> GatewayClient:
    """
    Dependency returning the application's shared GatewayClient.

    The client is created in the lifespan handler and stored on app.state.
    """
    client = getattr(request.app.state, "gateway_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment gateway client not initialized",
        )
    return client


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Gateway = Annotated[GatewayClient, Depends(get_gateway_client)]
