import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from settlement.config import settings
from settlement.api.v1.router import api_router
from settlement.core.exceptions import SettlementError, ValidationError
from settlement.database import init_db, async_session_factory
from settlement.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status
from settlement.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create database tables
    - Create the shared payment gateway client
    - Start background scheduler (payment sync, webhook reprocessing)
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    app.state.gateway_client = GatewayClient.from_settings(settings)
    logger.info(f"Gateway client ready ({settings.GATEWAY_ENVIRONMENT})")

    if settings.SCHEDULER_ENABLED:
        start_scheduler(app.state.gateway_client)

    yield

    shutdown_scheduler()
    await app.state.gateway_client.aclose()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Commissions", "description": "Commission policies, automatic settlement and adjustments"},
    {"name": "Payments", "description": "Gateway charges, payment mirror and webhooks"},
    {"name": "Health", "description": "Service health"},
]

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Barber commission settlement and payment gateway reconciliation.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(SettlementError)
async def settlement_exception_handler(request: Request, exc: SettlementError):
    """Translate domain errors to JSON responses."""
    status_code = exc.http_status
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")

    content = {
        "error": exc.message,
        "type": type(exc).__name__,
        "details": exc.details,
    }
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors

    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return error information for unexpected failures."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": str(exc) if settings.DEBUG else "Internal server error",
            "type": type(exc).__name__,
            "path": str(request.url.path),
            "method": request.method,
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown",
            "gateway_environment": settings.GATEWAY_ENVIRONMENT,
        }
    }

    if settings.SCHEDULER_ENABLED:
        health_status["jobs"] = get_job_status()

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
