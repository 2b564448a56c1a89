# api/server.py
# ============================================================================
# STOREFRONT FULFILLMENT BACKEND - FASTAPI SERVER
# ============================================================================
# Payment gateway webhook route, handshake, and health probes
# ============================================================================

import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import settings
from database import Database
from observability import StructlogErrorReporter, configure_logging
from pipeline.dispatcher import FulfillmentDispatcher
from pipeline.mapping_resolver import MappingResolver
from pipeline.price_guard import PriceGuard
from pipeline.steps import BackofficeStep, CommissionStep, HyrosStep, KlaviyoStep
from pipeline.webhook_processor import PaymentWebhookProcessor
from storage import Catalogue, InMemoryIntegrationLedger, InMemoryOrderRepository, load_catalogue
from storage.postgres import PostgresIntegrationLedger, PostgresOrderRepository

logger = structlog.get_logger(component="server")


# ============================================================================
# PIPELINE WIRING
# ============================================================================

_processor: Optional[PaymentWebhookProcessor] = None


def build_webhook_processor(catalogue: Optional[Catalogue] = None) -> PaymentWebhookProcessor:
    """Assemble the pipeline for the configured storage backend and catalogue."""
    reporter = StructlogErrorReporter()
    if catalogue is None:
        catalogue = load_catalogue(settings.CATALOGUE_PATH)

    if settings.STORAGE_BACKEND == "postgres":
        orders = PostgresOrderRepository()
        ledger = PostgresIntegrationLedger()
    else:
        orders = InMemoryOrderRepository()
        ledger = InMemoryIntegrationLedger()

    resolver = MappingResolver(catalogue.mapping_repository(), catalogue.program_repository(), reporter=reporter)
    dispatcher = FulfillmentDispatcher(
        steps=[
            CommissionStep(orders),
            HyrosStep(),
            KlaviyoStep(),
            BackofficeStep(resolver, catalogue.add_on_repository()),
        ],
        ledger=ledger,
        reporter=reporter,
    )
    return PaymentWebhookProcessor(
        orders,
        dispatcher,
        price_guard=PriceGuard(orders, reporter=reporter),
        reporter=reporter,
    )


def get_webhook_processor() -> PaymentWebhookProcessor:
    global _processor
    if _processor is None:
        _processor = build_webhook_processor()
    return _processor


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging()
    logger.info("server_starting", service=settings.SERVICE_NAME, storage=settings.STORAGE_BACKEND)

    if settings.STORAGE_BACKEND == "postgres":
        await Database.initialize()

    processor = get_webhook_processor()
    logger.info("webhook_handlers_registered", events=processor.router.supported_events)

    yield

    logger.info("server_stopping")
    if settings.STORAGE_BACKEND == "postgres":
        await Database.close()


# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Storefront Fulfillment Backend",
    description="Payment webhook reconciliation and order fulfillment",
    version=settings.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

START_TIME = datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    uptime_seconds: float
    storage: str


# ============================================================================
# MIDDLEWARE
# ============================================================================

@app.middleware("http")
async def add_timing_header(request: Request, call_next):
    """Add response timing header."""
    start = time.perf_counter()
    response = await call_next(request)
    duration = (time.perf_counter() - start) * 1000
    response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
    return response


# ============================================================================
# WEBHOOK ENDPOINTS
# ============================================================================

@app.post("/webhooks/payment")
async def payment_webhook(request: Request):
    """
    Gateway callback. The raw body is handed to the processor untouched so
    empty and non-JSON bodies are classified by the pipeline itself.
    """
    body = await request.body()
    result = await get_webhook_processor().process(body)
    return JSONResponse(content=result.body, status_code=result.status_code)


@app.get("/webhooks/payment")
async def payment_webhook_verify(challenge: Optional[str] = None):
    """Gateway handshake."""
    return get_webhook_processor().verify(challenge)


# ============================================================================
# HEALTH ENDPOINTS
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check():
    uptime = (datetime.now(timezone.utc) - START_TIME).total_seconds()
    return HealthResponse(
        status="healthy",
        version=settings.VERSION,
        uptime_seconds=uptime,
        storage=settings.STORAGE_BACKEND,
    )


@app.get("/ready")
async def readiness_check():
    """Ready once the database pool is up (always, for in-memory storage)."""
    if settings.STORAGE_BACKEND == "postgres":
        try:
            await Database.fetch_one("SELECT 1")
        except Exception as e:
            logger.warning("readiness_check_failed", error=str(e))
            return JSONResponse({"status": "not_ready", "error": str(e)}, status_code=503)
    return {"status": "ready"}


@app.get("/live")
async def liveness_check():
    return {"status": "alive"}


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(
        "api.server:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV", "development") == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
