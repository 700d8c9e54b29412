"""
gateway/main.py

FastAPI application entry point for the Gateway service.
Initializes the shared httpx client and ack throttle, registers error
handlers and routers.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI

from config import settings
from gateway.errors import register_error_handlers
from gateway.routers.alerts import router as alerts_router
from gateway.routers.devices import router as devices_router
from gateway.services.throttle import Throttle

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle: startup and shutdown."""
    logger.info("gateway_starting", port=8000)
    app.state.ack_throttle = Throttle(settings.ack_throttle_seconds)
    async with httpx.AsyncClient(timeout=settings.push_timeout_seconds) as client:
        app.state.http_client = client
        yield
        app.state.http_client = None
    logger.info("gateway_shutting_down")


app = FastAPI(
    title="Geo Alert Gateway",
    description="Device registration, incident intake and alert receipts",
    version="1.0.0",
    lifespan=lifespan,
)

register_error_handlers(app)
app.include_router(devices_router)
app.include_router(alerts_router)
