"""
gateway/routers/devices.py

POST /devices/register endpoint.
Errors are rendered by the handlers in gateway/errors.py:
400 {"ok": false, "error": "userId_required" | "deviceId_required"},
500 {"ok": false, "error": "internal_error"}.
"""

import httpx
import structlog
from fastapi import APIRouter, Depends

from gateway.dependencies import get_http_client
from gateway.schemas import DeviceRegistrationRequest
from gateway.services.device_registry import register_device

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/devices/register")
async def register(
    payload: DeviceRegistrationRequest,
    client: httpx.AsyncClient | None = Depends(get_http_client),
) -> dict:
    """Register or refresh a device and sync its tile topic subscriptions."""
    logger.info(
        "device_registration_received",
        user_id=payload.user_id,
        device_id=payload.device_id,
        platform=payload.platform,
    )
    result = await register_device(payload, client=client)
    return result.model_dump(by_alias=True)
