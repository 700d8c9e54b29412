"""
gateway/dependencies.py

FastAPI dependencies shared by the routers. Both objects are created in the
app lifespan and stored on app.state; tests override them through
app.dependency_overrides.
"""

import httpx
from fastapi import Request

from config import settings
from gateway.services.throttle import Throttle


def get_http_client(request: Request) -> httpx.AsyncClient | None:
    """Shared push client, or None to let each call open its own."""
    return getattr(request.app.state, "http_client", None)


def get_ack_throttle(request: Request) -> Throttle:
    throttle = getattr(request.app.state, "ack_throttle", None)
    if throttle is None:
        throttle = Throttle(settings.ack_throttle_seconds)
        request.app.state.ack_throttle = throttle
    return throttle
