"""
gateway/routers/alerts.py

Public alert endpoints:
- POST /alerts/public: incident intake, enqueues the fan-out
- POST /alerts/{alert_id}/ack: receipt acknowledgement
- GET /alerts/{alert_id}/deliveries: delivery log for one alert
- GET /alerts/footprints: recent alert footprints by circle or bounding box
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query, Response

from gateway.constants import FOOTPRINT_DEFAULT_RADIUS_M
from gateway.dependencies import get_ack_throttle
from gateway.errors import InternalError, ValidationError
from gateway.schemas import AckRequest, IncidentPayload, PublicAlertCreated
from gateway.services.acks import (
    ack_token_hash,
    normalize_reason,
    record_ack,
    sanitize_alert_id,
)
from gateway.services.delivery_log import list_delivery_logs
from gateway.services.footprints import (
    clamp_limit,
    footprint_since,
    list_footprints_in_bbox,
    list_footprints_in_circle,
)
from gateway.services.geo_tiles import finite_float
from gateway.services.incidents import create_public_alert, enqueue_fanout
from gateway.services.throttle import Throttle

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/alerts")


@router.post("/public", status_code=201)
async def create_alert(payload: IncidentPayload) -> dict:
    """
    Receive a reported incident.

    Flow:
    1. Persist the incident
    2. Enqueue the fan-out task; a broker failure is logged and the incident
       stays stored
    """
    try:
        alert_id = await create_public_alert(payload)
    except Exception as exc:
        logger.error("public_alert_persist_failed", error=str(exc))
        raise InternalError() from exc

    enqueue_fanout(alert_id, payload)
    return PublicAlertCreated(alert_id=alert_id).model_dump(by_alias=True)


@router.post("/{alert_id}/ack")
async def ack_alert(
    alert_id: str,
    payload: AckRequest,
    response: Response,
    throttle: Throttle = Depends(get_ack_throttle),
) -> dict:
    """Record that a device received or opened an alert."""
    response.headers["Cache-Control"] = "no-store"
    alert_id = sanitize_alert_id(alert_id)
    reason = normalize_reason(payload.reason)
    if not (payload.fcm_token or "").strip():
        logger.warning(
            "ack_without_token",
            alert_id=alert_id,
            user_id=payload.user_id,
            platform=payload.platform,
        )

    token_hash = ack_token_hash(payload.fcm_token, payload.user_id, payload.platform)
    counted = throttle.allow(f"{alert_id}:{token_hash}:{reason}")

    ack = await record_ack(
        alert_id,
        token_hash,
        reason,
        user_id=(payload.user_id or "").strip() or None,
        platform=(payload.platform or "").strip() or None,
        bump_counters=counted,
    )
    return {
        "ok": True,
        "alertId": alert_id,
        "reason": reason,
        "count": ack.count,
        "throttled": not counted,
    }


@router.get("/{alert_id}/deliveries")
async def get_deliveries(alert_id: str) -> dict:
    """Delivery log entries for an alert, newest first."""
    alert_id = sanitize_alert_id(alert_id)
    entries = await list_delivery_logs(alert_id)
    return {
        "ok": True,
        "alertId": alert_id,
        "deliveries": [e.model_dump(by_alias=True) for e in entries],
    }


@router.get("/footprints")
async def get_footprints(
    mode: str | None = None,
    lat: float | None = None,
    lng: float | None = None,
    radius_m: float | None = None,
    north: float | None = None,
    south: float | None = None,
    east: float | None = None,
    west: float | None = None,
    since: datetime | None = None,
    since_days: float | None = Query(default=None, alias="sinceDays"),
    limit: int | None = None,
) -> dict:
    """
    Recent alert footprints for the back office map.

    mode=bbox (or all four bounds given) filters by bounding box; otherwise
    a circle around lat/lng, radius_m defaulting to 1 km.
    """
    since_ts = footprint_since(since, since_days)
    limit = clamp_limit(limit)
    bounds = [finite_float(v) for v in (north, south, east, west)]
    mode = (mode or "").lower()

    if mode == "bbox" or (not mode and all(b is not None for b in bounds)):
        n, s, e, w = bounds
        if None in bounds or s > n or w > e:
            raise ValidationError("bbox_invalid")
        items = await list_footprints_in_bbox(n, s, e, w, since=since_ts, limit=limit)
        mode = "bbox"
    else:
        lat, lng = finite_float(lat), finite_float(lng)
        if lat is None or lng is None:
            raise ValidationError("lat_lng_required")
        radius = finite_float(radius_m)
        if radius is None or radius <= 0:
            radius = float(FOOTPRINT_DEFAULT_RADIUS_M)
        items = await list_footprints_in_circle(
            lat, lng, radius, since=since_ts, limit=limit
        )
        mode = "circle"

    return {
        "ok": True,
        "mode": mode,
        "since": since_ts.isoformat(),
        "count": len(items),
        "items": [item.model_dump(by_alias=True, mode="json") for item in items],
    }
