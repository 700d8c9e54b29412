"""
gateway/services/device_registry.py

Device registration: validates identifiers, normalizes push tokens and
coordinates, upserts the device (global record, per-user mirror and tile
index rows) and keeps the FCM token's tile topic subscriptions in sync.

Topic (un)subscription is best-effort: failures are logged and reported in
the per-topic results but never fail the registration.
"""

import asyncio
import math
import re
from datetime import datetime
from typing import NamedTuple

import httpx
import structlog
from sqlalchemy import delete

from db.models import AsyncSessionLocal, Device, DeviceTile, UserDevice
from gateway.constants import (
    DEFAULT_CHANNELS,
    FCM_TOKEN_MARKER,
    FCM_TOKEN_MIN_LEN,
)
from gateway.errors import InternalError, ValidationError
from gateway.schemas import DeviceRegistrationRequest, RegistrationResult, TopicOpResult
from gateway.services.geo_tiles import normalize_cep, tile_topic, tiles_for_radius
from gateway.services.push_dispatcher import (
    mask_token,
    subscribe_to_topic,
    unsubscribe_from_topic,
)

logger = structlog.get_logger(__name__)

_EXPO_TOKEN = re.compile(r"^ExponentPushToken\[[A-Za-z0-9\-_]+\]$")


class TileDiff(NamedTuple):
    """Tiles a device entered (to_subscribe) and left (to_unsubscribe)."""

    to_subscribe: list[str]
    to_unsubscribe: list[str]


class DeviceSnapshot(NamedTuple):
    """Token and tiles of a device as stored before a registration."""

    fcm_token: str | None
    tiles: list[str]


def is_likely_fcm_token(token: str | None) -> bool:
    return bool(token) and FCM_TOKEN_MARKER in token and len(token) > FCM_TOKEN_MIN_LEN


def is_likely_expo_token(token: str | None) -> bool:
    return bool(token) and _EXPO_TOKEN.match(token) is not None


def coerce_lat_lng(
    lat: float | str | None,
    lng: float | str | None,
) -> tuple[float | None, float | None]:
    """Return (lat, lng) as floats, or (None, None) when not a valid point."""
    try:
        lat_f = float(lat)  # type: ignore[arg-type]
        lng_f = float(lng)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None, None
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        return None, None
    if not (-90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0):
        return None, None
    return lat_f, lng_f


def diff_tile_subscriptions(
    old_tiles: list[str] | set[str],
    new_tiles: list[str] | set[str],
) -> TileDiff:
    """Set difference between the old and new tile memberships."""
    old_set, new_set = set(old_tiles), set(new_tiles)
    return TileDiff(
        to_subscribe=sorted(new_set - old_set),
        to_unsubscribe=sorted(old_set - new_set),
    )


async def _upsert_device_records(
    *,
    user_id: str,
    device_id: str,
    platform: str,
    fcm_token: str | None,
    expo_token: str | None,
    lat: float | None,
    lng: float | None,
    cep: str | None,
    city: str | None,
    tiles: list[str],
) -> DeviceSnapshot:
    """Merge the device, its per-user mirror and tile index rows in one transaction."""
    now = datetime.utcnow()
    async with AsyncSessionLocal() as session:
        device = await session.get(Device, device_id)
        if device is None:
            previous = DeviceSnapshot(fcm_token=None, tiles=[])
            device = Device(device_id=device_id, created_at=now)
            session.add(device)
        else:
            previous = DeviceSnapshot(
                fcm_token=device.fcm_token,
                tiles=list(device.tiles or []),
            )

        device.user_id = user_id
        device.platform = platform
        device.fcm_token = fcm_token
        device.expo_token = expo_token
        device.lat = lat
        device.lng = lng
        device.tiles = tiles
        device.active = True
        device.channels = {**DEFAULT_CHANNELS, **(device.channels or {})}
        device.updated_at = now
        if cep is not None:
            device.cep = cep
        if city is not None:
            device.city = city

        await session.merge(
            UserDevice(
                user_id=user_id,
                device_id=device_id,
                platform=platform,
                fcm_token=fcm_token,
                expo_token=expo_token,
                tiles=tiles,
                last_seen_at=now,
            )
        )

        await session.execute(delete(DeviceTile).where(DeviceTile.device_id == device_id))
        session.add_all(DeviceTile(device_id=device_id, tile=t) for t in set(tiles))

        await session.commit()
    return previous


async def sync_tile_subscriptions(
    previous: DeviceSnapshot,
    fcm_token: str | None,
    tiles: list[str],
    *,
    client: httpx.AsyncClient | None = None,
) -> list[TopicOpResult]:
    """
    Move the device's FCM topic subscriptions to its current tile set.

    A changed token is unsubscribed from all of its old tiles; an unchanged
    token only from the tiles it left. The current token is (re)subscribed
    to every current tile. Returns the subscribe results.
    """
    unsubscribe_ops = []
    if previous.fcm_token and previous.fcm_token != fcm_token:
        unsubscribe_ops = [
            unsubscribe_from_topic(previous.fcm_token, tile_topic(t), client=client)
            for t in previous.tiles
        ]
    elif fcm_token:
        stale = diff_tile_subscriptions(previous.tiles, tiles).to_unsubscribe
        unsubscribe_ops = [
            unsubscribe_from_topic(fcm_token, tile_topic(t), client=client)
            for t in stale
        ]

    subscribe_ops = []
    if fcm_token:
        subscribe_ops = [
            subscribe_to_topic(fcm_token, tile_topic(t), client=client) for t in tiles
        ]

    unsubscribed = await asyncio.gather(*unsubscribe_ops)
    subscribed = await asyncio.gather(*subscribe_ops)

    for result in (*unsubscribed, *subscribed):
        if not result.ok:
            logger.warning("topic_op_failed", topic=result.topic, error=result.error)

    logger.info(
        "tile_topics_synced",
        unsub_ok=sum(1 for r in unsubscribed if r.ok),
        unsub_ko=sum(1 for r in unsubscribed if not r.ok),
        sub_ok=sum(1 for r in subscribed if r.ok),
        sub_ko=sum(1 for r in subscribed if not r.ok),
    )
    return list(subscribed)


async def register_device(
    request: DeviceRegistrationRequest,
    *,
    client: httpx.AsyncClient | None = None,
) -> RegistrationResult:
    """
    Register or refresh a device.

    Raises ValidationError for missing identifiers and InternalError when the
    device cannot be persisted.
    """
    user_id = (request.user_id or "").strip()
    if not user_id:
        raise ValidationError("userId_required")
    device_id = (request.device_id or "").strip()
    if not device_id:
        raise ValidationError("deviceId_required")

    lat, lng = coerce_lat_lng(request.lat, request.lng)
    if request.tiles:
        tiles = list(dict.fromkeys(request.tiles))
    elif lat is not None and lng is not None:
        tiles = tiles_for_radius(lat, lng)
    else:
        tiles = []

    fcm_token = request.fcm_token if is_likely_fcm_token(request.fcm_token) else None
    expo_token = (
        request.expo_token if is_likely_expo_token(request.expo_token) else None
    )
    if request.fcm_token and fcm_token is None:
        logger.warning("fcm_token_rejected", token=mask_token(request.fcm_token))
    if request.expo_token and expo_token is None:
        logger.warning("expo_token_rejected", token=mask_token(request.expo_token))

    try:
        previous = await _upsert_device_records(
            user_id=user_id,
            device_id=device_id,
            platform=request.platform or "unknown",
            fcm_token=fcm_token,
            expo_token=expo_token,
            lat=lat,
            lng=lng,
            cep=normalize_cep(request.cep),
            city=request.city.strip() if request.city else None,
            tiles=tiles,
        )
    except Exception as exc:
        logger.error(
            "device_upsert_failed",
            user_id=user_id,
            device_id=device_id,
            error=str(exc),
        )
        raise InternalError() from exc

    logger.info(
        "device_upserted",
        user_id=user_id,
        device_id=device_id,
        tiles=len(tiles),
        fcm=mask_token(fcm_token) if fcm_token else None,
        expo=bool(expo_token),
    )

    results = await sync_tile_subscriptions(previous, fcm_token, tiles, client=client)

    return RegistrationResult(
        device_id=device_id,
        user_id=user_id,
        tiles=tiles,
        subscribed=[r.topic for r in results if r.ok],
    )
