"""
gateway/services/recipients.py

Recipient selection for alert fan-out. One interface, two strategies:
- postal_code: active devices registered under the incident's CEP (FCM only),
  kept when they have no stored point or lie within the alert radius
- geo_tile: active devices indexed under the tiles around the incident
  point (FCM and Expo)

When a strategy finds nobody the radius is widened up to MAX_WIDEN_STEPS
times; a postal-code alert that is still empty falls back to a shuffled
sample of devices in the incident's city.

Devices that opted out of the alert's channel or have not refreshed their
registration within settings.stale_device_days are skipped. Tokens are
de-duplicated and capped at MAX_RECIPIENTS.
"""

import math
import random
from datetime import datetime, timedelta
from typing import Iterable, NamedTuple

import structlog
from sqlalchemy import select

from config import settings
from db.models import AsyncSessionLocal, Device, DeviceTile
from gateway.constants import (
    CITY_SAMPLE_LIMIT,
    MAX_RECIPIENTS,
    MAX_WIDEN_STEPS,
    MISSING_KINDS,
    WIDEN_FACTOR,
)
from gateway.services.geo_tiles import haversine_m, tiles_for_radius

logger = structlog.get_logger(__name__)

STRATEGY_POSTAL_CODE = "postal_code"
STRATEGY_GEO_TILE = "geo_tile"


class Recipient(NamedTuple):
    token: str
    transport: str  # "fcm" | "expo"


def strategy_for_kind(kind: str | None) -> str:
    """Missing-person alerts fan out by tile, everything else by postal code."""
    return STRATEGY_GEO_TILE if kind in MISSING_KINDS else STRATEGY_POSTAL_CODE


def _fresh_cutoff() -> datetime:
    return datetime.utcnow() - timedelta(days=settings.stale_device_days)


def _channel_enabled(device: Device, channel: str) -> bool:
    return (device.channels or {}).get(channel, True) is not False


def dedupe_recipients(recipients: Iterable[Recipient]) -> list[Recipient]:
    """Drop repeated tokens, preserving order, up to MAX_RECIPIENTS."""
    seen: set[str] = set()
    unique: list[Recipient] = []
    for recipient in recipients:
        if not recipient.token or recipient.token in seen:
            continue
        seen.add(recipient.token)
        unique.append(recipient)
        if len(unique) >= MAX_RECIPIENTS:
            break
    return unique


def within_radius(
    device: Device,
    lat: float | None,
    lng: float | None,
    radius_m: float | None,
) -> bool:
    """
    Containment check for postal-code candidates.

    Devices without a stored point are kept, as is everything when the alert
    has no point or radius to compare against.
    """
    if device.lat is None or device.lng is None:
        return True
    if lat is None or lng is None or radius_m is None:
        return True
    return haversine_m(lat, lng, device.lat, device.lng) <= radius_m


async def select_by_postal_code(
    cep: str,
    lat: float | None = None,
    lng: float | None = None,
    radius_m: float | None = None,
) -> list[Recipient]:
    """FCM recipients registered under a postal code, within radius_m of (lat, lng)."""
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Device).where(
                Device.cep == cep,
                Device.active.is_(True),
                Device.fcm_token.is_not(None),
                Device.updated_at >= _fresh_cutoff(),
            )
        )
        devices = result.scalars().all()

    in_range = [d for d in devices if within_radius(d, lat, lng, radius_m)]
    recipients = dedupe_recipients(
        Recipient(d.fcm_token, "fcm")
        for d in in_range
        if _channel_enabled(d, "publicAlerts")
    )
    logger.info(
        "recipients_by_postal_code",
        cep=cep,
        radius_m=radius_m,
        scanned=len(devices),
        in_range=len(in_range),
        selected=len(recipients),
    )
    return recipients


async def select_by_geo_tile(
    lat: float,
    lng: float,
    radius_m: float | None = None,
) -> list[Recipient]:
    """FCM and Expo recipients indexed under the tiles around (lat, lng)."""
    tiles = tiles_for_radius(lat, lng, radius_m)
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Device)
            .join(DeviceTile, DeviceTile.device_id == Device.device_id)
            .where(
                DeviceTile.tile.in_(tiles),
                Device.active.is_(True),
                Device.updated_at >= _fresh_cutoff(),
            )
            .distinct()
        )
        devices = result.scalars().all()

    candidates: list[Recipient] = []
    for device in devices:
        if not _channel_enabled(device, "missingAlerts"):
            continue
        if device.fcm_token:
            candidates.append(Recipient(device.fcm_token, "fcm"))
        if device.expo_token:
            candidates.append(Recipient(device.expo_token, "expo"))

    recipients = dedupe_recipients(candidates)
    logger.info(
        "recipients_by_geo_tile",
        center=tiles[0],
        tiles=len(tiles),
        scanned=len(devices),
        selected=len(recipients),
    )
    return recipients


async def select_city_sample(city: str) -> list[Recipient]:
    """Shuffled FCM recipients among up to CITY_SAMPLE_LIMIT devices of a city."""
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Device)
            .where(
                Device.city == city,
                Device.active.is_(True),
                Device.fcm_token.is_not(None),
                Device.updated_at >= _fresh_cutoff(),
            )
            .limit(CITY_SAMPLE_LIMIT)
        )
        devices = list(result.scalars().all())

    # Spread repeated samples over different devices.
    random.shuffle(devices)
    recipients = dedupe_recipients(
        Recipient(d.fcm_token, "fcm")
        for d in devices
        if _channel_enabled(d, "publicAlerts")
    )
    logger.warning(
        "recipients_city_sample",
        city=city,
        scanned=len(devices),
        selected=len(recipients),
    )
    return recipients


def widened_radius(base_m: float, current_m: float, step: int) -> float:
    """Radius for widening step `step` (1-based), never above base * WIDEN_FACTOR**step."""
    return min(math.floor(current_m * WIDEN_FACTOR), base_m * WIDEN_FACTOR**step)


async def _select_once(
    strategy: str,
    cep: str | None,
    lat: float | None,
    lng: float | None,
    radius_m: float | None,
) -> list[Recipient]:
    if strategy == STRATEGY_GEO_TILE:
        return await select_by_geo_tile(lat, lng, radius_m)
    return await select_by_postal_code(cep, lat, lng, radius_m)


async def select_recipients(
    strategy: str,
    *,
    cep: str | None = None,
    lat: float | None = None,
    lng: float | None = None,
    radius_m: float | None = None,
    city: str | None = None,
) -> list[Recipient]:
    """
    Run the named strategy. Missing locality input yields no recipients.

    An empty result is retried with a progressively wider radius; a
    postal-code selection that stays empty falls back to a city sample.
    """
    if strategy == STRATEGY_GEO_TILE:
        if lat is None or lng is None:
            return []
    elif strategy == STRATEGY_POSTAL_CODE:
        if not cep:
            logger.warning("recipients_cep_missing")
            return []
    else:
        raise ValueError(f"Unknown recipient strategy: {strategy}")

    recipients = await _select_once(strategy, cep, lat, lng, radius_m)

    current = radius_m
    step = 0
    while not recipients and current is not None and step < MAX_WIDEN_STEPS:
        step += 1
        current = widened_radius(radius_m, current, step)
        logger.warning("recipients_widen", strategy=strategy, step=step, radius_m=current)
        recipients = await _select_once(strategy, cep, lat, lng, current)

    if not recipients and strategy == STRATEGY_POSTAL_CODE and city:
        recipients = await select_city_sample(city)
    return recipients
