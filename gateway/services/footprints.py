"""
gateway/services/footprints.py

Alert footprints: where and when each alert fired, kept for
FOOTPRINT_RETENTION_DAYS of geo analytics. Written once per fan-out
(best-effort, the fan-out never fails on it) and read back by circle or
bounding box for the back office map.
"""

import math
from datetime import datetime, timedelta

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select

from db.models import AlertFootprint, AsyncSessionLocal
from gateway.constants import (
    FOOTPRINT_DEFAULT_LIMIT,
    FOOTPRINT_MAX_LIMIT,
    FOOTPRINT_RETENTION_DAYS,
    METERS_PER_DEG_LAT,
)
from gateway.services.geo_tiles import haversine_m

logger = structlog.get_logger(__name__)


class FootprintItem(BaseModel):
    """One footprint as returned by the read endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    alert_id: str = Field(alias="alertId")
    kind: str
    lat: float
    lng: float
    radius_m: float
    endereco: str | None = None
    bairro: str | None = None
    cidade: str | None = None
    uf: str | None = None
    created_at: datetime = Field(alias="createdAt")


async def record_alert_footprint(
    alert_id: str,
    *,
    kind: str,
    lat: float,
    lng: float,
    radius_m: float,
    endereco: str | None = None,
    bairro: str | None = None,
    cidade: str | None = None,
    uf: str | None = None,
    created_at: datetime | None = None,
) -> None:
    """Upsert the footprint of an alert; a re-run overwrites the same row."""
    created_at = created_at or datetime.utcnow()
    async with AsyncSessionLocal() as session:
        await session.merge(
            AlertFootprint(
                alert_id=alert_id,
                kind=kind,
                lat=lat,
                lng=lng,
                radius_m=radius_m,
                endereco=endereco,
                bairro=bairro,
                cidade=cidade,
                uf=uf,
                created_at=created_at,
                expire_at=created_at + timedelta(days=FOOTPRINT_RETENTION_DAYS),
            )
        )
        await session.commit()
    logger.info("alert_footprint_recorded", alert_id=alert_id, kind=kind)


def footprint_since(
    since: datetime | None = None,
    since_days: float | None = None,
    now: datetime | None = None,
) -> datetime:
    """
    Lower bound on created_at.

    An explicit date wins; otherwise since_days clamped to
    [1, FOOTPRINT_RETENTION_DAYS], defaulting to the full retention window.
    """
    if since is not None:
        return since
    now = now or datetime.utcnow()
    days = FOOTPRINT_RETENTION_DAYS
    if since_days is not None and math.isfinite(since_days):
        days = max(1, min(since_days, FOOTPRINT_RETENTION_DAYS))
    return now - timedelta(days=days)


def clamp_limit(limit: int | None) -> int:
    if not limit or limit < 1:
        return FOOTPRINT_DEFAULT_LIMIT
    return min(limit, FOOTPRINT_MAX_LIMIT)


def bounding_box(lat: float, lng: float, radius_m: float) -> tuple[float, float, float, float]:
    """(south, north, west, east) of the square that encloses the circle."""
    d_lat = radius_m / METERS_PER_DEG_LAT
    # Guard cos() near the poles.
    d_lng = radius_m / (METERS_PER_DEG_LAT * max(1e-6, abs(math.cos(math.radians(lat)))))
    return lat - d_lat, lat + d_lat, lng - d_lng, lng + d_lng


def _to_item(row: AlertFootprint) -> FootprintItem:
    return FootprintItem(
        alert_id=row.alert_id,
        kind=row.kind,
        lat=row.lat,
        lng=row.lng,
        radius_m=row.radius_m,
        endereco=row.endereco,
        bairro=row.bairro,
        cidade=row.cidade,
        uf=row.uf,
        created_at=row.created_at,
    )


async def _query_box(
    south: float,
    north: float,
    west: float,
    east: float,
    since: datetime,
    limit: int,
) -> list[AlertFootprint]:
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(AlertFootprint)
            .where(
                AlertFootprint.lat.between(south, north),
                AlertFootprint.lng.between(west, east),
                AlertFootprint.created_at >= since,
            )
            .order_by(AlertFootprint.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


async def list_footprints_in_circle(
    lat: float,
    lng: float,
    radius_m: float,
    *,
    since: datetime,
    limit: int = FOOTPRINT_DEFAULT_LIMIT,
) -> list[FootprintItem]:
    """Footprints whose point lies within radius_m of (lat, lng), newest first."""
    south, north, west, east = bounding_box(lat, lng, radius_m)
    rows = await _query_box(south, north, west, east, since, limit)
    items = [
        _to_item(row)
        for row in rows
        if haversine_m(lat, lng, row.lat, row.lng) <= radius_m
    ]
    logger.info(
        "footprints_circle_query",
        radius_m=radius_m,
        scanned=len(rows),
        kept=len(items),
    )
    return items


async def list_footprints_in_bbox(
    north: float,
    south: float,
    east: float,
    west: float,
    *,
    since: datetime,
    limit: int = FOOTPRINT_DEFAULT_LIMIT,
) -> list[FootprintItem]:
    """Footprints inside the box, newest first."""
    rows = await _query_box(south, north, west, east, since, limit)
    logger.info("footprints_bbox_query", kept=len(rows))
    return [_to_item(row) for row in rows]
