"""
gateway/services/delivery_log.py

Append-only audit log of fan-out attempts.
One entry per attempt; entries are never updated.
"""

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import select

from db.models import AsyncSessionLocal, DeliveryLog

logger = structlog.get_logger(__name__)


class DeliveryLogEntry(BaseModel):
    """Summary of one fan-out attempt (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    alert_id: str = Field(alias="alertId")
    category: str = "publicAlert"
    method: str = "fcm"
    selected: int = Field(ge=0)
    delivered: int = Field(ge=0)
    radius_m: float = Field(alias="radiusM")
    cep: str | None = None
    city: str | None = None
    kind: str
    ttl_seconds: int | None = Field(default=None, alias="ttlSeconds")

    @model_validator(mode="after")
    def _delivered_within_selected(self) -> "DeliveryLogEntry":
        if self.delivered > self.selected:
            raise ValueError(
                f"delivered ({self.delivered}) exceeds selected ({self.selected})"
            )
        return self


async def create_delivery_log(entry: DeliveryLogEntry) -> int:
    """Append one entry and return its row id."""
    async with AsyncSessionLocal() as session:
        row = DeliveryLog(
            alert_id=entry.alert_id,
            category=entry.category,
            method=entry.method,
            selected=entry.selected,
            delivered=entry.delivered,
            radius_m=entry.radius_m,
            cep=entry.cep,
            city=entry.city,
            kind=entry.kind,
            ttl_seconds=entry.ttl_seconds,
        )
        session.add(row)
        await session.commit()
        logger.info(
            "delivery_log_created",
            alert_id=entry.alert_id,
            log_id=row.id,
            selected=entry.selected,
            delivered=entry.delivered,
        )
        return row.id


async def list_delivery_logs(alert_id: str) -> list[DeliveryLogEntry]:
    """Return the entries recorded for an alert, newest first."""
    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(DeliveryLog)
            .where(DeliveryLog.alert_id == alert_id)
            .order_by(DeliveryLog.id.desc())
        )
        return [
            DeliveryLogEntry(
                alert_id=row.alert_id,
                category=row.category,
                method=row.method,
                selected=row.selected,
                delivered=row.delivered,
                radius_m=row.radius_m,
                cep=row.cep,
                city=row.city,
                kind=row.kind,
                ttl_seconds=row.ttl_seconds,
            )
            for row in result.scalars().all()
        ]
