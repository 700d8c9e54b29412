"""
gateway/services/acks.py

Receipt acknowledgements for public alerts.
Acks are idempotent per (alert_id, token hash); the hash is taken over the
FCM token, or over "userId|platform" when the device acked without one.
"""

import hashlib
from datetime import datetime

import structlog
from sqlalchemy import update

from db.models import AlertAck, AsyncSessionLocal, PublicAlert
from gateway.errors import ValidationError

logger = structlog.get_logger(__name__)

ACK_REASONS = ("receive", "tap")


def sanitize_alert_id(alert_id: str | None) -> str:
    """Return the stripped alert id or raise ValidationError."""
    value = (alert_id or "").strip()
    if not value or "/" in value:
        raise ValidationError("alertId_invalid")
    return value


def normalize_reason(reason: str | None) -> str:
    """'tap' stays 'tap'; anything else is a plain 'receive'."""
    return "tap" if (reason or "").strip().lower() == "tap" else "receive"


def ack_token_hash(
    fcm_token: str | None,
    user_id: str | None = None,
    platform: str | None = None,
) -> str:
    source = (fcm_token or "").strip() or f"{(user_id or '').strip()}|{(platform or '').strip()}"
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


async def record_ack(
    alert_id: str,
    token_hash: str,
    reason: str,
    *,
    user_id: str | None = None,
    platform: str | None = None,
    bump_counters: bool = True,
) -> AlertAck:
    """
    Merge one acknowledgement into its (alert_id, token_hash) row.

    The reason is added to the row's reason set and last_seen_at refreshed.
    With bump_counters the row's count and the alert's ack_count are
    incremented; the latter is best-effort and never fails the ack.
    """
    now = datetime.utcnow()
    async with AsyncSessionLocal() as session:
        ack = await session.get(AlertAck, (alert_id, token_hash))
        if ack is None:
            ack = AlertAck(
                alert_id=alert_id,
                token_hash=token_hash,
                reasons={},
                count=0,
                first_seen_at=now,
            )
            session.add(ack)

        ack.user_id = user_id or ack.user_id
        ack.platform = platform or ack.platform
        ack.reasons = {**(ack.reasons or {}), reason: True}
        ack.last_seen_at = now
        if bump_counters:
            ack.count = (ack.count or 0) + 1
        await session.commit()

    if bump_counters:
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(
                    update(PublicAlert)
                    .where(PublicAlert.alert_id == alert_id)
                    .values(ack_count=PublicAlert.ack_count + 1)
                )
                await session.commit()
        except Exception as exc:
            logger.warning("ack_count_bump_failed", alert_id=alert_id, error=str(exc))

    logger.info(
        "alert_ack_recorded",
        alert_id=alert_id,
        reason=reason,
        count=ack.count,
        counted=bump_counters,
    )
    return ack
