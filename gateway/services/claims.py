"""
gateway/services/claims.py

Claim-check for at-least-once triggers: an alert id is claimed with a TTL
before dispatch, so a duplicate trigger observes the claim and skips.

The claim row is inserted first. A duplicate key means someone else holds
or held the claim; an expired one is taken over with a conditional UPDATE so
only one of several racing invocations wins. Deadlocks and lock wait
timeouts on the claim row are treated as a lost race.
"""

from datetime import datetime, timedelta

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import AsyncSessionLocal, FanoutClaim

logger = structlog.get_logger(__name__)

# MySQL error codes raised when another transaction holds the claim row.
ER_LOCK_WAIT_TIMEOUT = 1205
ER_LOCK_DEADLOCK = 1213


def is_lock_conflict(exc: OperationalError) -> bool:
    """True for deadlock / lock wait timeout errors."""
    args = getattr(exc.orig, "args", None) or (None,)
    return args[0] in (ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK)


async def _take_over_expired(
    session: AsyncSession,
    alert_id: str,
    now: datetime,
    expires_at: datetime,
) -> bool:
    result = await session.execute(
        update(FanoutClaim)
        .where(FanoutClaim.alert_id == alert_id, FanoutClaim.expires_at < now)
        .values(claimed_at=now, expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def claim_alert(alert_id: str, ttl_seconds: int) -> bool:
    """
    Atomically claim alert_id for ttl_seconds.

    Returns True when this caller owns the claim, False when an unexpired
    claim already exists or another invocation won the race. An expired
    claim is taken over.
    """
    now = datetime.utcnow()
    expires_at = now + timedelta(seconds=ttl_seconds)

    async with AsyncSessionLocal() as session:
        try:
            session.add(
                FanoutClaim(alert_id=alert_id, claimed_at=now, expires_at=expires_at)
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if not await _take_over_expired(session, alert_id, now, expires_at):
                    logger.info("alert_already_claimed", alert_id=alert_id)
                    return False
                logger.info("alert_claim_taken_over", alert_id=alert_id)
        except OperationalError as exc:
            if not is_lock_conflict(exc):
                raise
            await session.rollback()
            logger.info("alert_claim_lost_race", alert_id=alert_id, error=str(exc))
            return False

    logger.info("alert_claimed", alert_id=alert_id, ttl_seconds=ttl_seconds)
    return True
