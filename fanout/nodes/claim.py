"""
fanout/nodes/claim.py

Node 1: Claim.
Claims the alert id before any work so a re-delivered trigger for the same
incident is absorbed instead of sending a second wave.
"""

import structlog

from config import settings
from fanout.state import FanoutState
from gateway.services.claims import claim_alert

logger = structlog.get_logger(__name__)


async def claim_node(state: FanoutState) -> dict:
    """Mark the invocation as duplicate when another one already owns the alert."""
    alert_id = state["alert_id"]
    if not settings.fanout_dedup_enabled:
        return {"duplicate": False}

    try:
        owned = await claim_alert(alert_id, settings.fanout_claim_ttl_seconds)
    except Exception as exc:
        # Claim store unavailable: send anyway.
        logger.error("fanout_claim_failed", alert_id=alert_id, error=str(exc))
        return {"duplicate": False}

    if not owned:
        logger.info("fanout_duplicate_trigger", alert_id=alert_id)
    return {"duplicate": not owned}
