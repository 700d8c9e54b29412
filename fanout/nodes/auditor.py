"""
fanout/nodes/auditor.py

Node 5: Auditor.
Writes exactly one delivery log entry per non-duplicate fan-out attempt,
including attempts that found nobody to notify.
"""

import structlog

from fanout.state import FanoutState
from gateway.services.delivery_log import DeliveryLogEntry, create_delivery_log

logger = structlog.get_logger(__name__)


async def _write_log(state: FanoutState, entry: DeliveryLogEntry) -> dict:
    try:
        log_id = await create_delivery_log(entry)
    except Exception as exc:
        logger.error("delivery_log_write_failed", alert_id=state["alert_id"], error=str(exc))
        return {"log_id": None}
    return {"log_id": log_id}


async def empty_exit_node(state: FanoutState) -> dict:
    """Record a zero-recipient attempt. No TTL is logged since nothing was sent."""
    entry = DeliveryLogEntry(
        alert_id=state["alert_id"],
        category=state["category"],
        method="fcm",
        selected=0,
        delivered=0,
        radius_m=state["radius_m"],
        cep=state["cep"],
        city=state["city"],
        kind=state["kind"],
    )
    logger.info("fanout_no_recipients", alert_id=state["alert_id"], cep=entry.cep)
    return {"selected": 0, "delivered": 0, "method": "fcm", **await _write_log(state, entry)}


async def auditor_node(state: FanoutState) -> dict:
    """Record the outcome of a dispatched fan-out."""
    entry = DeliveryLogEntry(
        alert_id=state["alert_id"],
        category=state["category"],
        method=state["method"],
        selected=state["selected"],
        delivered=state["delivered"],
        radius_m=state["radius_m"],
        cep=state["cep"],
        city=state["city"],
        kind=state["kind"],
        ttl_seconds=state["ttl_seconds"],
    )
    return await _write_log(state, entry)
