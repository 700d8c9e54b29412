"""
fanout/nodes/selector.py

Node 3: Selector.
Records the alert footprint, then looks up who should receive the alert.
Incidents without a finite point are short-circuited before any lookup;
lookup failures degrade to zero recipients so the attempt is still audited.
"""

import structlog

from config import settings
from fanout.state import FanoutState
from gateway.services.footprints import record_alert_footprint
from gateway.services.geo_tiles import tile_topic, tiles_for_radius
from gateway.services.recipients import STRATEGY_GEO_TILE, select_recipients

logger = structlog.get_logger(__name__)


async def _record_footprint(state: FanoutState) -> None:
    incident = state["incident"]
    try:
        await record_alert_footprint(
            state["alert_id"],
            kind=state["kind"],
            lat=state["lat"],
            lng=state["lng"],
            radius_m=state["radius_m"],
            endereco=incident.get("endereco") or None,
            bairro=incident.get("bairro") or None,
            cidade=incident.get("cidade") or None,
            uf=incident.get("uf") or None,
        )
    except Exception as exc:
        logger.warning(
            "fanout_footprint_failed", alert_id=state["alert_id"], error=str(exc)
        )


async def selector_node(state: FanoutState) -> dict:
    """Populate recipients (or tile topics) for the dispatch node."""
    alert_id = state["alert_id"]
    lat, lng = state.get("lat"), state.get("lng")

    if lat is None or lng is None:
        logger.warning("fanout_point_missing", alert_id=alert_id)
        return {"recipients": [], "topics": []}

    await _record_footprint(state)

    if state["strategy"] == STRATEGY_GEO_TILE and settings.tile_fanout_mode == "topics":
        topics = [tile_topic(t) for t in tiles_for_radius(lat, lng, state["radius_m"])]
        logger.info("fanout_topics_selected", alert_id=alert_id, topics=len(topics))
        return {"recipients": [], "topics": topics}

    try:
        recipients = await select_recipients(
            state["strategy"],
            cep=state["cep"],
            lat=lat,
            lng=lng,
            radius_m=state["radius_m"],
            city=state["city"],
        )
    except Exception as exc:
        logger.error("fanout_recipient_lookup_failed", alert_id=alert_id, error=str(exc))
        recipients = []

    logger.info(
        "fanout_recipients_selected",
        alert_id=alert_id,
        strategy=state["strategy"],
        selected=len(recipients),
    )
    return {"recipients": recipients, "topics": []}


def route_after_selection(state: FanoutState) -> str:
    """Go to dispatch when there is anyone to send to, else the empty exit."""
    if state.get("recipients") or state.get("topics"):
        return "dispatch"
    return "empty_exit"
