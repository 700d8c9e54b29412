"""
fanout/main.py

Celery Worker entry point.
Defines the Celery app and the task that stands for the "incident created"
event: it drives the LangGraph fan-out workflow for one alert.
"""

import asyncio
import json

import structlog
from celery import Celery

from config import settings

logger = structlog.get_logger(__name__)

FANOUT_TASK_NAME = "fanout.tasks.fanout_public_alert"

celery_app = Celery(
    "fanout",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Sao_Paulo",
    enable_utc=True,
)


def initial_state(alert_id: str, incident: dict) -> dict:
    """Fresh per-invocation state for the fan-out graph."""
    return {
        "alert_id": alert_id,
        "incident": incident,
        "duplicate": False,
        "lat": None,
        "lng": None,
        "radius_m": None,
        "kind": None,
        "cep": None,
        "city": None,
        "category": None,
        "strategy": None,
        "channel_id": None,
        "accent_color": None,
        "title": None,
        "body": None,
        "image_url": None,
        "ttl_seconds": None,
        "data": None,
        "recipients": None,
        "topics": None,
        "method": None,
        "selected": 0,
        "delivered": 0,
        "log_id": None,
    }


async def _run_graph(alert_id: str, incident_json: str) -> dict:
    """Async entrypoint that builds and invokes the fan-out workflow."""
    from fanout.graph import build_graph

    incident = json.loads(incident_json) if incident_json else None
    if not incident:
        logger.warning("fanout_no_data", alert_id=alert_id)
        return initial_state(alert_id, {})

    logger.info("fanout_graph_starting", alert_id=alert_id, kind=incident.get("kind"))

    graph = build_graph()
    final_state = await graph.ainvoke(initial_state(alert_id, incident))

    logger.info(
        "fanout_graph_complete",
        alert_id=alert_id,
        duplicate=final_state.get("duplicate"),
        method=final_state.get("method"),
        selected=final_state.get("selected"),
        delivered=final_state.get("delivered"),
    )
    return final_state


@celery_app.task(name=FANOUT_TASK_NAME)
def fanout_public_alert(alert_id: str, incident_json: str) -> None:
    """
    Celery task that drives the fan-out workflow for one incident.

    Uses asyncio.run() to bridge Celery's sync interface with async graph
    execution. Failures are logged and not retried.
    """
    try:
        asyncio.run(_run_graph(alert_id, incident_json))
    except Exception as exc:
        logger.error("fanout_failed", alert_id=alert_id, error=str(exc))
