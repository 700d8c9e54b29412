"""
gateway/services/incidents.py

Incident intake: persists a public alert as reported (postal code reduced to
its digits) and hands it to the fan-out worker. The stored incident is never
modified afterwards except for its ack counter.
"""

import uuid

import structlog

from db.models import AsyncSessionLocal, PublicAlert
from gateway.schemas import IncidentPayload
from gateway.services.geo_tiles import finite_float, normalize_cep

logger = structlog.get_logger(__name__)


async def create_public_alert(payload: IncidentPayload) -> str:
    """Insert the incident and return its new alert id."""
    alert_id = uuid.uuid4().hex
    ttl = finite_float(payload.ttl_seconds)
    cep = normalize_cep(payload.cep)
    async with AsyncSessionLocal() as session:
        session.add(
            PublicAlert(
                alert_id=alert_id,
                titulo=payload.titulo,
                descricao=payload.descricao,
                endereco=payload.endereco,
                bairro=payload.bairro,
                cidade=payload.cidade,
                uf=payload.uf,
                cep=cep,
                lat=finite_float(payload.lat),
                lng=finite_float(payload.lng),
                radius_m=finite_float(payload.radius_m),
                gravidade=payload.gravidade,
                color=payload.color,
                image=payload.image,
                kind=payload.kind,
                ttl_seconds=int(ttl) if ttl is not None else None,
                ack_count=0,
            )
        )
        await session.commit()

    logger.info("public_alert_created", alert_id=alert_id, kind=payload.kind, cep=cep)
    return alert_id


def enqueue_fanout(alert_id: str, payload: IncidentPayload) -> bool:
    """Send the incident-created event to the fan-out worker. False if the broker is down."""
    try:
        from fanout.main import FANOUT_TASK_NAME, celery_app

        celery_app.send_task(
            FANOUT_TASK_NAME,
            args=[alert_id, payload.model_dump_json(by_alias=True)],
        )
        logger.info("fanout_task_enqueued", alert_id=alert_id)
        return True
    except Exception as exc:
        logger.error("celery_enqueue_failed", alert_id=alert_id, error=str(exc))
        return False
