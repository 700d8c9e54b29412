"""
fanout/nodes/presenter.py

Node 2: Presenter.
Derives everything recipients will see from the incident fields: radius,
accent color, locality label, severity-driven title/body, TTL and the
string-valued data payload. The incident itself is never modified.
"""

import structlog

from fanout.state import FanoutState
from gateway.constants import (
    APP_NAME,
    CATEGORY_MISSING,
    CATEGORY_PUBLIC,
    COLOR_DEFAULT,
    COLOR_HIGH_SEVERITY,
    DEFAULT_KIND,
    DEFAULT_PUSH_TTL_SECONDS,
    DEFAULT_RADIUS_M,
    DEFAULT_SEVERITY,
    FALLBACK_LOCAL_LABEL,
    HIGH_SEVERITIES,
    LOW_SEVERITIES,
    MISSING_ALERT_CHANNEL_ID,
    MISSING_KINDS,
    PUBLIC_ALERT_CHANNEL_ID,
    RADIUS_BY_KIND,
)
from gateway.schemas import IncidentPayload
from gateway.services.geo_tiles import finite_float, normalize_cep
from gateway.services.push_dispatcher import normalize_android_color
from gateway.services.recipients import strategy_for_kind

logger = structlog.get_logger(__name__)


def resolve_radius_by_kind(kind: str | None, radius_m: object = None) -> float:
    """Explicit finite positive radius, else the default for the incident kind."""
    explicit = finite_float(radius_m)
    if explicit is not None and explicit > 0:
        return explicit
    return float(RADIUS_BY_KIND.get(kind or DEFAULT_KIND, DEFAULT_RADIUS_M))


def resolve_accent_color(severity: str | None, form_color: str | None = None) -> str:
    """A valid form color wins; otherwise red for high severity, orange for the rest."""
    override = normalize_android_color(form_color)
    if override:
        return override
    if (severity or "").lower() in HIGH_SEVERITIES:
        return COLOR_HIGH_SEVERITY
    return COLOR_DEFAULT


def local_label(
    endereco: str | None = None,
    bairro: str | None = None,
    cidade: str | None = None,
    uf: str | None = None,
) -> str:
    """'street - neighborhood - city/UF', skipping empty parts."""
    city_uf = "/".join(p for p in (cidade, uf) if p)
    return " - ".join(p for p in (endereco, bairro, city_uf) if p)


def texts_by_severity(severity: str | None, local: str) -> tuple[str, str]:
    """Return (title, body) in PT-BR for the severity level."""
    local = local or FALLBACK_LOCAL_LABEL
    suffix = ". Abra para mais detalhes."
    level = (severity or DEFAULT_SEVERITY).lower()
    if level in LOW_SEVERITIES:
        return f"{APP_NAME} - Aviso", f"Aviso informativo em {local}{suffix}"
    if level in HIGH_SEVERITIES:
        return f"{APP_NAME} - URGENTE", f"URGENTE: risco em {local}{suffix}"
    return f"{APP_NAME} - Alerta público", f"Alerta em {local}{suffix}"


def _as_data_str(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


async def presenter_node(state: FanoutState) -> dict:
    """Resolve presentation fields for the fan-out."""
    incident = IncidentPayload.model_validate(state["incident"])
    kind = incident.kind or DEFAULT_KIND
    lat = finite_float(incident.lat)
    lng = finite_float(incident.lng)
    cep = normalize_cep(incident.cep)

    radius_m = resolve_radius_by_kind(kind, incident.radius_m)
    severity = incident.gravidade or DEFAULT_SEVERITY
    accent_color = resolve_accent_color(severity, incident.color)
    local = local_label(incident.endereco, incident.bairro, incident.cidade, incident.uf)
    title, body = texts_by_severity(severity, local)

    ttl = finite_float(incident.ttl_seconds)
    ttl_seconds = int(ttl) if ttl is not None and ttl > 0 else DEFAULT_PUSH_TTL_SECONDS

    is_missing = kind in MISSING_KINDS
    category = CATEGORY_MISSING if is_missing else CATEGORY_PUBLIC

    data = {
        "type": category,
        "alertId": _as_data_str(state["alert_id"]),
        "kind": kind,
        "cidade": _as_data_str(incident.cidade),
        "uf": _as_data_str(incident.uf),
        "cep": _as_data_str(cep),
        "radius_m": _as_data_str(radius_m),
        "lat": _as_data_str(lat),
        "lng": _as_data_str(lng),
    }

    logger.info(
        "fanout_presentation_resolved",
        alert_id=state["alert_id"],
        kind=kind,
        severity=severity,
        radius_m=radius_m,
        ttl_seconds=ttl_seconds,
    )

    return {
        "lat": lat,
        "lng": lng,
        "radius_m": radius_m,
        "kind": kind,
        "cep": cep,
        "city": incident.cidade or None,
        "category": category,
        "strategy": strategy_for_kind(kind),
        "channel_id": MISSING_ALERT_CHANNEL_ID if is_missing else PUBLIC_ALERT_CHANNEL_ID,
        "accent_color": accent_color,
        "title": incident.titulo or title,
        "body": incident.descricao or body,
        "image_url": incident.image or None,
        "ttl_seconds": ttl_seconds,
        "data": data,
    }
