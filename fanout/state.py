"""
fanout/state.py

FanoutState TypedDict definition for the LangGraph fan-out workflow.
One state object per incident-created event; nothing is shared across
invocations.
"""

from typing import Optional, TypedDict

from gateway.services.recipients import Recipient


class FanoutState(TypedDict):
    """Shared state passed through the fan-out node pipeline."""

    # ── Input (set by Celery task) ───────────────────────────
    alert_id: str
    incident: dict

    # ── Claim outputs ────────────────────────────────────────
    duplicate: bool

    # ── Presentation outputs ─────────────────────────────────
    lat: Optional[float]
    lng: Optional[float]
    radius_m: Optional[float]
    kind: Optional[str]
    cep: Optional[str]
    city: Optional[str]
    category: Optional[str]
    strategy: Optional[str]
    channel_id: Optional[str]
    accent_color: Optional[str]
    title: Optional[str]
    body: Optional[str]
    image_url: Optional[str]
    ttl_seconds: Optional[int]
    data: Optional[dict[str, str]]

    # ── Selector outputs ─────────────────────────────────────
    recipients: Optional[list[Recipient]]
    topics: Optional[list[str]]

    # ── Dispatch outputs ─────────────────────────────────────
    method: Optional[str]
    selected: int
    delivered: int

    # ── Audit outputs ────────────────────────────────────────
    log_id: Optional[int]
