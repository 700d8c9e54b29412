"""
gateway/schemas.py

Pydantic data models for the gateway layer.
- DeviceRegistrationRequest / RegistrationResult: device registration HTTP contract
- IncidentPayload: incident-created event consumed by the fan-out worker
- PushPayload and transport result types returned by the push dispatcher
- AckRequest: receipt acknowledgement body
"""

from pydantic import BaseModel, ConfigDict, Field

from gateway.constants import PUBLIC_ALERT_CHANNEL_ID


class DeviceRegistrationRequest(BaseModel):
    """Body of POST /devices/register (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    device_id: str | None = Field(default=None, alias="deviceId")
    platform: str | None = "unknown"
    fcm_token: str | None = Field(default=None, alias="fcmToken")
    expo_token: str | None = Field(default=None, alias="expoToken")
    lat: float | str | None = None
    lng: float | str | None = None
    tiles: list[str] | None = None
    cep: str | None = None
    city: str | None = None


class RegistrationResult(BaseModel):
    """Successful registration response."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    device_id: str = Field(alias="deviceId")
    user_id: str = Field(alias="userId")
    tiles: list[str]
    subscribed: list[str]


class IncidentPayload(BaseModel):
    """Fields of an incident document read by the fan-out orchestrator."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    titulo: str | None = None
    descricao: str | None = None
    endereco: str | None = None
    bairro: str | None = None
    cidade: str | None = None
    uf: str | None = None
    cep: str | None = None
    lat: float | str | None = None
    lng: float | str | None = None
    radius_m: float | str | None = None
    gravidade: str | None = None
    color: str | None = None
    image: str | None = None
    kind: str | None = None
    ttl_seconds: float | str | None = Field(default=None, alias="ttlSeconds")


class PublicAlertCreated(BaseModel):
    """Response of POST /alerts/public."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    alert_id: str = Field(alias="alertId")


class AckRequest(BaseModel):
    """Body of POST /alerts/{alert_id}/ack."""

    model_config = ConfigDict(populate_by_name=True)

    reason: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    platform: str | None = None
    fcm_token: str | None = Field(default=None, alias="fcmToken")


# ── Push transport types ─────────────────────────────────────


class PushPayload(BaseModel):
    """Notification content shared by every recipient of one fan-out."""

    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)
    image_url: str | None = None
    accent_color: str | None = None
    channel_id: str = PUBLIC_ALERT_CHANNEL_ID


class SendResult(BaseModel):
    """Outcome of a single send (one token or one topic)."""

    ok: bool
    message_id: str | None = None
    error: str | None = None


class MulticastResult(BaseModel):
    """Aggregate outcome of a multicast; no per-token detail."""

    success_count: int = 0
    failure_count: int = 0


class ExpoBatchResult(BaseModel):
    """Aggregate outcome of an Expo batch send."""

    requested: int = 0
    ok: int = 0
    ko: int = 0


class TopicOpResult(BaseModel):
    """Outcome of one topic subscribe/unsubscribe call."""

    topic: str
    ok: bool
    error: str | None = None
