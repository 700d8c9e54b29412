"""
tests/fixtures.py

Shared test data and helper functions for constructing test payloads.
All tests must use these fixtures instead of hardcoding test values.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

from db.models import Device
from gateway.schemas import DeviceRegistrationRequest
from gateway.services.recipients import Recipient

# ── Test locality (Fortaleza metro area) ────────────────────

TEST_LAT: float = -4.1
TEST_LNG: float = -38.48
TEST_CEP: str = "62880000"
TEST_CITY: str = "Horizonte"
TEST_UF: str = "CE"
TEST_TILE: str = "t_-82_-770"


def fcm_token(n: int = 0) -> str:
    """A string that passes the FCM token heuristic."""
    return f"fcm{n:05d}:APA91b" + "x" * 90


def expo_token(n: int = 0) -> str:
    return f"ExponentPushToken[expo-{n:05d}]"


def build_registration(
    user_id: str | None = "user_001",
    device_id: str | None = "device_001",
    platform: str = "android",
    fcm: str | None = None,
    expo: str | None = None,
    lat: float | str | None = TEST_LAT,
    lng: float | str | None = TEST_LNG,
    tiles: list[str] | None = None,
) -> DeviceRegistrationRequest:
    """Build a DeviceRegistrationRequest with sensible defaults for testing."""
    return DeviceRegistrationRequest(
        user_id=user_id,
        device_id=device_id,
        platform=platform,
        fcm_token=fcm if fcm is not None else fcm_token(),
        expo_token=expo,
        lat=lat,
        lng=lng,
        tiles=tiles,
    )


def build_incident(**overrides: object) -> dict:
    """Incident document as written by the reporting flow."""
    incident = {
        "titulo": None,
        "descricao": None,
        "endereco": "Rua A, 100",
        "bairro": "Centro",
        "cidade": TEST_CITY,
        "uf": TEST_UF,
        "cep": TEST_CEP,
        "lat": TEST_LAT,
        "lng": TEST_LNG,
        "gravidade": "medium",
        "kind": "publicIncident",
    }
    incident.update(overrides)
    return incident


def build_device(
    device_id: str = "device_001",
    fcm: str | None = None,
    expo: str | None = None,
    channels: dict | None = None,
    lat: float | None = None,
    lng: float | None = None,
) -> Device:
    """Build an unsaved Device row; no stored point unless lat/lng are given."""
    return Device(
        device_id=device_id,
        user_id="user_001",
        platform="android",
        fcm_token=fcm,
        expo_token=expo,
        lat=lat,
        lng=lng,
        cep=TEST_CEP,
        city=TEST_CITY,
        tiles=[TEST_TILE],
        active=True,
        channels=channels or {"publicAlerts": True, "missingAlerts": True},
        updated_at=datetime(2024, 6, 15, 13, 30, 0),
    )


def build_fcm_recipients(count: int) -> list[Recipient]:
    return [Recipient(fcm_token(i), "fcm") for i in range(count)]


def build_mock_session(scalars: list | None = None, get: object = None) -> AsyncMock:
    """
    Mock AsyncSessionLocal() instance usable as an async context manager.

    execute() returns a result whose scalars().all() yields scalars; get()
    returns get.
    """
    mock_session = AsyncMock()
    mock_result = MagicMock()
    mock_result.scalars.return_value.all.return_value = scalars or []
    mock_session.execute = AsyncMock(return_value=mock_result)
    mock_session.get = AsyncMock(return_value=get)
    mock_session.add = MagicMock()
    mock_session.add_all = MagicMock()
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session
