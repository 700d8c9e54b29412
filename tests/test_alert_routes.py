"""
tests/test_alert_routes.py

HTTP tests for gateway/routers/alerts.py: incident intake, receipt acks and
the delivery log read. Services are mocked; the ack throttle is injected
through dependency overrides.
"""

import json
from typing import Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from gateway.dependencies import get_ack_throttle
from gateway.schemas import IncidentPayload
from gateway.services.delivery_log import DeliveryLogEntry
from gateway.services.throttle import Throttle
from tests.fixtures import TEST_CEP, build_incident, build_mock_session, fcm_token


@pytest.fixture
def client() -> Iterator[TestClient]:
    from gateway.main import app

    throttle = Throttle(60.0)
    app.dependency_overrides[get_ack_throttle] = lambda: throttle
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_create_alert_persists_and_enqueues(client: TestClient) -> None:
    with patch(
        "gateway.routers.alerts.create_public_alert",
        new_callable=AsyncMock,
        return_value="abc123",
    ) as mock_create, patch(
        "gateway.routers.alerts.enqueue_fanout", return_value=True
    ) as mock_enqueue:
        response = client.post("/alerts/public", json=build_incident(ttlSeconds=600))

    assert response.status_code == 201
    assert response.json() == {"ok": True, "alertId": "abc123"}
    payload = mock_create.await_args.args[0]
    assert payload.cep == TEST_CEP
    assert float(payload.ttl_seconds) == 600
    mock_enqueue.assert_called_once()
    assert mock_enqueue.call_args.args[0] == "abc123"


def test_create_alert_persistence_failure_is_500(client: TestClient) -> None:
    with patch(
        "gateway.routers.alerts.create_public_alert",
        new_callable=AsyncMock,
        side_effect=RuntimeError("db down"),
    ), patch("gateway.routers.alerts.enqueue_fanout") as mock_enqueue:
        response = client.post("/alerts/public", json=build_incident())

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "internal_error"}
    mock_enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_create_public_alert_stores_cep_digits() -> None:
    mock_session = build_mock_session()
    with patch(
        "gateway.services.incidents.AsyncSessionLocal", return_value=mock_session
    ):
        from gateway.services.incidents import create_public_alert

        payload = IncidentPayload.model_validate(build_incident(cep="62880-000"))
        alert_id = await create_public_alert(payload)

        row = mock_session.add.call_args.args[0]
        assert row.alert_id == alert_id
        assert row.cep == TEST_CEP
        assert row.ack_count == 0
        mock_session.commit.assert_awaited_once()


def test_enqueue_fanout_sends_celery_task() -> None:
    mock_celery = MagicMock()
    with patch("fanout.main.celery_app", mock_celery):
        from gateway.services.incidents import enqueue_fanout

        payload = IncidentPayload.model_validate(build_incident(ttlSeconds=600))
        assert enqueue_fanout("abc123", payload) is True

    name = mock_celery.send_task.call_args.args[0]
    alert_id, incident_json = mock_celery.send_task.call_args.kwargs["args"]
    assert name == "fanout.tasks.fanout_public_alert"
    assert alert_id == "abc123"
    assert float(json.loads(incident_json)["ttlSeconds"]) == 600


def test_enqueue_fanout_broker_failure_returns_false() -> None:
    mock_celery = MagicMock()
    mock_celery.send_task.side_effect = ConnectionError("redis down")
    with patch("fanout.main.celery_app", mock_celery):
        from gateway.services.incidents import enqueue_fanout

        payload = IncidentPayload.model_validate(build_incident())
        assert enqueue_fanout("abc123", payload) is False


def test_ack_records_and_normalizes_reason(client: TestClient) -> None:
    with patch(
        "gateway.routers.alerts.record_ack",
        new_callable=AsyncMock,
        return_value=MagicMock(count=1),
    ) as mock_record:
        response = client.post(
            "/alerts/alert_001/ack",
            json={"reason": "TAP", "fcmToken": fcm_token(), "platform": "android"},
        )

    body = response.json()
    assert response.status_code == 200
    assert body["ok"] is True
    assert body["reason"] == "tap"
    assert body["throttled"] is False
    assert response.headers["cache-control"] == "no-store"
    args = mock_record.await_args
    assert args.args[0] == "alert_001"
    assert args.args[2] == "tap"
    assert args.kwargs["bump_counters"] is True


def test_repeated_ack_is_throttled(client: TestClient) -> None:
    with patch(
        "gateway.routers.alerts.record_ack",
        new_callable=AsyncMock,
        return_value=MagicMock(count=1),
    ) as mock_record:
        body = {"reason": "receive", "fcmToken": fcm_token()}
        client.post("/alerts/alert_001/ack", json=body)
        response = client.post("/alerts/alert_001/ack", json=body)

    assert response.json()["throttled"] is True
    assert mock_record.await_count == 2
    assert mock_record.await_args.kwargs["bump_counters"] is False


def test_ack_without_token_uses_user_and_platform(client: TestClient) -> None:
    with patch(
        "gateway.routers.alerts.record_ack",
        new_callable=AsyncMock,
        return_value=MagicMock(count=1),
    ) as mock_record:
        client.post("/alerts/alert_001/ack", json={"userId": "u1", "platform": "ios"})
        client.post("/alerts/alert_001/ack", json={"userId": "u1", "platform": "android"})

    first, second = mock_record.await_args_list
    assert first.args[1] != second.args[1]
    assert first.kwargs["user_id"] == "u1"


def test_ack_rejects_blank_alert_id(client: TestClient) -> None:
    response = client.post("/alerts/%20/ack", json={})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "alertId_invalid"}


def test_ack_rejects_non_object_body(client: TestClient) -> None:
    response = client.post("/alerts/alert_001/ack", json=["not", "an", "object"])

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "invalid_body"}


def test_list_deliveries(client: TestClient) -> None:
    entries = [
        DeliveryLogEntry(
            alert_id="alert_001",
            selected=150,
            delivered=130,
            radius_m=1000,
            cep=TEST_CEP,
            kind="publicIncident",
            ttl_seconds=900,
        )
    ]
    with patch(
        "gateway.routers.alerts.list_delivery_logs",
        new_callable=AsyncMock,
        return_value=entries,
    ):
        response = client.get("/alerts/alert_001/deliveries")

    body = response.json()
    assert response.status_code == 200
    assert body["alertId"] == "alert_001"
    assert body["deliveries"][0]["selected"] == 150
    assert body["deliveries"][0]["delivered"] == 130
    assert body["deliveries"][0]["radiusM"] == 1000
