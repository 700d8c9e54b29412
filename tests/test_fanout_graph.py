"""
tests/test_fanout_graph.py

Integration tests for the LangGraph fan-out workflow.
Claims, recipient lookups, push sends and the delivery log are mocked.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from gateway.schemas import ExpoBatchResult, SendResult
from gateway.services.recipients import Recipient
from tests.fixtures import (
    TEST_CEP,
    TEST_CITY,
    TEST_LAT,
    TEST_LNG,
    build_fcm_recipients,
    build_incident,
    expo_token,
    fcm_token,
)


def _state(incident: dict, alert_id: str = "alert_001") -> dict:
    from fanout.main import initial_state

    return initial_state(alert_id, incident)


async def _run(
    incident: dict,
    recipients: list[Recipient] | Exception,
    send_side_effect=None,
    claimed: bool = True,
    footprint_side_effect=None,
) -> dict:
    """Run the compiled graph; returns the mocks keyed by name plus the final state."""
    select_kwargs = (
        {"side_effect": recipients}
        if isinstance(recipients, Exception)
        else {"return_value": recipients}
    )
    with patch(
        "fanout.nodes.claim.claim_alert", new_callable=AsyncMock, return_value=claimed
    ) as mock_claim, patch(
        "fanout.nodes.selector.select_recipients", new_callable=AsyncMock, **select_kwargs
    ) as mock_select, patch(
        "fanout.nodes.selector.record_alert_footprint",
        new_callable=AsyncMock,
        side_effect=footprint_side_effect,
    ) as mock_footprint, patch(
        "fanout.nodes.dispatcher.send_to_token",
        new_callable=AsyncMock,
        side_effect=send_side_effect or (lambda *a, **k: SendResult(ok=True)),
    ) as mock_send, patch(
        "fanout.nodes.auditor.create_delivery_log", new_callable=AsyncMock, return_value=1
    ) as mock_log:
        from fanout.graph import build_graph

        final_state = await build_graph().ainvoke(_state(incident))

    return {
        "state": final_state,
        "claim": mock_claim,
        "select": mock_select,
        "footprint": mock_footprint,
        "send": mock_send,
        "log": mock_log,
    }


def _logged_entry(run: dict):
    run["log"].assert_awaited_once()
    return run["log"].await_args.args[0]


# ── End-to-end scenarios ─────────────────────────────────────


@pytest.mark.asyncio
async def test_no_devices_for_cep_logs_empty_attempt() -> None:
    """publicIncident without radius, CEP with no devices."""
    run = await _run(build_incident(radius_m=None), recipients=[])

    entry = _logged_entry(run)
    assert entry.selected == 0
    assert entry.delivered == 0
    assert entry.radius_m == 1000
    assert entry.cep == TEST_CEP
    assert entry.kind == "publicIncident"
    assert entry.ttl_seconds is None
    run["send"].assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_point_short_circuits_before_lookup() -> None:
    run = await _run(build_incident(lat=None), recipients=build_fcm_recipients(5))

    run["select"].assert_not_awaited()
    run["footprint"].assert_not_awaited()
    run["send"].assert_not_awaited()
    entry = _logged_entry(run)
    assert entry.selected == 0
    assert entry.delivered == 0


@pytest.mark.asyncio
async def test_all_sends_succeed() -> None:
    run = await _run(build_incident(), recipients=build_fcm_recipients(150))

    entry = _logged_entry(run)
    assert entry.selected == 150
    assert entry.delivered == 150
    assert entry.method == "fcm"
    assert entry.ttl_seconds == 900
    assert entry.city == TEST_CITY
    assert run["send"].await_count == 150


@pytest.mark.asyncio
async def test_failed_sends_are_not_counted() -> None:
    failing = {fcm_token(i) for i in range(20)}

    def send(token, *args, **kwargs) -> SendResult:
        return SendResult(ok=token not in failing, error=None)

    run = await _run(
        build_incident(), recipients=build_fcm_recipients(150), send_side_effect=send
    )

    entry = _logged_entry(run)
    assert entry.selected == 150
    assert entry.delivered == 130


@pytest.mark.asyncio
async def test_send_exceptions_count_as_failures() -> None:
    def send(token, *args, **kwargs) -> SendResult:
        if token == fcm_token(0):
            raise RuntimeError("boom")
        return SendResult(ok=True)

    run = await _run(
        build_incident(), recipients=build_fcm_recipients(3), send_side_effect=send
    )

    entry = _logged_entry(run)
    assert entry.selected == 3
    assert entry.delivered == 2


@pytest.mark.asyncio
async def test_batches_never_exceed_one_hundred_in_flight() -> None:
    in_flight = {"now": 0, "max": 0}

    async def send(token, *args, **kwargs) -> SendResult:
        in_flight["now"] += 1
        in_flight["max"] = max(in_flight["max"], in_flight["now"])
        await asyncio.sleep(0)
        in_flight["now"] -= 1
        return SendResult(ok=True)

    run = await _run(
        build_incident(), recipients=build_fcm_recipients(250), send_side_effect=send
    )

    assert run["send"].await_count == 250
    assert in_flight["max"] == 100
    assert _logged_entry(run).delivered == 250


def test_partition_splits_into_full_batches_and_remainder() -> None:
    from fanout.nodes.dispatcher import partition

    batches = list(partition(build_fcm_recipients(250), 100))

    assert [len(b) for b in batches] == [100, 100, 50]
    assert batches[2][-1] == Recipient(fcm_token(249), "fcm")


# ── Locality and footprints ──────────────────────────────────


@pytest.mark.asyncio
async def test_presenter_reduces_dashed_cep_to_digits() -> None:
    from fanout.nodes.presenter import presenter_node

    result = await presenter_node(_state(build_incident(cep="62880-000")))

    assert result["cep"] == "62880000"
    assert result["data"]["cep"] == "62880000"


@pytest.mark.asyncio
async def test_dashed_cep_reaches_lookup_and_log_as_digits() -> None:
    run = await _run(build_incident(cep="62.880-000"), recipients=build_fcm_recipients(1))

    assert run["select"].await_args.kwargs["cep"] == TEST_CEP
    assert run["select"].await_args.kwargs["city"] == TEST_CITY
    assert _logged_entry(run).cep == TEST_CEP


@pytest.mark.asyncio
async def test_footprint_recorded_with_resolved_radius() -> None:
    run = await _run(build_incident(radius_m=None), recipients=build_fcm_recipients(1))

    run["footprint"].assert_awaited_once()
    args = run["footprint"].await_args
    assert args.args[0] == "alert_001"
    assert args.kwargs["kind"] == "publicIncident"
    assert args.kwargs["lat"] == TEST_LAT
    assert args.kwargs["lng"] == TEST_LNG
    assert args.kwargs["radius_m"] == 1000
    assert args.kwargs["cidade"] == TEST_CITY


@pytest.mark.asyncio
async def test_footprint_failure_does_not_block_fan_out() -> None:
    run = await _run(
        build_incident(),
        recipients=build_fcm_recipients(2),
        footprint_side_effect=RuntimeError("footprints table missing"),
    )

    assert run["send"].await_count == 2
    assert _logged_entry(run).delivered == 2


# ── Failure handling ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_lookup_failure_degrades_to_empty_exit() -> None:
    run = await _run(build_incident(), recipients=RuntimeError("db down"))

    entry = _logged_entry(run)
    assert entry.selected == 0
    run["send"].assert_not_awaited()


@pytest.mark.asyncio
async def test_duplicate_trigger_neither_sends_nor_logs() -> None:
    run = await _run(build_incident(), recipients=build_fcm_recipients(3), claimed=False)

    assert run["state"]["duplicate"] is True
    run["select"].assert_not_awaited()
    run["send"].assert_not_awaited()
    run["log"].assert_not_awaited()


@pytest.mark.asyncio
async def test_dedup_disabled_skips_claim() -> None:
    with patch("fanout.nodes.claim.settings", MagicMock(fanout_dedup_enabled=False)):
        run = await _run(build_incident(), recipients=build_fcm_recipients(2))

    run["claim"].assert_not_awaited()
    assert _logged_entry(run).delivered == 2


@pytest.mark.asyncio
async def test_claim_store_failure_still_sends() -> None:
    with patch(
        "fanout.nodes.claim.claim_alert",
        new_callable=AsyncMock,
        side_effect=RuntimeError("claims table missing"),
    ):
        from fanout.nodes.claim import claim_node

        result = await claim_node(_state(build_incident()))

    assert result == {"duplicate": False}


@pytest.mark.asyncio
async def test_audit_failure_is_swallowed() -> None:
    with patch(
        "fanout.nodes.auditor.create_delivery_log",
        new_callable=AsyncMock,
        side_effect=RuntimeError("db down"),
    ):
        from fanout.nodes.auditor import empty_exit_node
        from fanout.nodes.presenter import presenter_node

        state = _state(build_incident())
        state.update(await presenter_node(state))
        result = await empty_exit_node(state)

    assert result["log_id"] is None
    assert result["selected"] == 0


# ── Transport mixes ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_missing_kind_sends_fcm_and_expo() -> None:
    recipients = build_fcm_recipients(2) + [
        Recipient(expo_token(i), "expo") for i in range(3)
    ]
    with patch(
        "fanout.nodes.dispatcher.send_expo_batch",
        new_callable=AsyncMock,
        return_value=ExpoBatchResult(requested=3, ok=2, ko=1),
    ) as mock_expo:
        run = await _run(build_incident(kind="missingChild"), recipients=recipients)

    entry = _logged_entry(run)
    assert entry.category == "missing"
    assert entry.method == "fcm+expo"
    assert entry.selected == 5
    assert entry.delivered == 4
    assert entry.radius_m == 3000
    assert len(mock_expo.await_args.args[0]) == 3
    assert run["select"].await_args.args[0] == "geo_tile"
    assert run["send"].await_args.kwargs["channel_id"] == "missing_alerts"


@pytest.mark.asyncio
async def test_topics_mode_sends_one_message_per_tile() -> None:
    def topic_send(topic, *args, **kwargs) -> SendResult:
        return SendResult(ok=not topic.endswith("t_-82_-770"))

    with patch(
        "fanout.nodes.selector.settings", MagicMock(tile_fanout_mode="topics")
    ), patch(
        "fanout.nodes.dispatcher.send_to_topic",
        new_callable=AsyncMock,
        side_effect=topic_send,
    ) as mock_topic:
        run = await _run(
            build_incident(kind="missingAnimal", radius_m=1000), recipients=[]
        )

    run["select"].assert_not_awaited()
    assert mock_topic.await_count == 9
    entry = _logged_entry(run)
    assert entry.method == "fcm_topic"
    assert entry.selected == 9
    assert entry.delivered == 8


# ── Celery task ──────────────────────────────────────────────


def test_task_swallows_graph_errors() -> None:
    with patch(
        "fanout.main._run_graph",
        new_callable=AsyncMock,
        side_effect=RuntimeError("graph exploded"),
    ) as mock_run:
        from fanout.main import fanout_public_alert

        fanout_public_alert("alert_001", '{"kind": "publicIncident"}')

    mock_run.assert_awaited_once_with("alert_001", '{"kind": "publicIncident"}')


@pytest.mark.asyncio
async def test_run_graph_ignores_empty_documents() -> None:
    with patch("fanout.graph.build_graph") as mock_build:
        from fanout.main import _run_graph

        final_state = await _run_graph("alert_001", "")

    mock_build.assert_not_called()
    assert final_state["selected"] == 0
