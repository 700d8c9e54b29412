"""
fanout/nodes/dispatcher.py

Node 4: Dispatcher.
Sends the alert to the selected recipients in batches of PUSH_BATCH_SIZE.
Sends within a batch run concurrently; batches run one after another, so at
most PUSH_BATCH_SIZE requests are in flight. Only confirmed successes are
counted as delivered.
"""

import asyncio
from typing import Iterator, Sequence, TypeVar

import httpx
import structlog

from config import settings
from fanout.state import FanoutState
from gateway.constants import PUSH_BATCH_SIZE
from gateway.schemas import PushPayload, SendResult
from gateway.services.push_dispatcher import (
    build_expo_message,
    send_expo_batch,
    send_to_token,
    send_to_topic,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def partition(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most size items."""
    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _count_ok(results: list) -> int:
    return sum(1 for r in results if isinstance(r, SendResult) and r.ok)


async def _send_fcm_batches(
    state: FanoutState,
    tokens: list[str],
    client: httpx.AsyncClient,
) -> int:
    delivered = 0
    for index, batch in enumerate(partition(tokens, PUSH_BATCH_SIZE)):
        results = await asyncio.gather(
            *(
                send_to_token(
                    token,
                    state["title"],
                    state["body"],
                    state["data"],
                    state["image_url"],
                    state["accent_color"],
                    state["ttl_seconds"],
                    channel_id=state["channel_id"],
                    client=client,
                )
                for token in batch
            ),
            return_exceptions=True,
        )
        batch_ok = _count_ok(results)
        delivered += batch_ok
        logger.info(
            "fanout_batch_sent",
            alert_id=state["alert_id"],
            batch=index,
            size=len(batch),
            ok=batch_ok,
        )
    return delivered


async def dispatcher_node(state: FanoutState) -> dict:
    """Deliver the alert and record selected/delivered counts and method."""
    payload = PushPayload(
        title=state["title"],
        body=state["body"],
        data=state["data"] or {},
        image_url=state["image_url"],
        accent_color=state["accent_color"],
        channel_id=state["channel_id"],
    )
    ttl_seconds = state["ttl_seconds"]
    topics = state.get("topics") or []
    recipients = state.get("recipients") or []

    async with httpx.AsyncClient(timeout=settings.push_timeout_seconds) as client:
        if topics:
            results = await asyncio.gather(
                *(send_to_topic(t, payload, ttl_seconds, client=client) for t in topics),
                return_exceptions=True,
            )
            selected, delivered, method = len(topics), _count_ok(results), "fcm_topic"
        else:
            fcm_tokens = [r.token for r in recipients if r.transport == "fcm"]
            expo_tokens = [r.token for r in recipients if r.transport == "expo"]
            delivered = 0
            if fcm_tokens:
                delivered += await _send_fcm_batches(state, fcm_tokens, client)
            if expo_tokens:
                expo = await send_expo_batch(
                    [build_expo_message(t, payload, ttl_seconds) for t in expo_tokens],
                    client=client,
                )
                delivered += expo.ok
            selected = len(fcm_tokens) + len(expo_tokens)
            method = "+".join(
                name
                for name, tokens in (("fcm", fcm_tokens), ("expo", expo_tokens))
                if tokens
            )

    logger.info(
        "fanout_dispatched",
        alert_id=state["alert_id"],
        method=method,
        selected=selected,
        delivered=delivered,
    )
    return {"method": method, "selected": selected, "delivered": delivered}
