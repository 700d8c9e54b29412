"""
gateway/services/push_dispatcher.py

Push transports for alert fan-out.
- FCM HTTP v1: per-token sends, concurrent multicast, topic sends
- FCM Instance ID: topic subscribe/unsubscribe
- Expo push API: batched sends in chunks of PUSH_BATCH_SIZE

Failures never raise: every call returns an explicit result object that the
caller aggregates. Each function accepts an optional shared httpx.AsyncClient;
without one it opens a short-lived client.
"""

import asyncio
import re
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
import structlog

from config import settings
from gateway.constants import (
    DEFAULT_PUSH_TTL_SECONDS,
    PUBLIC_ALERT_CHANNEL_ID,
    PUSH_BATCH_SIZE,
)
from gateway.schemas import (
    ExpoBatchResult,
    MulticastResult,
    PushPayload,
    SendResult,
    TopicOpResult,
)

logger = structlog.get_logger(__name__)

_HEX_COLOR = re.compile(r"^#[A-Fa-f0-9]{6}$")


def mask_token(token: str | None) -> str:
    """Shorten a push token for logs."""
    if not token:
        return "(empty)"
    token = str(token)
    if len(token) <= 12:
        return token
    return f"{token[:6]}…{token[-4:]}"


def normalize_android_color(color: str | None) -> str | None:
    """Return color as #RRGGBB, or None when it cannot be sent to FCM."""
    if not color:
        return None
    hex_color = str(color).strip()
    if not hex_color.startswith("#"):
        hex_color = f"#{hex_color}"
    return hex_color if _HEX_COLOR.match(hex_color) else None


@asynccontextmanager
async def _client_scope(
    client: httpx.AsyncClient | None,
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=settings.push_timeout_seconds) as owned:
        yield owned


def build_fcm_message(
    target: dict[str, str],
    payload: PushPayload,
    ttl_seconds: int = DEFAULT_PUSH_TTL_SECONDS,
) -> dict[str, Any]:
    """
    Build an FCM HTTP v1 message for a token or topic target.

    TTL is carried twice: android.ttl and the APNs expiration header.
    """
    notification: dict[str, str] = {"title": payload.title, "body": payload.body}
    if payload.image_url:
        notification["image"] = payload.image_url

    android_notification: dict[str, str] = {"channel_id": payload.channel_id}
    color = normalize_android_color(payload.accent_color)
    if color:
        android_notification["color"] = color

    message: dict[str, Any] = {
        **target,
        "notification": notification,
        "data": {k: str(v) for k, v in payload.data.items()},
        "android": {
            "priority": "high",
            "ttl": f"{int(ttl_seconds)}s",
            "notification": android_notification,
        },
        "apns": {
            "headers": {
                "apns-expiration": str(int(time.time()) + int(ttl_seconds)),
                "apns-priority": "10",
            },
            "payload": {
                "aps": {"sound": "default", "category": payload.channel_id},
            },
        },
    }
    return {"message": message}


async def _post_fcm_message(
    client: httpx.AsyncClient,
    body: dict[str, Any],
) -> SendResult:
    url = settings.fcm_send_url.format(project_id=settings.fcm_project_id)
    try:
        response = await client.post(
            url,
            json=body,
            headers={"Authorization": f"Bearer {settings.fcm_access_token}"},
        )
        response.raise_for_status()
        return SendResult(ok=True, message_id=response.json().get("name"))
    except httpx.HTTPStatusError as exc:
        return SendResult(
            ok=False,
            error=f"http_{exc.response.status_code}",
        )
    except Exception as exc:
        return SendResult(ok=False, error=str(exc) or type(exc).__name__)


async def send_to_token(
    token: str,
    title: str,
    body: str,
    data: dict[str, str] | None = None,
    image_url: str | None = None,
    accent_color: str | None = None,
    ttl_seconds: int = DEFAULT_PUSH_TTL_SECONDS,
    *,
    channel_id: str = PUBLIC_ALERT_CHANNEL_ID,
    client: httpx.AsyncClient | None = None,
) -> SendResult:
    """Send one notification to exactly one FCM token."""
    payload = PushPayload(
        title=title,
        body=body,
        data=data or {},
        image_url=image_url,
        accent_color=accent_color,
        channel_id=channel_id,
    )
    message = build_fcm_message({"token": token}, payload, ttl_seconds)

    async with _client_scope(client) as http:
        result = await _post_fcm_message(http, message)

    if not result.ok:
        logger.warning(
            "fcm_send_failed",
            token=mask_token(token),
            error=result.error,
        )
    return result


async def send_multicast(
    tokens: list[str],
    payload: PushPayload,
    ttl_seconds: int = DEFAULT_PUSH_TTL_SECONDS,
    *,
    client: httpx.AsyncClient | None = None,
) -> MulticastResult:
    """
    Send the same payload to up to PUSH_BATCH_SIZE tokens concurrently.

    Only aggregate counts are returned; token hygiene is handled elsewhere.
    """
    if not tokens:
        return MulticastResult()
    if len(tokens) > PUSH_BATCH_SIZE:
        raise ValueError(
            f"multicast accepts at most {PUSH_BATCH_SIZE} tokens, got {len(tokens)}"
        )

    async with _client_scope(client) as http:
        results = await asyncio.gather(
            *(
                _post_fcm_message(
                    http, build_fcm_message({"token": t}, payload, ttl_seconds)
                )
                for t in tokens
            )
        )

    success = sum(1 for r in results if r.ok)
    outcome = MulticastResult(
        success_count=success,
        failure_count=len(results) - success,
    )
    logger.info(
        "fcm_multicast_sent",
        count=len(tokens),
        success=outcome.success_count,
        failure=outcome.failure_count,
    )
    return outcome


async def send_to_topic(
    topic: str,
    payload: PushPayload,
    ttl_seconds: int = DEFAULT_PUSH_TTL_SECONDS,
    *,
    client: httpx.AsyncClient | None = None,
) -> SendResult:
    """Send one message to every subscriber of a topic."""
    message = build_fcm_message({"topic": topic}, payload, ttl_seconds)
    async with _client_scope(client) as http:
        result = await _post_fcm_message(http, message)

    if result.ok:
        logger.info("fcm_topic_sent", topic=topic, message_id=result.message_id)
    else:
        logger.warning("fcm_topic_failed", topic=topic, error=result.error)
    return result


async def _topic_op(
    operation: str,
    token: str,
    topic: str,
    client: httpx.AsyncClient | None,
) -> TopicOpResult:
    url = f"{settings.fcm_iid_url}:{operation}"
    try:
        async with _client_scope(client) as http:
            response = await http.post(
                url,
                json={"to": f"/topics/{topic}", "registration_tokens": [token]},
                headers={"Authorization": f"key={settings.fcm_server_key}"},
            )
            response.raise_for_status()
            results = response.json().get("results") or [{}]
        error = results[0].get("error")
        if error:
            return TopicOpResult(topic=topic, ok=False, error=str(error))
        return TopicOpResult(topic=topic, ok=True)
    except httpx.HTTPStatusError as exc:
        return TopicOpResult(
            topic=topic, ok=False, error=f"http_{exc.response.status_code}"
        )
    except Exception as exc:
        return TopicOpResult(topic=topic, ok=False, error=str(exc) or type(exc).__name__)


async def subscribe_to_topic(
    token: str,
    topic: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TopicOpResult:
    """Subscribe an FCM token to a topic."""
    return await _topic_op("batchAdd", token, topic, client)


async def unsubscribe_from_topic(
    token: str,
    topic: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TopicOpResult:
    """Unsubscribe an FCM token from a topic."""
    return await _topic_op("batchRemove", token, topic, client)


def build_expo_message(
    token: str,
    payload: PushPayload,
    ttl_seconds: int = DEFAULT_PUSH_TTL_SECONDS,
) -> dict[str, Any]:
    """Build one Expo push message."""
    return {
        "to": token,
        "title": payload.title,
        "body": payload.body,
        "data": dict(payload.data),
        "sound": "default",
        "priority": "high",
        "ttl": int(ttl_seconds),
        "channelId": payload.channel_id,
    }


async def send_expo_batch(
    messages: list[dict[str, Any]],
    *,
    client: httpx.AsyncClient | None = None,
) -> ExpoBatchResult:
    """
    Send Expo messages in chunks of PUSH_BATCH_SIZE and tally tickets.

    A ticket counts as ok only when its status is "ok"; error or missing
    tickets count as ko. A chunk-level exception fails the whole chunk.
    """
    if not messages:
        return ExpoBatchResult()

    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    if settings.expo_access_token:
        headers["Authorization"] = f"Bearer {settings.expo_access_token}"

    requested = ok = ko = 0
    async with _client_scope(client) as http:
        for start in range(0, len(messages), PUSH_BATCH_SIZE):
            chunk = messages[start : start + PUSH_BATCH_SIZE]
            requested += len(chunk)
            try:
                response = await http.post(
                    settings.expo_push_url, json=chunk, headers=headers
                )
                response.raise_for_status()
                tickets = response.json().get("data") or []
                chunk_ok = sum(
                    1 for t in tickets[: len(chunk)] if t.get("status") == "ok"
                )
                ok += chunk_ok
                ko += len(chunk) - chunk_ok
                logger.info(
                    "expo_chunk_sent",
                    size=len(chunk),
                    status=response.status_code,
                    ok=chunk_ok,
                )
            except Exception as exc:
                ko += len(chunk)
                logger.warning(
                    "expo_chunk_failed",
                    size=len(chunk),
                    error=str(exc) or type(exc).__name__,
                )

    return ExpoBatchResult(requested=requested, ok=ok, ko=ko)
