"""Webhook ingestion route for messaging gateways.

The route only verifies, parses and hands each event to the deduplication
gate; it answers as soon as jobs are queued and never waits for a reply to
be generated.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from slowapi import Limiter

from ..channels import get_adapter
from ..ingest.models import IngestStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def get_client_ip(request: Request) -> str:
    """Best-effort client IP: first ``X-Forwarded-For`` hop, else the peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def webhook_rate_key(request: Request) -> str:
    """Rate-limit bucket: one per (channel instance, client IP)."""
    instance = request.path_params.get("instance", "-")
    return f"{instance}:{get_client_ip(request)}"


def _webhook_rate_limit() -> str:
    return os.getenv("WEBHOOK_RATE_LIMIT", "100/minute")


limiter = Limiter(key_func=get_client_ip)


@router.get("/api/webhooks/{channel}/{instance}", response_class=PlainTextResponse)
async def verify_webhook_subscription(channel: str, instance: str, request: Request) -> str:
    """Echo the subscription challenge for gateways that use a handshake."""

    try:
        adapter_cls = get_adapter(channel)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    params = request.query_params
    if not params.get("hub.mode") or not params.get("hub.verify_token"):
        raise HTTPException(status_code=400, detail="Missing subscription parameters")

    settings = request.app.state.runtime.settings
    challenge = adapter_cls(instance=instance).verify_subscription(
        params, {"verify_token": settings.meta_verify_token}
    )
    if challenge is None:
        logger.warning("subscription verification failed for %s/%s", channel, instance)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed"
        )
    logger.info("subscription verified for %s/%s", channel, instance)
    return challenge


@router.post("/api/webhooks/{channel}/{instance}")
@limiter.limit(_webhook_rate_limit, key_func=webhook_rate_key)
async def receive_webhook(channel: str, instance: str, request: Request) -> dict[str, Any]:
    runtime = request.app.state.runtime
    settings = runtime.settings

    try:
        adapter_cls = get_adapter(channel)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    if not settings.webhook_secret and settings.is_production:
        logger.error("rejecting webhook: WEBHOOK_SECRET is not configured in production")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Webhook secret not configured"
        )

    body = await request.body()
    adapter = adapter_cls(instance=instance)
    if not adapter.verify_signature(
        body, request.headers, {"webhook_secret": settings.webhook_secret}
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    try:
        payload = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid JSON payload: {exc}"
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Payload must be a JSON object")

    results = []
    for event in adapter.parse_incoming(payload, request.headers):
        try:
            outcome = await runtime.gate.ingest(event)
        except Exception as exc:
            logger.exception("ingestion failed for %s", event.channel_message_id)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Ingestion temporarily unavailable",
            ) from exc
        results.append(outcome)

    processed = sum(1 for r in results if r.status is IngestStatus.PROCESSED)
    return {
        "processed": processed,
        "discarded": len(results) - processed,
        "results": [r.as_dict() for r in results],
    }
