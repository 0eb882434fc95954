"""Webhook HTTP handlers -- FastAPI routes for inbound provider webhooks.

Each handler:
1. Reads the raw body once (needed for signature verification)
2. Verifies the provider signature
3. Derives the idempotency key from the provider event id
4. Runs the registered handler under ``run_once``
5. Maps the outcome to an HTTP response

Security contract:
- Never return error details to the webhook caller (info disclosure)
- 2xx for processed AND duplicate deliveries (stops provider retries)
- 4xx for verification failures, 500 for misconfiguration/handler errors,
  503 when the shared store is down (provider retry is safe)
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from webhook_admission.config import WebhookSettings
from webhook_admission.dispatcher import WebhookDispatcher, WebhookEvent, parse_event
from webhook_admission.exceptions import StoreUnavailableError, VerificationError
from webhook_admission.idempotency import Duplicate, idempotency_key, run_once
from webhook_admission.store import KeyValueStore
from webhook_admission.stripe import STRIPE_SIGNATURE_HEADER, verify_stripe
from webhook_admission.verification import read_signed_request, verify

logger = logging.getLogger(__name__)


class WebhookAudit:
    """Per-app receive counters plus the WEBHOOK_AUDIT log line."""

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()

    def record(self, provider: str, event_type: str, event_id: str, status: str) -> None:
        self._counts[f"{provider}:{status}"] += 1
        logger.info(
            "WEBHOOK_AUDIT provider=%s event=%s id=%s status=%s",
            provider,
            event_type,
            event_id,
            status,
        )

    def snapshot(self) -> dict[str, int]:
        return dict(sorted(self._counts.items()))


def _rejection(exc: VerificationError) -> JSONResponse:
    body = {"status": "rejected"} if exc.is_client_error else {"status": "error"}
    return JSONResponse(body, status_code=exc.status)


def _disconnected(provider: str, audit: WebhookAudit) -> JSONResponse:
    logger.warning("Webhook %s client disconnected before the body was read", provider)
    audit.record(provider, "unknown", "unknown", "disconnected")
    return JSONResponse({"status": "rejected"}, status_code=400)


async def _run_event(
    event: WebhookEvent,
    *,
    store: KeyValueStore,
    dispatcher: WebhookDispatcher,
    ttl_seconds: int,
    audit: WebhookAudit,
) -> JSONResponse:
    """Execute the event's handler at most once and build the response."""

    async def work() -> Any:
        return await dispatcher.dispatch(event)

    try:
        if not event.event_id:
            # No id = can't dedup, process unguarded
            logger.warning(
                "Webhook %s/%s has no event id -- processing without idempotency",
                event.provider,
                event.event_type,
            )
            result = await work()
        else:
            key = idempotency_key(event.provider, event.event_id)
            outcome = await run_once(store, key, ttl_seconds, work)
            if isinstance(outcome, Duplicate):
                audit.record(event.provider, event.event_type, event.event_id, "duplicate")
                return JSONResponse({"status": "duplicate"}, status_code=200)
            result = outcome.value
    except StoreUnavailableError:
        audit.record(event.provider, event.event_type, event.event_id, "store_unavailable")
        return JSONResponse({"status": "unavailable"}, status_code=503)
    except Exception:
        logger.exception(
            "Webhook handler failed: %s/%s id=%s",
            event.provider,
            event.event_type,
            event.event_id,
        )
        audit.record(event.provider, event.event_type, event.event_id, "handler_failed")
        return JSONResponse({"status": "error"}, status_code=500)

    audit.record(event.provider, event.event_type, event.event_id, "processed")
    return JSONResponse(
        {"status": "processed", "result": jsonable_encoder(result)},
        status_code=200,
    )


def register_webhook_routes(
    app: FastAPI,
    *,
    settings: WebhookSettings,
    store: KeyValueStore,
    dispatcher: WebhookDispatcher,
) -> WebhookAudit:
    """Register webhook endpoint routes on the FastAPI app."""
    audit = WebhookAudit()

    @app.post("/webhooks/twilio")
    async def twilio_webhook(request: Request):
        """Receive Twilio messaging/voice webhooks (signature-verified)."""
        start = time.time()
        try:
            signed = await read_signed_request(request, public_base_url=settings.public_base_url)
        except ClientDisconnect:
            return _disconnected("twilio", audit)
        try:
            verified = verify(
                signed,
                settings.twilio_auth_token,
                signature_header=settings.twilio_signature_header,
            )
        except VerificationError as exc:
            audit.record("twilio", "unknown", "unknown", "rejected")
            return _rejection(exc)

        headers = {k.lower(): v for k, v in request.headers.items()}
        event = parse_event("twilio", verified.payload, headers)
        response = await _run_event(
            event,
            store=store,
            dispatcher=dispatcher,
            ttl_seconds=settings.idempotency_ttl_seconds,
            audit=audit,
        )
        elapsed_ms = (time.time() - start) * 1000
        logger.debug("Webhook processed in %.1fms: twilio/%s", elapsed_ms, event.event_type)
        return response

    @app.post("/webhooks/stripe")
    async def stripe_webhook(request: Request):
        """Receive Stripe webhooks (signature-verified)."""
        try:
            body = await request.body()
        except ClientDisconnect:
            return _disconnected("stripe", audit)
        try:
            payload = verify_stripe(
                body,
                request.headers.get(STRIPE_SIGNATURE_HEADER),
                settings.stripe_webhook_secret,
                tolerance_seconds=settings.stripe_tolerance_seconds,
            )
        except VerificationError as exc:
            audit.record("stripe", "unknown", "unknown", "rejected")
            return _rejection(exc)

        event = parse_event("stripe", payload)
        return await _run_event(
            event,
            store=store,
            dispatcher=dispatcher,
            ttl_seconds=settings.idempotency_ttl_seconds,
            audit=audit,
        )

    @app.get("/webhooks/status")
    async def webhook_status():
        """Webhook receive counts."""
        return {"counts": audit.snapshot()}

    logger.info("Webhook routes registered: /webhooks/{twilio,stripe}")
    return audit
