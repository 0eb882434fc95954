"""FastAPI application factory for the webhook admission service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from webhook_admission.config import WebhookSettings
from webhook_admission.dispatcher import WebhookDispatcher
from webhook_admission.handlers import register_webhook_routes
from webhook_admission.store import KeyValueStore, RedisKeyValueStore

logger = logging.getLogger(__name__)


def create_app(
    settings: WebhookSettings,
    *,
    store: KeyValueStore | None = None,
    dispatcher: WebhookDispatcher | None = None,
) -> FastAPI:
    """Build the app. Without *store*, a Redis store is created from settings."""
    owned_store = store is None
    if store is None:
        store = RedisKeyValueStore.from_url(settings.redis_url)
    dispatcher = dispatcher or WebhookDispatcher()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if not settings.twilio_auth_token:
            logger.critical("TWILIO_AUTH_TOKEN not set -- every Twilio webhook will be rejected")
        if not settings.stripe_webhook_secret:
            logger.critical("STRIPE_WEBHOOK_SECRET not set -- every Stripe webhook will be rejected")
        yield
        if owned_store and isinstance(store, RedisKeyValueStore):
            await store.aclose()

    app = FastAPI(title="Webhook Admission", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.state.settings = settings
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.audit = register_webhook_routes(
        app, settings=settings, store=store, dispatcher=dispatcher
    )
    return app
