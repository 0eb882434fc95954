"""Webhook admission settings, read from the environment once at startup.

Settings are passed explicitly to ``create_app`` / ``verify`` / ``run_once``;
nothing here is a module-level singleton.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from webhook_admission.stripe import DEFAULT_TOLERANCE_SECONDS
from webhook_admission.verification import TWILIO_SIGNATURE_HEADER

DEFAULT_REDIS_URL = "redis://localhost:6381/0"
DEFAULT_IDEMPOTENCY_TTL_SECONDS = 24 * 60 * 60
DEFAULT_PORT = 8787


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer; got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive; got {value}")
    return value


@dataclass(frozen=True)
class WebhookSettings:
    twilio_auth_token: str = ""
    twilio_signature_header: str = TWILIO_SIGNATURE_HEADER
    stripe_webhook_secret: str = ""
    stripe_tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS
    redis_url: str = DEFAULT_REDIS_URL
    idempotency_ttl_seconds: int = DEFAULT_IDEMPOTENCY_TTL_SECONDS
    public_base_url: str | None = None
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> WebhookSettings:
        """Build settings from *env* (defaults to ``os.environ``).

        Raises:
            ValueError: A numeric variable is not a positive integer
        """
        env = os.environ if env is None else env
        return cls(
            twilio_auth_token=env.get("TWILIO_AUTH_TOKEN", "").strip(),
            twilio_signature_header=(
                env.get("TWILIO_SIGNATURE_HEADER", "").strip() or TWILIO_SIGNATURE_HEADER
            ),
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET", "").strip(),
            stripe_tolerance_seconds=_int_env(
                env, "STRIPE_TIMESTAMP_TOLERANCE", DEFAULT_TOLERANCE_SECONDS
            ),
            redis_url=env.get("REDIS_URL", "").strip() or DEFAULT_REDIS_URL,
            idempotency_ttl_seconds=_int_env(
                env, "WEBHOOK_IDEMPOTENCY_TTL_SECONDS", DEFAULT_IDEMPOTENCY_TTL_SECONDS
            ),
            public_base_url=env.get("WEBHOOK_PUBLIC_BASE_URL", "").strip() or None,
            port=_int_env(env, "WEBHOOK_PORT", DEFAULT_PORT),
        )
