"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from webhook_admission.config import (
    DEFAULT_IDEMPOTENCY_TTL_SECONDS,
    DEFAULT_REDIS_URL,
    WebhookSettings,
)


class TestWebhookSettings:
    def test_defaults(self):
        settings = WebhookSettings.from_env({})
        assert settings.twilio_auth_token == ""
        assert settings.twilio_signature_header == "X-Twilio-Signature"
        assert settings.redis_url == DEFAULT_REDIS_URL
        assert settings.idempotency_ttl_seconds == DEFAULT_IDEMPOTENCY_TTL_SECONDS == 86400
        assert settings.stripe_tolerance_seconds == 300
        assert settings.public_base_url is None

    def test_values_from_env(self):
        settings = WebhookSettings.from_env(
            {
                "TWILIO_AUTH_TOKEN": " tok ",
                "STRIPE_WEBHOOK_SECRET": "whsec_1",
                "REDIS_URL": "redis://cache:6379/2",
                "WEBHOOK_IDEMPOTENCY_TTL_SECONDS": "600",
                "WEBHOOK_PUBLIC_BASE_URL": "https://hooks.example.com",
                "TWILIO_SIGNATURE_HEADER": "X-Custom-Signature",
                "WEBHOOK_PORT": "9000",
            }
        )
        assert settings.twilio_auth_token == "tok"
        assert settings.stripe_webhook_secret == "whsec_1"
        assert settings.redis_url == "redis://cache:6379/2"
        assert settings.idempotency_ttl_seconds == 600
        assert settings.public_base_url == "https://hooks.example.com"
        assert settings.twilio_signature_header == "X-Custom-Signature"
        assert settings.port == 9000

    def test_reads_os_environ_by_default(self, monkeypatch):
        monkeypatch.setenv("TWILIO_AUTH_TOKEN", "from-env")
        assert WebhookSettings.from_env().twilio_auth_token == "from-env"

    @pytest.mark.parametrize("raw", ["abc", "0", "-1"])
    def test_invalid_ttl_rejected(self, raw):
        with pytest.raises(ValueError, match="WEBHOOK_IDEMPOTENCY_TTL_SECONDS"):
            WebhookSettings.from_env({"WEBHOOK_IDEMPOTENCY_TTL_SECONDS": raw})

    def test_settings_are_immutable(self):
        settings = WebhookSettings()
        with pytest.raises(AttributeError):
            settings.twilio_auth_token = "x"  # type: ignore[misc]
