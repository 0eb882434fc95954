"""Shared fixtures for the webhook admission test suite."""

from __future__ import annotations

import base64
import hashlib
import hmac

import pytest

from webhook_admission.store import InMemoryKeyValueStore

AUTH_TOKEN = "twilio-test-token"
WEBHOOK_URL = "https://hooks.example.com/webhooks/twilio?tenant=salon-1"


def _twilio_sign(secret: str, signature_base: str) -> str:
    digest = hmac.new(secret.encode(), signature_base.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


@pytest.fixture
def auth_token() -> str:
    return AUTH_TOKEN


@pytest.fixture
def webhook_url() -> str:
    return WEBHOOK_URL


@pytest.fixture
def twilio_sign():
    """Independent reference signer: base64 HMAC-SHA1 over a signing base."""
    return _twilio_sign


@pytest.fixture
def sign_params():
    """Sign form params the way the provider does.

    URL, then for each key in sorted order every ``key + value`` pair in
    submission order.
    """

    def _sign(secret: str, url: str, params: list[tuple[str, str]]) -> str:
        base = url
        for key in sorted({k for k, _ in params}):
            base += "".join(k + v for k, v in params if k == key)
        return _twilio_sign(secret, base)

    return _sign


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()
