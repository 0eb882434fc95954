"""Webhook admission core.

Inbound webhooks are signature-verified, deduplicated against a shared
store and dispatched at most once per provider event.
"""

from webhook_admission.exceptions import (
    InvalidPayloadError,
    MalformedSignatureError,
    MissingSecretError,
    MissingSignatureError,
    SignatureMismatchError,
    StoreUnavailableError,
    VerificationError,
    WebhookError,
)
from webhook_admission.idempotency import (
    ClaimStatus,
    Claimed,
    Duplicate,
    Outcome,
    claim_status,
    idempotency_key,
    release,
    run_once,
)
from webhook_admission.store import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from webhook_admission.verification import (
    SignedRequest,
    VerifiedWebhook,
    read_signed_request,
    verify,
)

__all__ = [
    "ClaimStatus",
    "Claimed",
    "Duplicate",
    "InMemoryKeyValueStore",
    "InvalidPayloadError",
    "KeyValueStore",
    "MalformedSignatureError",
    "MissingSecretError",
    "MissingSignatureError",
    "Outcome",
    "RedisKeyValueStore",
    "SignatureMismatchError",
    "SignedRequest",
    "StoreUnavailableError",
    "VerificationError",
    "VerifiedWebhook",
    "WebhookError",
    "claim_status",
    "idempotency_key",
    "read_signed_request",
    "release",
    "run_once",
    "verify",
]
