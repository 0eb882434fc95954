"""Webhook admission errors.

Every rejection carries the HTTP status the caller should answer with:
- Client-class (4xx): missing/mismatched/malformed signature, bad payload
- Server misconfiguration (500): missing shared secret -- must alert
- Transient infra (503): shared store unavailable -- provider will retry
"""

from __future__ import annotations

__all__ = [
    "InvalidPayloadError",
    "MalformedSignatureError",
    "MissingSecretError",
    "MissingSignatureError",
    "SignatureMismatchError",
    "StoreUnavailableError",
    "VerificationError",
    "WebhookError",
]


class WebhookError(Exception):
    """Base exception for the webhook admission core."""

    status: int = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class VerificationError(WebhookError):
    """Inbound request failed signature verification."""

    status = 400

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500


class MissingSecretError(VerificationError):
    """No shared secret configured (server misconfiguration, fatal)."""

    status = 500


class MissingSignatureError(VerificationError):
    """The expected signature header is absent."""

    status = 403


class SignatureMismatchError(VerificationError):
    """Computed signature does not match the supplied one."""

    status = 403


class MalformedSignatureError(SignatureMismatchError):
    """Signature header could not be decoded (treated as a non-match)."""


class InvalidPayloadError(VerificationError):
    """Body could not be parsed where structured content was expected."""

    status = 400


class StoreUnavailableError(WebhookError):
    """Shared key-value store could not be reached.

    Retryable: no claim was recorded, so a provider redelivery is safe.
    """

    status = 503
