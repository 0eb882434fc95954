"""Inbound webhook signature verification (Twilio-style HMAC-SHA1).

Security contract:
- Missing secret -> MissingSecretError (500), never a silent skip
- Missing signature header -> MissingSignatureError (403)
- Mismatch -> SignatureMismatchError (403), logged as a security event
- Verification is a pure function of (url, headers, body, form fields, secret)
- The verified URL must be the URL the provider called; behind a rewriting
  proxy pass ``public_base_url`` to ``read_signed_request``
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException

from webhook_admission.exceptions import (
    InvalidPayloadError,
    MalformedSignatureError,
    MissingSecretError,
    MissingSignatureError,
    SignatureMismatchError,
)
from webhook_admission.signing import (
    MULTIPART_FORM,
    BodyVariant,
    JsonBody,
    build_signature_base,
    classify_body,
    collapse_parameters,
    compute_signature,
    decode_signature,
    looks_like_json_object,
    parse_content_type,
    signatures_match,
)

logger = logging.getLogger(__name__)

TWILIO_SIGNATURE_HEADER = "X-Twilio-Signature"


@dataclass(frozen=True)
class SignedRequest:
    """Everything the verifier needs from an inbound HTTP request."""

    url: str
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)
    # String fields of a multipart body, in submission order. File parts
    # are never included.
    form_fields: tuple[tuple[str, str], ...] | None = None

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @property
    def content_type(self) -> str | None:
        return self.header("content-type")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class VerifiedWebhook:
    """An admitted webhook: its normalized payload and how it was read."""

    payload: dict[str, Any]
    body: BodyVariant


def parse_json_payload(raw: str) -> dict[str, Any]:
    """Parse a JSON body; non-object JSON yields ``{}``."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise InvalidPayloadError("Invalid JSON payload") from exc
    return parsed if isinstance(parsed, dict) else {}


def infer_payload(body: BodyVariant) -> dict[str, Any]:
    """Build the payload handed to the caller after admission."""
    if body.parameters:
        return collapse_parameters(body.parameters)
    if isinstance(body, JsonBody):
        return parse_json_payload(body.raw)
    if looks_like_json_object(body.raw):
        # JSON was not declared: a brace-wrapped body that doesn't parse is
        # still admitted, just without a payload
        try:
            return parse_json_payload(body.raw)
        except InvalidPayloadError:
            return {}
    return {}


def verify(
    request: SignedRequest,
    secret: str | None,
    *,
    signature_header: str = TWILIO_SIGNATURE_HEADER,
) -> VerifiedWebhook:
    """Admit or reject a signed webhook.

    Args:
        request: The inbound request as seen by this process
        secret: Shared secret (provider auth token); absence is a server fault
        signature_header: Header carrying the base64 signature

    Returns:
        VerifiedWebhook with the inferred payload

    Raises:
        MissingSecretError: No secret configured
        MissingSignatureError: Signature header absent
        SignatureMismatchError: Signature does not match (or is malformed)
        InvalidPayloadError: Signature valid but the JSON body is malformed
    """
    if not secret:
        logger.critical(
            "WEBHOOK_SECURITY shared secret not configured -- rejecting webhook for %s",
            request.url,
        )
        raise MissingSecretError("Webhook shared secret not configured")

    signature = request.header(signature_header)
    if not signature:
        logger.warning("WEBHOOK_SECURITY missing %s header url=%s", signature_header, request.url)
        raise MissingSignatureError(f"Missing {signature_header} header")
    signature = signature.strip()

    body = classify_body(request.content_type, request.text, request.form_fields)
    expected = compute_signature(secret, build_signature_base(request.url, body))

    if not signatures_match(expected, signature):
        malformed = decode_signature(signature) is None
        logger.warning(
            "WEBHOOK_SECURITY signature mismatch url=%s variant=%s malformed=%s",
            request.url,
            type(body).__name__,
            malformed,
        )
        if malformed:
            raise MalformedSignatureError("Invalid signature encoding")
        raise SignatureMismatchError("Signature verification failed")

    return VerifiedWebhook(payload=infer_payload(body), body=body)


# ---------------------------------------------------------------------------
# Starlette / FastAPI adapter
# ---------------------------------------------------------------------------


def _public_url(request: Request, public_base_url: str | None) -> str:
    if not public_base_url:
        return str(request.url)
    url = public_base_url.rstrip("/") + request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


async def _read_form_fields(request: Request) -> tuple[tuple[str, str], ...]:
    """String fields of a multipart body; file parts are dropped."""
    try:
        form = await request.form()
    except (MultiPartException, HTTPException):
        logger.warning("Unparseable multipart webhook body url=%s", request.url)
        return ()
    try:
        return tuple(
            (key, value) for key, value in form.multi_items() if isinstance(value, str)
        )
    finally:
        await form.close()


async def read_signed_request(
    request: Request,
    *,
    public_base_url: str | None = None,
) -> SignedRequest:
    """Capture a live request for verification.

    The body stream can be consumed only once: it is read here first, and
    the multipart parser then runs over Starlette's cached copy.
    """
    body = await request.body()
    form_fields = None
    media_type = parse_content_type(request.headers.get("content-type"))
    if media_type is not None and media_type.startswith(MULTIPART_FORM):
        form_fields = await _read_form_fields(request)
    return SignedRequest(
        url=_public_url(request, public_base_url),
        body=body,
        headers=dict(request.headers),
        form_fields=form_fields,
    )
