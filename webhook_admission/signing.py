"""Canonical signing base + HMAC for provider-signed webhooks.

The provider hashes a reconstruction of the request, not the raw bytes, so
the verifier has to rebuild exactly what was signed:

1. **Classify** the body by content type into one variant:
   ``UrlEncodedBody | MultipartBody | JsonBody | RawTextBody``.
2. **Canonicalize**: with form parameters the base is the URL followed by
   ``key + value`` for every key in lexicographic order (values of a repeated
   key in submission order, no separators). Without parameters the base is
   the URL followed by the raw body text.
3. **Sign**: HMAC-SHA1 keyed by the shared secret, base64 digest.

Security contract:
- Comparison is constant-time over the *decoded* digests
- Length mismatch, undecodable or non-canonical base64 -> non-match, never raises
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Union
from urllib.parse import parse_qsl

__all__ = [
    "APPLICATION_JSON",
    "BodyVariant",
    "FORM_URLENCODED",
    "JsonBody",
    "MULTIPART_FORM",
    "MultipartBody",
    "ParameterMap",
    "RawTextBody",
    "UrlEncodedBody",
    "build_signature_base",
    "classify_body",
    "collapse_parameters",
    "compute_signature",
    "decode_signature",
    "group_fields",
    "looks_like_json_object",
    "parse_content_type",
    "parse_urlencoded",
    "signatures_match",
]

FORM_URLENCODED = "application/x-www-form-urlencoded"
MULTIPART_FORM = "multipart/form-data"
APPLICATION_JSON = "application/json"

ParameterMap = dict[str, list[str]]


# ---------------------------------------------------------------------------
# Body variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class UrlEncodedBody:
    """``application/x-www-form-urlencoded`` body (also the no-content-type ``=`` fallback)."""

    raw: str
    parameters: ParameterMap


@dataclass(frozen=True, eq=False)
class MultipartBody:
    """``multipart/form-data`` body; only string fields are signed."""

    raw: str
    parameters: ParameterMap


@dataclass(frozen=True)
class JsonBody:
    raw: str

    @property
    def parameters(self) -> ParameterMap:
        return {}


@dataclass(frozen=True)
class RawTextBody:
    raw: str

    @property
    def parameters(self) -> ParameterMap:
        return {}


BodyVariant = Union[UrlEncodedBody, MultipartBody, JsonBody, RawTextBody]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_content_type(raw: str | None) -> str | None:
    """Return the lowercase media type without parameters, or None."""
    if not raw:
        return None
    media_type = raw.split(";", 1)[0].strip().lower()
    return media_type or None


def parse_urlencoded(body: str) -> ParameterMap:
    """Split a form body on ``&`` and ``=`` keeping repeated keys in order.

    ``+`` and percent escapes are decoded; ``a`` and ``a=`` both yield ``""``.
    """
    parameters: ParameterMap = {}
    for key, value in parse_qsl(body, keep_blank_values=True):
        parameters.setdefault(key, []).append(value)
    return parameters


def group_fields(fields: Iterable[tuple[str, str]]) -> ParameterMap:
    """Group ``(name, value)`` pairs into a parameter map, preserving order."""
    parameters: ParameterMap = {}
    for key, value in fields:
        parameters.setdefault(key, []).append(value)
    return parameters


def looks_like_json_object(raw: str) -> bool:
    trimmed = raw.strip()
    return trimmed.startswith("{") and trimmed.endswith("}")


def _parses_as_json(raw: str) -> bool:
    try:
        json.loads(raw)
    except ValueError:
        return False
    return True


def classify_body(
    content_type: str | None,
    raw: str,
    form_fields: Iterable[tuple[str, str]] | None = None,
) -> BodyVariant:
    """Pick the body variant that decides how the payload is canonicalized.

    Without a content type, a well-formed JSON object wins over the ``=``
    heuristic so a JSON string value containing ``=`` is not read as a form.
    """
    media_type = parse_content_type(content_type)

    if media_type == FORM_URLENCODED:
        return UrlEncodedBody(raw, parse_urlencoded(raw))
    if media_type is not None and media_type.startswith(MULTIPART_FORM):
        return MultipartBody(raw, group_fields(form_fields or ()))
    if media_type == APPLICATION_JSON:
        return JsonBody(raw)
    if media_type is None:
        if looks_like_json_object(raw) and _parses_as_json(raw):
            return JsonBody(raw)
        if "=" in raw:
            return UrlEncodedBody(raw, parse_urlencoded(raw))
    return RawTextBody(raw)


def collapse_parameters(parameters: ParameterMap) -> dict[str, Any]:
    """Single-valued keys become scalars; repeated keys stay lists."""
    payload: dict[str, Any] = {}
    for key, values in parameters.items():
        if not values:
            continue
        payload[key] = values[0] if len(values) == 1 else list(values)
    return payload


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


def build_signature_base(url: str, body: BodyVariant) -> str:
    """Rebuild the exact string the provider signed."""
    parameters = body.parameters
    if parameters:
        parts = [url]
        for key in sorted(parameters):
            for value in parameters[key]:
                parts.append(key)
                parts.append(value)
        return "".join(parts)
    return url + body.raw


def compute_signature(secret: str, signature_base: str) -> str:
    """Base64 HMAC-SHA1 of *signature_base* keyed by *secret*."""
    digest = hmac.new(
        secret.encode("utf-8"),
        signature_base.encode("utf-8"),
        hashlib.sha1,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def decode_signature(value: str) -> bytes | None:
    """Strictly decode a base64 signature; None when it is not canonical base64.

    Re-encoding must reproduce the input, otherwise two header values that
    differ only in unused padding bits would decode to the same digest.
    """
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None
    if base64.b64encode(decoded).decode("ascii") != value:
        return None
    return decoded


def signatures_match(expected: str, supplied: str) -> bool:
    """Constant-time comparison of two base64 signatures."""
    expected_bytes = decode_signature(expected)
    supplied_bytes = decode_signature(supplied)
    if expected_bytes is None or supplied_bytes is None:
        return False
    if len(expected_bytes) != len(supplied_bytes):
        return False
    return hmac.compare_digest(expected_bytes, supplied_bytes)
