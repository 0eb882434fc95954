"""Webhook event dispatcher -- normalizes admitted payloads and routes them.

Each provider payload becomes a ``WebhookEvent`` carrying the id used as
the idempotency key. Side-effecting handlers (send a message, charge,
mutate a booking) are registered per provider by the embedding service.

Security contract:
- Handlers only ever see payloads that passed signature verification
- The event id is derived from signed content only; unsigned headers
  (``I-Twilio-Idempotency-Token``) are carried for log correlation, never
  used as the idempotency key
- Logged summaries are single-line and phone numbers are redacted
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Maximum summary field length
_MAX_FIELD_LENGTH = 200

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]+")

TWILIO_IDEMPOTENCY_HEADER = "i-twilio-idempotency-token"

# Twilio identifies the resource with the first of these present
_TWILIO_ID_FIELDS = ("MessageSid", "SmsSid", "CallSid")
_TWILIO_STATUS_FIELDS = ("MessageStatus", "SmsStatus")


@dataclass
class WebhookEvent:
    """Normalized, verified webhook event."""

    provider: str
    event_type: str
    event_id: str  # empty when the provider sent no usable id
    payload: dict[str, Any]
    delivery_token: str = ""


Handler = Callable[[WebhookEvent], Awaitable[Any]]


def _log_safe(value: Any, limit: int = _MAX_FIELD_LENGTH) -> str:
    """Render a payload value for a single log line.

    Control characters (CR/LF included) collapse to one space so a payload
    cannot forge extra log lines.
    """
    if value is None:
        return ""
    text = _CONTROL_CHARS.sub(" ", str(value)).strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def _redact_phone(value: Any) -> str:
    text = _log_safe(value)
    digits = re.sub(r"\D", "", text)
    if len(digits) < 4:
        return text
    return "***" + digits[-4:]


def _first(payload: Mapping[str, Any], names: tuple[str, ...]) -> str:
    return next((str(payload[name]) for name in names if payload.get(name)), "")


def _twilio_event_type(payload: Mapping[str, Any]) -> str:
    if "CallSid" in payload and "MessageSid" not in payload:
        return "voice.call"
    if "Body" not in payload and any(name in payload for name in _TWILIO_STATUS_FIELDS):
        return "message.status"
    return "message.inbound"


def _twilio_event_id(payload: Mapping[str, Any], event_type: str) -> str:
    """Resource sid, suffixed with the status for status-bearing callbacks.

    One message produces several status callbacks (queued, sent,
    delivered); each is its own event.
    """
    sid = _first(payload, _TWILIO_ID_FIELDS)
    if not sid:
        return ""
    if event_type == "message.status":
        status = _first(payload, _TWILIO_STATUS_FIELDS)
    elif event_type == "voice.call":
        status = _first(payload, ("CallStatus",))
    else:
        status = ""
    return f"{sid}:{status}" if status else sid


def parse_event(
    provider: str,
    payload: dict[str, Any],
    headers: Mapping[str, str] | None = None,
) -> WebhookEvent:
    """Normalize a verified payload into a WebhookEvent.

    Args:
        provider: ``twilio`` or ``stripe`` (anything else gets a generic parse)
        payload: Verified payload
        headers: Request headers (lowercase keys)
    """
    headers = headers or {}
    delivery_token = ""
    if provider == "twilio":
        event_type = _twilio_event_type(payload)
        event_id = _twilio_event_id(payload, event_type)
        delivery_token = _log_safe(headers.get(TWILIO_IDEMPOTENCY_HEADER))
    else:
        # Stripe shape: top-level id and type
        event_id = str(payload.get("id") or "")
        event_type = str(payload.get("type") or "unknown")

    return WebhookEvent(
        provider=provider,
        event_type=event_type,
        event_id=event_id,
        payload=payload,
        delivery_token=delivery_token,
    )


def summarize(event: WebhookEvent) -> str:
    """One-line, log-safe summary of an event."""
    payload = event.payload
    if event.provider == "twilio":
        sender = _redact_phone(payload.get("From"))
        status = _log_safe(payload.get("MessageStatus") or payload.get("SmsStatus"))
        return f"{event.event_type} from={sender} status={status}".strip()
    if event.provider == "stripe":
        data = payload.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            obj = {}
        return f"{event.event_type} object={_log_safe(obj.get('id'))}"
    return event.event_type


async def acknowledge(event: WebhookEvent) -> dict[str, Any]:
    """Default handler: log and acknowledge without side effects."""
    logger.info("No handler registered for %s/%s -- acknowledged", event.provider, event.event_type)
    return {"received": True}


class WebhookDispatcher:
    """Provider -> handler registry."""

    def __init__(self, default: Handler = acknowledge) -> None:
        self._handlers: dict[str, Handler] = {}
        self._default = default

    def register(self, provider: str, handler: Handler) -> None:
        self._handlers[provider] = handler

    def handler_for(self, provider: str) -> Handler:
        return self._handlers.get(provider, self._default)

    @property
    def providers(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, event: WebhookEvent) -> Any:
        """Run the provider's handler; exceptions propagate unchanged."""
        logger.info(
            "Dispatching webhook event: %s/%s id=%s token=%s (%s)",
            event.provider,
            event.event_type,
            event.event_id,
            event.delivery_token or "-",
            summarize(event),
        )
        return await self.handler_for(event.provider)(event)
