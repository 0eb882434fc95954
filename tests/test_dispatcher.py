"""Tests for event normalization and handler dispatch."""

from __future__ import annotations

import pytest

from webhook_admission.dispatcher import (
    TWILIO_IDEMPOTENCY_HEADER,
    WebhookDispatcher,
    WebhookEvent,
    _log_safe,
    _redact_phone,
    acknowledge,
    parse_event,
    summarize,
)


class TestLogSafe:
    """Payload values are rendered as one truncated log line."""

    def test_newlines_cannot_forge_log_lines(self):
        assert _log_safe("hi\r\nWEBHOOK_AUDIT status=processed") == (
            "hi WEBHOOK_AUDIT status=processed"
        )

    def test_truncates_long_values(self):
        assert _log_safe("A" * 1000) == "A" * 200 + "..."

    def test_none_returns_empty(self):
        assert _log_safe(None) == ""

    def test_redact_phone(self):
        assert _redact_phone("+1 (555) 000-1234") == "***1234"
        assert _redact_phone("12") == "12"


class TestParseTwilioEvent:
    def test_idempotency_header_is_not_the_key(self):
        """The token header is not covered by the signature."""
        event = parse_event(
            "twilio",
            {"MessageSid": "SM1", "Body": "hi"},
            {TWILIO_IDEMPOTENCY_HEADER: "tok-123"},
        )
        assert event.event_id == "SM1"
        assert event.delivery_token == "tok-123"
        assert event.event_type == "message.inbound"

    def test_message_sid_fallback(self):
        event = parse_event("twilio", {"SmsSid": "SM2", "Body": "hi", "SmsStatus": "received"})
        assert event.event_id == "SM2"
        assert event.event_type == "message.inbound"

    def test_status_callback(self):
        event = parse_event("twilio", {"MessageSid": "SM3", "MessageStatus": "delivered"})
        assert event.event_type == "message.status"
        assert event.event_id == "SM3:delivered"

    def test_status_callbacks_for_one_message_are_distinct(self):
        sent = parse_event("twilio", {"MessageSid": "SM3", "MessageStatus": "sent"})
        delivered = parse_event("twilio", {"MessageSid": "SM3", "MessageStatus": "delivered"})
        assert sent.event_id != delivered.event_id

    def test_voice_call(self):
        event = parse_event("twilio", {"CallSid": "CA1", "From": "+1555"})
        assert event.event_id == "CA1"
        assert event.event_type == "voice.call"

    def test_voice_call_status(self):
        event = parse_event("twilio", {"CallSid": "CA1", "CallStatus": "completed"})
        assert event.event_id == "CA1:completed"

    def test_no_id(self):
        assert parse_event("twilio", {"Body": "hi"}).event_id == ""


class TestParseStripeEvent:
    def test_id_and_type(self):
        event = parse_event("stripe", {"id": "evt_1", "type": "invoice.paid"})
        assert (event.event_id, event.event_type) == ("evt_1", "invoice.paid")

    def test_missing_fields(self):
        event = parse_event("stripe", {})
        assert (event.event_id, event.event_type) == ("", "unknown")


class TestSummarize:
    def test_twilio_summary_redacts_sender(self):
        event = parse_event("twilio", {"MessageSid": "SM1", "From": "+15550009876", "Body": "x"})
        summary = summarize(event)
        assert "9876" in summary
        assert "+1555000" not in summary

    def test_stripe_summary(self):
        payload = {"id": "evt_1", "type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}
        assert summarize(parse_event("stripe", payload)) == "charge.refunded object=ch_1"


class TestWebhookDispatcher:
    @pytest.mark.asyncio
    async def test_registered_handler_called(self):
        seen = []

        async def handler(event: WebhookEvent):
            seen.append(event.event_id)
            return {"replied": True}

        dispatcher = WebhookDispatcher()
        dispatcher.register("twilio", handler)
        result = await dispatcher.dispatch(parse_event("twilio", {"MessageSid": "SM1"}))

        assert result == {"replied": True}
        assert seen == ["SM1"]
        assert dispatcher.providers == ["twilio"]

    @pytest.mark.asyncio
    async def test_default_acknowledges(self):
        dispatcher = WebhookDispatcher()
        assert dispatcher.handler_for("stripe") is acknowledge
        result = await dispatcher.dispatch(parse_event("stripe", {"id": "evt_1"}))
        assert result == {"received": True}

    @pytest.mark.asyncio
    async def test_handler_errors_propagate(self):
        async def handler(event):
            raise ConnectionError("sms provider down")

        dispatcher = WebhookDispatcher()
        dispatcher.register("twilio", handler)
        with pytest.raises(ConnectionError):
            await dispatcher.dispatch(parse_event("twilio", {"MessageSid": "SM1"}))
