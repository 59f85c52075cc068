"""Unit tests for provider callback signatures and payload parsing."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from notification_engine.core.exceptions import SchemaValidationError
from notification_engine.features.notifications.provider_events import (
    compute_signature,
    parse_generic,
    parse_sendgrid,
    parse_twilio,
    verify_signature,
)
from notification_engine.features.notifications.state_machine import DeliveryEvent

BODY = b'[{"sg_message_id": "abc.filter0001", "event": "delivered"}]'


@pytest.mark.unit
class TestSignatures:
    def test_valid_signature(self):
        signature = compute_signature("secret", BODY)
        assert verify_signature("secret", BODY, signature)

    def test_prefixed_signature_selects_algorithm(self):
        signature = compute_signature("secret", BODY, "sha1")
        assert verify_signature("secret", BODY, f"sha1={signature}")
        assert not verify_signature("secret", BODY, f"sha256={signature}")

    def test_uppercase_hex_accepted(self):
        assert verify_signature("secret", BODY, compute_signature("secret", BODY).upper())

    @pytest.mark.parametrize(
        "signature",
        ["", "deadbeef", "md5=abc"],
    )
    def test_invalid_signatures(self, signature):
        assert not verify_signature("secret", BODY, signature)

    def test_tampered_body_rejected(self):
        signature = compute_signature("secret", BODY)
        assert not verify_signature("secret", BODY + b" ", signature)


@pytest.mark.unit
class TestParsers:
    def test_sendgrid_batch(self):
        payload = json.dumps(
            [
                {"sg_message_id": "m1.filter0001.1", "event": "delivered", "timestamp": 1736164800},
                {"sg_message_id": "m2", "event": "spamreport"},
                {"sg_message_id": "m3", "event": "processed"},
                {"event": "open"},
            ]
        ).encode()

        events = parse_sendgrid(payload)

        assert [e.provider_message_id for e in events] == ["m1", "m2", "m3"]
        assert events[0].event == DeliveryEvent.DELIVERED
        assert events[0].occurred_at == datetime(2025, 1, 6, 12, 0, tzinfo=UTC)
        assert events[1].event == DeliveryEvent.COMPLAINT
        assert events[2].event is None

    def test_sendgrid_single_object(self):
        events = parse_sendgrid(b'{"sg_message_id": "m1", "event": "bounce"}')
        assert events[0].event == DeliveryEvent.BOUNCE

    def test_sendgrid_invalid_json(self):
        with pytest.raises(SchemaValidationError, match="not valid JSON"):
            parse_sendgrid(b"{nope")

    def test_twilio_form(self):
        events = parse_twilio(b"MessageSid=SM123&MessageStatus=undelivered&ErrorCode=30003")

        assert len(events) == 1
        assert events[0].provider_message_id == "SM123"
        assert events[0].event == DeliveryEvent.BOUNCE
        assert events[0].raw["ErrorCode"] == "30003"

    def test_twilio_without_sid(self):
        assert parse_twilio(b"MessageStatus=delivered") == []

    def test_generic_uses_engine_event_names(self):
        payload = b'[{"message_id": "x1", "event": "click", "timestamp": "2025-01-06T12:00:00Z"}]'
        events = parse_generic(payload)

        assert events[0].event == DeliveryEvent.CLICK
        assert events[0].occurred_at == datetime(2025, 1, 6, 12, 0, tzinfo=UTC)

    def test_generic_unknown_event_is_ignored(self):
        assert parse_generic(b'{"message_id": "x1", "event": "teleported"}')[0].event is None

    def test_generic_rejects_internal_events(self):
        assert parse_generic(b'{"message_id": "x1", "event": "cancel"}')[0].event is None
