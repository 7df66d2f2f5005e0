"""
Tests for Square payment webhooks.
"""

import json

import pytest

from database.models import PaymentEvent
from integrations.payments import (
    SIGNATURE_HEADER,
    WebhookPayloadError,
    generate_square_signature,
    handle_payment_event,
    verify_square_signature,
)

SIGNATURE_KEY = "test-square-signature-key"
NOTIFICATION_URL = "http://localhost:8000/api/webhooks/square"


def _signed(payload):
    body = json.dumps(payload).encode("utf-8")
    signature = generate_square_signature(body, SIGNATURE_KEY, NOTIFICATION_URL)
    return body, {SIGNATURE_HEADER: signature, "Content-Type": "application/json"}


class TestSignatures:

    def test_round_trip(self):
        body = b'{"event_id": "evt_1"}'
        signature = generate_square_signature(body, SIGNATURE_KEY, NOTIFICATION_URL)
        assert verify_square_signature(body, signature, SIGNATURE_KEY, NOTIFICATION_URL)

    def test_url_is_part_of_signature(self):
        body = b'{"event_id": "evt_1"}'
        signature = generate_square_signature(body, SIGNATURE_KEY, NOTIFICATION_URL)
        assert not verify_square_signature(body, signature, SIGNATURE_KEY, "https://other.test/hook")

    @pytest.mark.parametrize("signature,key", [(None, SIGNATURE_KEY), ("abc", None), ("abc", SIGNATURE_KEY)])
    def test_rejected(self, signature, key):
        assert not verify_square_signature(b"{}", signature, key, NOTIFICATION_URL)


class TestEventHandling:

    def test_stored_once(self, session):
        event = {"event_id": "evt_1", "type": "payment.updated", "data": {"id": "pay_1"}}

        record, created = handle_payment_event(session, event)
        again, created_again = handle_payment_event(session, event)

        assert created and not created_again
        assert again.id == record.id
        assert record.payload["data"] == {"id": "pay_1"}
        assert session.query(PaymentEvent).count() == 1

    def test_requires_id_and_type(self, session):
        with pytest.raises(WebhookPayloadError):
            handle_payment_event(session, {"type": "payment.updated"})


class TestWebhookApi:

    def test_valid_delivery_and_redelivery(self, client):
        body, headers = _signed({"event_id": "evt_9", "type": "payment.created"})

        first = client.post("/api/webhooks/square", content=body, headers=headers)
        assert first.status_code == 200
        assert first.json() == {"received": True, "event_id": "evt_9", "duplicate": False}

        second = client.post("/api/webhooks/square", content=body, headers=headers)
        assert second.json()["duplicate"] is True

    def test_bad_signature(self, client):
        body, headers = _signed({"event_id": "evt_9", "type": "payment.created"})
        headers[SIGNATURE_HEADER] = "forged"

        response = client.post("/api/webhooks/square", content=body, headers=headers)

        assert response.status_code == 401
        assert response.json()["detail"]["error_code"] == "INVALID_SIGNATURE"

    def test_missing_fields(self, client):
        body, headers = _signed({"type": "payment.created"})
        assert client.post("/api/webhooks/square", content=body, headers=headers).status_code == 400

    def test_invalid_json(self, client):
        body = b"not json"
        headers = {SIGNATURE_HEADER: generate_square_signature(body, SIGNATURE_KEY, NOTIFICATION_URL)}
        assert client.post("/api/webhooks/square", content=body, headers=headers).status_code == 400

    def test_body_that_is_not_utf8(self, client):
        body = b'{"event_id": "\xff"}'
        headers = {SIGNATURE_HEADER: generate_square_signature(body, SIGNATURE_KEY, NOTIFICATION_URL)}

        response = client.post("/api/webhooks/square", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["detail"]["error_code"] == "INVALID_INPUT"
