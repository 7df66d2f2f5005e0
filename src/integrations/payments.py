"""
Payment provider webhooks (Square).

Square signs each notification as
    base64(HMAC-SHA256(signature_key, notification_url + raw_body))
and sends it in the x-square-hmacsha256-signature header.
"""

import base64
import hashlib
import hmac
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from database.models import PaymentEvent

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-square-hmacsha256-signature"


class WebhookPayloadError(Exception):
    """Raised when a webhook body lacks required fields."""
    pass


def generate_square_signature(body: bytes, signature_key: str, notification_url: str) -> str:
    """HMAC-SHA256 over notification URL + body, base64 encoded."""
    digest = hmac.new(
        signature_key.encode("utf-8"),
        notification_url.encode("utf-8") + body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_square_signature(
    body: bytes,
    signature: Optional[str],
    signature_key: Optional[str],
    notification_url: str,
) -> bool:
    """Constant-time comparison against the expected signature."""
    if not signature or not signature_key:
        return False
    expected = generate_square_signature(body, signature_key, notification_url)
    return hmac.compare_digest(expected, signature)


def handle_payment_event(session: Session, event: Dict[str, Any]) -> Tuple[PaymentEvent, bool]:
    """
    Store a webhook event once.

    Returns:
        (event record, created). created is False for a redelivery.

    Raises:
        WebhookPayloadError: Missing event_id or type.
    """
    event_id = event.get("event_id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise WebhookPayloadError("Webhook payload requires event_id and type")

    existing = session.execute(
        select(PaymentEvent).where(PaymentEvent.provider_event_id == event_id)
    ).scalars().first()
    if existing is not None:
        logger.info(f"Duplicate payment webhook ignored: {event_id}")
        return existing, False

    record = PaymentEvent(
        provider="square",
        provider_event_id=event_id,
        event_type=event_type,
        payload=event,
    )
    session.add(record)
    session.flush()

    logger.info(f"Payment webhook stored: {event_type} ({event_id})")
    return record, True
