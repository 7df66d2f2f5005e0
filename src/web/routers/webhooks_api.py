"""
Payment Webhooks.

Square signs each notification with HMAC-SHA256 over the notification
URL followed by the raw body. Deliveries are stored once per event id.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from config.settings import get_settings
from database.connection import get_session
from integrations.payments import (
    SIGNATURE_HEADER,
    WebhookPayloadError,
    handle_payment_event,
    verify_square_signature,
)
from web.helpers.error_responses import ErrorCode, raise_api_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


@router.post("/square")
async def square_webhook(request: Request, session: Session = Depends(get_session)):
    body = await request.body()
    payments = get_settings().payments
    notification_url = payments.webhook_notification_url or str(request.url)

    if not verify_square_signature(
        body,
        request.headers.get(SIGNATURE_HEADER),
        payments.webhook_signature_key,
        notification_url,
    ):
        logger.warning("Rejected Square webhook with invalid signature")
        raise_api_error(ErrorCode.INVALID_SIGNATURE)

    try:
        event = json.loads(body)
    except ValueError:
        # Also covers bodies that are not UTF-8
        raise_api_error(ErrorCode.INVALID_INPUT, "Webhook body is not valid JSON")

    try:
        record, created = await asyncio.to_thread(handle_payment_event, session, event)
    except WebhookPayloadError as e:
        raise_api_error(ErrorCode.INVALID_INPUT, str(e))

    return {"received": True, "event_id": record.provider_event_id, "duplicate": not created}
