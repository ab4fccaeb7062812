"""Provider webhook endpoints.

Status codes are the contract with the providers' retry logic:

  400  signature did not verify     provider will not fix this by retrying
  200  processed, skipped, or duplicate
  500  a handler failed             provider redelivers later

The raw body is read before anything else; see
app/services/webhook_signatures.py for why it is never parsed first.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from app.core.config import SETTINGS
from app.core.metrics import WEBHOOK_EVENTS
from app.services.reconciliation import IDENTITY_SOURCE, PAYMENT_SOURCE, reconciler
from app.services.webhook_signatures import (
    WebhookSignatureError,
    verify_identity_event,
    verify_payment_event,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    reason: str | None = None


def _rejected(source: str, error: WebhookSignatureError) -> HTTPException:
    logger.warning("Webhook rejected: %s", error, extra={"source": source})
    WEBHOOK_EVENTS.labels(
        source=source, event_type="unknown", outcome="rejected"
    ).inc()
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Invalid webhook signature",
    )


async def _apply(source: str, delivery_id: str | None, event: dict) -> WebhookAck:
    try:
        outcome = await reconciler.process(source, delivery_id, event)
    except Exception:
        logger.exception(
            "Webhook processing failed",
            extra={
                "source": source,
                "event_id": delivery_id,
                "event_type": event.get("type"),
            },
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from None
    return WebhookAck(outcome=outcome.outcome, reason=outcome.reason)


@router.post("/clerk", response_model=WebhookAck)
async def clerk_webhook(request: Request) -> WebhookAck:
    payload = await request.body()
    try:
        event = verify_identity_event(
            payload, request.headers, SETTINGS.clerk_webhook_secret
        )
    except WebhookSignatureError as e:
        raise _rejected(IDENTITY_SOURCE, e) from None
    return await _apply(IDENTITY_SOURCE, request.headers.get("svix-id"), event)


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request) -> WebhookAck:
    payload = await request.body()
    try:
        event = verify_payment_event(
            payload,
            request.headers.get("stripe-signature"),
            SETTINGS.stripe_webhook_secret,
        )
    except WebhookSignatureError as e:
        raise _rejected(PAYMENT_SOURCE, e) from None
    return await _apply(PAYMENT_SOURCE, event.get("id"), event)
