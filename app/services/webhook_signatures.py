"""Webhook signature verification for both event sources.

Both verifiers take the raw request body.  Re-serialising parsed JSON
changes whitespace and key order and breaks the signature, which is why
the webhook routes read ``await request.body()`` rather than declaring a
Pydantic body.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import stripe
from svix.webhooks import Webhook, WebhookVerificationError

logger = logging.getLogger(__name__)

SVIX_HEADERS = ("svix-id", "svix-timestamp", "svix-signature")


class WebhookSignatureError(Exception):
    """Missing headers, missing secret, or a signature that does not verify."""


def verify_identity_event(
    payload: bytes, headers: Mapping[str, str], secret: str | None
) -> dict[str, Any]:
    """Verify a Clerk (Svix-signed) delivery and return the parsed event."""
    if not secret:
        raise WebhookSignatureError("identity webhook secret is not configured")
    svix_headers = {name: headers.get(name) for name in SVIX_HEADERS}
    missing = [name for name, value in svix_headers.items() if not value]
    if missing:
        raise WebhookSignatureError(f"missing headers: {', '.join(missing)}")
    try:
        return Webhook(secret).verify(payload, svix_headers)
    except WebhookVerificationError as e:
        raise WebhookSignatureError(str(e)) from e


def verify_payment_event(
    payload: bytes, signature: str | None, secret: str | None
) -> dict[str, Any]:
    """Verify a Stripe delivery and return the parsed event as plain dicts."""
    if not secret:
        raise WebhookSignatureError("payment webhook secret is not configured")
    if not signature:
        raise WebhookSignatureError("missing stripe-signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e
    except ValueError as e:
        raise WebhookSignatureError(f"invalid payload: {e}") from e
    # construct_event returns a StripeObject; plain dicts keep the
    # reconciler independent of the SDK's object model
    return json.loads(payload)
