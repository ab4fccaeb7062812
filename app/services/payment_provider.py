"""Payment provider adapter (Stripe).

The stripe SDK is synchronous; every call is pushed onto a worker thread
with asyncio.to_thread so a slow Stripe response never blocks the event
loop.  The API key is passed per call instead of through the global
``stripe.api_key`` so two providers in one process never interfere.

Amounts cross this boundary in the smallest currency unit (cents), the
way Stripe expects them.  Converting from the dollar prices stored on
courses and plans is the caller's job.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

import stripe

from app.core.config import SETTINGS
from app.models.payment import CheckoutSession, ExternalSubscription

logger = logging.getLogger(__name__)

CURRENCY = "usd"


class PaymentProviderError(Exception):
    """A payment provider call failed."""


@runtime_checkable
class PaymentProvider(Protocol):
    async def create_checkout_session(
        self,
        *,
        mode: str,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_id: str | None = None,
        customer_email: str | None = None,
        subscription_metadata: dict[str, str] | None = None,
    ) -> CheckoutSession: ...

    async def create_customer(
        self, *, email: str, name: str, metadata: dict[str, str]
    ) -> str: ...

    async def create_price(
        self,
        *,
        unit_amount: int,
        product_name: str,
        recurring_interval: str | None,
        metadata: dict[str, str],
    ) -> str: ...

    async def retrieve_subscription(
        self, subscription_id: str
    ) -> ExternalSubscription: ...

    async def update_subscription(
        self, subscription_id: str, *, price_id: str, metadata: dict[str, str]
    ) -> ExternalSubscription: ...

    async def cancel_subscription(
        self, subscription_id: str, *, at_period_end: bool = True
    ) -> ExternalSubscription: ...

    async def create_billing_portal_session(
        self, *, customer_id: str, return_url: str
    ) -> str: ...

    async def find_checkout_session_id(self, payment_intent_id: str) -> str | None: ...


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryPaymentProvider:
    """Records every call so tests can assert on what would have been sent."""

    def __init__(self) -> None:
        self.sessions: dict[str, CheckoutSession] = {}
        self.session_params: dict[str, dict[str, Any]] = {}
        self.customers: dict[str, dict[str, Any]] = {}
        self.prices: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, ExternalSubscription] = {}
        # payment_intent id -> checkout session id
        self.payment_intents: dict[str, str] = {}
        self.fail_with: PaymentProviderError | None = None

    def reset(self) -> None:
        self.sessions.clear()
        self.session_params.clear()
        self.customers.clear()
        self.prices.clear()
        self.subscriptions.clear()
        self.payment_intents.clear()
        self.fail_with = None

    def add_subscription(self, subscription: ExternalSubscription) -> None:
        self.subscriptions[subscription.id] = subscription

    async def create_checkout_session(
        self,
        *,
        mode: str,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_id: str | None = None,
        customer_email: str | None = None,
        subscription_metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        self._check_available()
        session_id = f"cs_test_{uuid4().hex}"
        session = CheckoutSession(
            id=session_id,
            url=f"https://checkout.stripe.com/c/pay/{session_id}",
            mode=mode,
            metadata=dict(metadata),
        )
        self.sessions[session_id] = session
        self.session_params[session_id] = {
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer": customer_id,
            "customer_email": customer_email,
            "subscription_metadata": subscription_metadata,
        }
        return session

    async def create_customer(
        self, *, email: str, name: str, metadata: dict[str, str]
    ) -> str:
        self._check_available()
        customer_id = f"cus_{uuid4().hex[:14]}"
        self.customers[customer_id] = {
            "email": email,
            "name": name,
            "metadata": metadata,
        }
        return customer_id

    async def create_price(
        self,
        *,
        unit_amount: int,
        product_name: str,
        recurring_interval: str | None,
        metadata: dict[str, str],
    ) -> str:
        self._check_available()
        price_id = f"price_{uuid4().hex[:14]}"
        self.prices[price_id] = {
            "unit_amount": unit_amount,
            "product_name": product_name,
            "recurring_interval": recurring_interval,
            "metadata": metadata,
        }
        return price_id

    async def retrieve_subscription(self, subscription_id: str) -> ExternalSubscription:
        self._check_available()
        sub = self.subscriptions.get(subscription_id)
        if sub is None:
            raise PaymentProviderError(f"No such subscription: '{subscription_id}'")
        return sub

    async def update_subscription(
        self, subscription_id: str, *, price_id: str, metadata: dict[str, str]
    ) -> ExternalSubscription:
        sub = await self.retrieve_subscription(subscription_id)
        updated = replace(sub, metadata={**sub.metadata, **metadata})
        self.subscriptions[subscription_id] = updated
        return updated

    async def cancel_subscription(
        self, subscription_id: str, *, at_period_end: bool = True
    ) -> ExternalSubscription:
        sub = await self.retrieve_subscription(subscription_id)
        if at_period_end:
            updated = replace(
                sub, cancel_at=sub.current_period_end, cancel_at_period_end=True
            )
        else:
            updated = replace(sub, status="canceled")
        self.subscriptions[subscription_id] = updated
        return updated

    async def create_billing_portal_session(
        self, *, customer_id: str, return_url: str
    ) -> str:
        self._check_available()
        return f"https://billing.stripe.com/p/session/test_{customer_id}"

    async def find_checkout_session_id(self, payment_intent_id: str) -> str | None:
        self._check_available()
        return self.payment_intents.get(payment_intent_id)

    def _check_available(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with


# ---------------------------------------------------------------------------
# Stripe implementation
# ---------------------------------------------------------------------------


class StripePaymentProvider:
    """Satisfies the PaymentProvider Protocol with the stripe SDK."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def _call(self, fn, /, **params: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, api_key=self._api_key, **params)
        except stripe.StripeError as e:
            logger.error(
                "Stripe call %s failed: %s", getattr(fn, "__qualname__", fn), e
            )
            raise PaymentProviderError(str(e)) from e

    async def create_checkout_session(
        self,
        *,
        mode: str,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_id: str | None = None,
        customer_email: str | None = None,
        subscription_metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        params: dict[str, Any] = {
            "mode": mode,
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email
        if subscription_metadata:
            params["subscription_data"] = {"metadata": subscription_metadata}

        session = await self._call(stripe.checkout.Session.create, **params)
        return CheckoutSession(
            id=session.id, url=session.url, mode=mode, metadata=dict(metadata)
        )

    async def create_customer(
        self, *, email: str, name: str, metadata: dict[str, str]
    ) -> str:
        customer = await self._call(
            stripe.Customer.create, email=email, name=name, metadata=metadata
        )
        return customer.id

    async def create_price(
        self,
        *,
        unit_amount: int,
        product_name: str,
        recurring_interval: str | None,
        metadata: dict[str, str],
    ) -> str:
        params: dict[str, Any] = {
            "unit_amount": unit_amount,
            "currency": CURRENCY,
            "product_data": {"name": product_name},
            "metadata": metadata,
        }
        if recurring_interval:
            params["recurring"] = {"interval": recurring_interval}
        price = await self._call(stripe.Price.create, **params)
        return price.id

    async def retrieve_subscription(self, subscription_id: str) -> ExternalSubscription:
        sub = await self._call(stripe.Subscription.retrieve, id=subscription_id)
        return _to_external(sub)

    async def update_subscription(
        self, subscription_id: str, *, price_id: str, metadata: dict[str, str]
    ) -> ExternalSubscription:
        current = await self.retrieve_subscription(subscription_id)
        if current.item_id is None:
            raise PaymentProviderError(f"subscription {subscription_id} has no items")
        sub = await self._call(
            functools.partial(stripe.Subscription.modify, subscription_id),
            items=[{"id": current.item_id, "price": price_id}],
            metadata=metadata,
            proration_behavior="create_prorations",
        )
        return _to_external(sub)

    async def cancel_subscription(
        self, subscription_id: str, *, at_period_end: bool = True
    ) -> ExternalSubscription:
        if at_period_end:
            sub = await self._call(
                functools.partial(stripe.Subscription.modify, subscription_id),
                cancel_at_period_end=True,
            )
        else:
            sub = await self._call(
                functools.partial(stripe.Subscription.cancel, subscription_id)
            )
        return _to_external(sub)

    async def create_billing_portal_session(
        self, *, customer_id: str, return_url: str
    ) -> str:
        session = await self._call(
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return session.url

    async def find_checkout_session_id(self, payment_intent_id: str) -> str | None:
        sessions = await self._call(
            stripe.checkout.Session.list, payment_intent=payment_intent_id, limit=1
        )
        if not sessions.data:
            return None
        return sessions.data[0].id

    async def ping(self) -> None:
        await self._call(stripe.Balance.retrieve)


def _timestamp(value: int | None) -> datetime | None:
    return datetime.fromtimestamp(value, tz=UTC) if value else None


def _to_external(sub: stripe.Subscription) -> ExternalSubscription:
    # SDK objects are not dicts; flatten to the webhook payload shape
    return subscription_from_payload(sub.to_dict())


def subscription_from_payload(sub: dict[str, Any]) -> ExternalSubscription:
    """Build an ExternalSubscription from a Stripe subscription payload.

    Takes the plain-dict form a webhook delivers.  Newer API versions
    report the billing period on the subscription item rather than the
    subscription; both locations are read.
    """
    items = (sub.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    return ExternalSubscription(
        id=sub["id"],
        status=sub.get("status", ""),
        customer_id=sub.get("customer"),
        item_id=first_item.get("id"),
        current_period_start=_timestamp(
            sub.get("current_period_start") or first_item.get("current_period_start")
        ),
        current_period_end=_timestamp(
            sub.get("current_period_end") or first_item.get("current_period_end")
        ),
        cancel_at=_timestamp(sub.get("cancel_at")),
        cancel_at_period_end=bool(sub.get("cancel_at_period_end")),
        metadata=dict(sub.get("metadata") or {}),
    )


# ---------------------------------------------------------------------------
# Module-level singleton: Stripe when configured, else in-memory
# ---------------------------------------------------------------------------

if SETTINGS.stripe_secret_key:
    payment_provider: PaymentProvider = StripePaymentProvider(
        SETTINGS.stripe_secret_key
    )
else:
    payment_provider = InMemoryPaymentProvider()
