"""Sanity implementation of SubscriptionRepo."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.db.sanity import SanityClient, parse_datetime, reference, to_iso
from app.models.organization import Subscription

_BY_STRIPE_ID = (
    '*[_type == "subscription" && stripeSubscriptionId == $stripeId][0]'
)
_ACTIVE_FOR_ORG = (
    '*[_type == "subscription" && organization._ref == $orgId'
    ' && status in ["active", "trialing"]] | order(startDate desc)[0]'
)
_LATEST_FOR_ORG = (
    '*[_type == "subscription" && organization._ref == $orgId]'
    " | order(startDate desc)[0]"
)


class SanitySubscriptionRepo:
    """Satisfies the SubscriptionRepo Protocol using Sanity documents."""

    def __init__(self, client: SanityClient) -> None:
        self._client = client

    async def get_by_stripe_id(
        self, stripe_subscription_id: str
    ) -> Subscription | None:
        doc = await self._client.fetch(
            _BY_STRIPE_ID, {"stripeId": stripe_subscription_id}
        )
        return _doc_to_subscription(doc) if doc else None

    async def get_active_for_organization(self, org_id: str) -> Subscription | None:
        doc = await self._client.fetch(_ACTIVE_FOR_ORG, {"orgId": org_id})
        return _doc_to_subscription(doc) if doc else None

    async def get_latest_for_organization(self, org_id: str) -> Subscription | None:
        doc = await self._client.fetch(_LATEST_FOR_ORG, {"orgId": org_id})
        return _doc_to_subscription(doc) if doc else None

    async def add(self, subscription: Subscription) -> Subscription:
        doc = await self._client.create(
            {
                "_id": subscription.id,
                "_type": "subscription",
                "organization": reference(subscription.organization_id),
                "plan": subscription.plan,
                "employeeLimit": subscription.employee_limit,
                "pricePerMonth": subscription.price_per_month,
                "status": subscription.status,
                "stripeSubscriptionId": subscription.stripe_subscription_id,
                "startDate": to_iso(subscription.start_date),
                "endDate": to_iso(subscription.end_date),
            }
        )
        return _doc_to_subscription(doc)

    async def update_status(
        self,
        subscription_id: str,
        *,
        status: str,
        end_date: datetime | None = None,
        cancelled_at: datetime | None = None,
    ) -> Subscription:
        fields: dict[str, Any] = {"status": status}
        if end_date is not None:
            fields["endDate"] = to_iso(end_date)
        if cancelled_at is not None:
            fields["cancelledAt"] = to_iso(cancelled_at)
        doc = await self._client.patch(subscription_id).set(fields).commit()
        return _doc_to_subscription(doc)

    async def update_plan(
        self,
        subscription_id: str,
        *,
        plan: str,
        employee_limit: int,
        price_per_month: float,
    ) -> Subscription:
        doc = (
            await self._client.patch(subscription_id)
            .set(
                {
                    "plan": plan,
                    "employeeLimit": employee_limit,
                    "pricePerMonth": price_per_month,
                }
            )
            .commit()
        )
        return _doc_to_subscription(doc)


def _doc_to_subscription(doc: dict[str, Any]) -> Subscription:
    return Subscription(
        id=doc["_id"],
        organization_id=(doc.get("organization") or {}).get("_ref", ""),
        plan=doc.get("plan", ""),
        employee_limit=doc.get("employeeLimit") or 0,
        price_per_month=doc.get("pricePerMonth") or 0,
        status=doc.get("status", ""),
        stripe_subscription_id=doc.get("stripeSubscriptionId") or "",
        start_date=parse_datetime(doc.get("startDate")),
        end_date=parse_datetime(doc.get("endDate")),
        cancelled_at=parse_datetime(doc.get("cancelledAt")),
    )
