from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol

from app.models.organization import ACCESS_GRANTING_STATUSES, Subscription


class SubscriptionRepo(Protocol):
    async def get_by_stripe_id(
        self, stripe_subscription_id: str
    ) -> Subscription | None: ...
    async def get_active_for_organization(self, org_id: str) -> Subscription | None: ...
    async def get_latest_for_organization(self, org_id: str) -> Subscription | None: ...
    async def add(self, subscription: Subscription) -> Subscription: ...
    async def update_status(
        self,
        subscription_id: str,
        *,
        status: str,
        end_date: datetime | None = None,
        cancelled_at: datetime | None = None,
    ) -> Subscription: ...
    async def update_plan(
        self,
        subscription_id: str,
        *,
        plan: str,
        employee_limit: int,
        price_per_month: float,
    ) -> Subscription: ...


class InMemorySubscriptionRepo:
    def __init__(self) -> None:
        self._by_id: dict[str, Subscription] = {}

    async def get_by_stripe_id(
        self, stripe_subscription_id: str
    ) -> Subscription | None:
        return next(
            (
                s
                for s in self._by_id.values()
                if s.stripe_subscription_id == stripe_subscription_id
            ),
            None,
        )

    async def get_active_for_organization(self, org_id: str) -> Subscription | None:
        return next(
            (
                s
                for s in self._by_id.values()
                if s.organization_id == org_id
                and s.status in ACCESS_GRANTING_STATUSES
            ),
            None,
        )

    async def get_latest_for_organization(self, org_id: str) -> Subscription | None:
        subs = [s for s in self._by_id.values() if s.organization_id == org_id]
        if not subs:
            return None
        # Insertion order stands in for start date when dates are missing
        return subs[-1]

    async def add(self, subscription: Subscription) -> Subscription:
        self._by_id[subscription.id] = subscription
        return subscription

    async def update_status(
        self,
        subscription_id: str,
        *,
        status: str,
        end_date: datetime | None = None,
        cancelled_at: datetime | None = None,
    ) -> Subscription:
        current = self._get(subscription_id)
        updated = replace(
            current,
            status=status,
            end_date=end_date or current.end_date,
            cancelled_at=cancelled_at or current.cancelled_at,
        )
        self._by_id[subscription_id] = updated
        return updated

    async def update_plan(
        self,
        subscription_id: str,
        *,
        plan: str,
        employee_limit: int,
        price_per_month: float,
    ) -> Subscription:
        updated = replace(
            self._get(subscription_id),
            plan=plan,
            employee_limit=employee_limit,
            price_per_month=price_per_month,
        )
        self._by_id[subscription_id] = updated
        return updated

    def _get(self, subscription_id: str) -> Subscription:
        s = self._by_id.get(subscription_id)
        if s is None:
            raise KeyError("subscription not found")
        return s
