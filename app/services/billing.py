"""Organization subscription billing.

Checkout creates the Stripe customer (once), a monthly price sized to the
chosen plan, and a subscription-mode Checkout Session.  Nothing local
changes at that point: the organization stays ``inactive`` until the
checkout.session.completed webhook writes the Subscription record (see
app/services/reconciliation.py).  The metadata attached here is what
that webhook uses to find the organization again.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from app.core.config import SETTINGS
from app.models.organization import (
    SUBSCRIPTION_PLANS,
    Organization,
    Subscription,
    SubscriptionPlan,
)
from app.models.payment import CheckoutSession
from app.repos.record_store import RecordStore, record_store
from app.services.organizations import OrganizationNotFoundError
from app.services.payment_provider import PaymentProvider, payment_provider, to_cents

logger = logging.getLogger(__name__)


class BillingError(ValueError):
    """The request is invalid for the organization's plan or seats."""


class BillingConflictError(Exception):
    """The organization's billing state does not allow the operation."""


class BillingService:
    def __init__(
        self, store: RecordStore, payments: PaymentProvider, *, base_url: str
    ) -> None:
        self._store = store
        self._payments = payments
        self._base_url = base_url

    async def create_subscription_checkout(
        self,
        clerk_organization_id: str,
        *,
        user_id: str,
        plan_id: str,
        employee_count: int,
    ) -> CheckoutSession:
        org = await self._org(clerk_organization_id)
        plan = _plan(plan_id)
        _check_seats(plan, employee_count)

        if await self._store.subscriptions.get_active_for_organization(org.id):
            raise BillingConflictError(
                "organization already has an active subscription"
            )

        customer_id = org.stripe_customer_id
        if not customer_id:
            customer_id = await self._payments.create_customer(
                email=org.billing_email,
                name=org.name,
                metadata={
                    "organizationId": org.id,
                    "clerkOrgId": org.clerk_organization_id,
                },
            )
            await self._store.organizations.set_stripe_customer(org.id, customer_id)
            logger.info("Created billing customer for organization=%s", org.id)

        price_id = await self._monthly_price(plan, org.name)
        metadata = {
            "organizationId": org.id,
            "userId": user_id,
            "planId": plan.id,
            "employeeLimit": str(employee_count),
        }
        billing_page = f"{self._base_url}/dashboard/organization/billing"
        session = await self._payments.create_checkout_session(
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=(
                f"{billing_page}?success=true&session_id={{CHECKOUT_SESSION_ID}}"
            ),
            cancel_url=f"{billing_page}?canceled=true",
            metadata=metadata,
            customer_id=customer_id,
            subscription_metadata=metadata,
        )
        logger.info(
            "Subscription checkout started organization=%s plan=%s seats=%d",
            org.id,
            plan.id,
            employee_count,
        )
        return session

    async def change_plan(
        self, clerk_organization_id: str, *, plan_id: str, employee_count: int
    ) -> Subscription:
        org = await self._org(clerk_organization_id)
        plan = _plan(plan_id)
        _check_seats(plan, employee_count)
        current = await self._active_subscription(org.id)

        price_id = await self._monthly_price(plan, org.name)
        await self._payments.update_subscription(
            current.stripe_subscription_id,
            price_id=price_id,
            metadata={"planId": plan.id, "employeeLimit": str(employee_count)},
        )
        updated = await self._store.subscriptions.update_plan(
            current.id,
            plan=plan.id,
            employee_limit=employee_count,
            price_per_month=plan.price_per_month,
        )
        await self._store.organizations.set_employee_limit(org.id, employee_count)
        logger.info("Organization %s moved to plan=%s", org.id, plan.id)
        return updated

    async def cancel(
        self, clerk_organization_id: str, *, at_period_end: bool = True
    ) -> Subscription:
        org = await self._org(clerk_organization_id)
        current = await self._active_subscription(org.id)

        external = await self._payments.cancel_subscription(
            current.stripe_subscription_id, at_period_end=at_period_end
        )
        # Provider first: a failure here leaves local state untouched
        cancelled = await self._store.subscriptions.update_status(
            current.id,
            status="cancelled",
            end_date=external.current_period_end,
            cancelled_at=datetime.now(UTC),
        )
        await self._store.organizations.set_subscription_state(
            org.id, status="cancelled", end_date=external.current_period_end
        )
        logger.info(
            "Organization %s cancelled subscription at_period_end=%s",
            org.id,
            at_period_end,
        )
        return cancelled

    async def billing_portal_url(self, clerk_organization_id: str) -> str:
        org = await self._org(clerk_organization_id)
        if not org.stripe_customer_id:
            raise BillingConflictError("organization has no billing account yet")
        return await self._payments.create_billing_portal_session(
            customer_id=org.stripe_customer_id,
            return_url=f"{self._base_url}/dashboard/organization/subscription",
        )

    async def update_employee_limit(
        self, clerk_organization_id: str, employee_limit: int
    ) -> None:
        org = await self._org(clerk_organization_id)
        if employee_limit < 1:
            raise BillingError("employee limit must be at least 1")

        subscription = await self._store.subscriptions.get_active_for_organization(
            org.id
        )
        if subscription is not None and employee_limit > subscription.employee_limit:
            raise BillingError(
                f"employee limit exceeds the {subscription.employee_limit} seats "
                f"of the {subscription.plan} subscription"
            )
        members = await self._store.students.list_by_organization(org.id)
        if employee_limit < len(members):
            raise BillingError(
                f"organization already has {len(members)} members"
            )
        await self._store.organizations.set_employee_limit(org.id, employee_limit)

    # --- helpers ---

    async def _org(self, clerk_organization_id: str) -> Organization:
        org = await self._store.organizations.get_by_clerk_id(clerk_organization_id)
        if org is None:
            raise OrganizationNotFoundError(
                f"organization {clerk_organization_id} not found"
            )
        return org

    async def _active_subscription(self, org_id: str) -> Subscription:
        current = await self._store.subscriptions.get_active_for_organization(org_id)
        if current is None or not current.stripe_subscription_id:
            raise BillingConflictError("organization has no active subscription")
        return current

    async def _monthly_price(self, plan: SubscriptionPlan, org_name: str) -> str:
        return await self._payments.create_price(
            unit_amount=to_cents(plan.price_per_month),
            product_name=f"{plan.name} - {org_name}",
            recurring_interval="month",
            metadata={"planId": plan.id},
        )


def _plan(plan_id: str) -> SubscriptionPlan:
    plan = SUBSCRIPTION_PLANS.get(plan_id)
    if plan is None:
        raise BillingError(
            f"plan must be one of {', '.join(SUBSCRIPTION_PLANS)} (got {plan_id!r})"
        )
    return plan


def _check_seats(plan: SubscriptionPlan, employee_count: int) -> None:
    if employee_count < 1:
        raise BillingError("employee count must be at least 1")
    if employee_count > plan.employee_limit:
        raise BillingError(
            f"{plan.name} allows at most {plan.employee_limit} employees"
        )


billing_service = BillingService(
    record_store, payment_provider, base_url=SETTINGS.base_url
)
