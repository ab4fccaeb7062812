from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

# Organization.subscription_status / Subscription.status values that grant
# platform-wide access.  Both records must agree before access is given.
ACCESS_GRANTING_STATUSES = frozenset({"active", "trialing"})


@dataclass(frozen=True, slots=True)
class Organization:
    id: str
    name: str
    clerk_organization_id: str
    billing_email: str
    subscription_status: str = "inactive"  # inactive|active|trialing|cancelled|expired
    employee_limit: int = 10
    stripe_customer_id: str | None = None
    subscription_end_date: datetime | None = None
    created_at: datetime | None = None

    @staticmethod
    def new(
        *, name: str, clerk_organization_id: str, billing_email: str
    ) -> Organization:
        # No trial: access stays off until a paid subscription is recorded
        return Organization(
            id=f"organization-{uuid4()}",
            name=name,
            clerk_organization_id=clerk_organization_id,
            billing_email=billing_email,
            created_at=datetime.now(UTC),
        )


@dataclass(frozen=True, slots=True)
class Subscription:
    id: str
    organization_id: str
    plan: str  # starter|professional|enterprise
    employee_limit: int
    price_per_month: float
    status: str  # active|trialing|cancelled|expired
    stripe_subscription_id: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    cancelled_at: datetime | None = None

    def grants_access(self) -> bool:
        return self.status in ACCESS_GRANTING_STATUSES and bool(
            self.stripe_subscription_id
        )


@dataclass(frozen=True, slots=True)
class OrganizationCourse:
    """One-time organization-wide unlock of a single course."""

    id: str
    organization_id: str
    course_id: str
    purchased_by: str  # student record id
    amount: float
    payment_id: str
    purchased_at: datetime
    is_active: bool = True
    refunded_at: datetime | None = None

    @staticmethod
    def new(
        *,
        organization_id: str,
        course_id: str,
        purchased_by: str,
        amount: float,
        payment_id: str,
    ) -> OrganizationCourse:
        return OrganizationCourse(
            id=f"organizationCourse-{uuid4()}",
            organization_id=organization_id,
            course_id=course_id,
            purchased_by=purchased_by,
            amount=amount,
            payment_id=payment_id,
            purchased_at=datetime.now(UTC),
        )


@dataclass(frozen=True, slots=True)
class SubscriptionPlan:
    id: str
    name: str
    price_per_month: int  # USD
    employee_limit: int


SUBSCRIPTION_PLANS: dict[str, SubscriptionPlan] = {
    "starter": SubscriptionPlan("starter", "Starter Plan", 299, 10),
    "professional": SubscriptionPlan("professional", "Professional Plan", 999, 50),
    "enterprise": SubscriptionPlan("enterprise", "Enterprise Plan", 2999, 500),
}
