from __future__ import annotations

import sys
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.course import Course
from app.models.identity import ExternalOrganization, ExternalUser
from app.models.organization import Organization, Subscription
from app.models.student import Student
from app.repos.record_store import record_store
from app.services import session_tokens
from app.services.identity_provider import identity_provider
from app.services.mailer import mailer
from app.services.payment_provider import payment_provider
from app.services.webhook_ledger import webhook_ledger

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_record_store() -> None:
    """Clear every in-memory repo between tests."""
    for repo in (
        record_store.students,
        record_store.organizations,
        record_store.subscriptions,
        record_store.enrollments,
        record_store.org_courses,
        record_store.courses,
    ):
        repo._by_id.clear()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_providers() -> None:
    """Clear the in-memory identity, payment and mail adapters."""
    identity_provider.reset()  # type: ignore[attr-defined]
    payment_provider.reset()  # type: ignore[attr-defined]
    mailer.reset()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_webhook_ledger() -> None:
    if hasattr(webhook_ledger, "_seen"):
        webhook_ledger._seen.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(user_id: str = "user_test") -> str:
    """Create a valid RS256 session token for testing."""
    return session_tokens.create_session_token(sub=user_id)


def auth(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user_id)}"}


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------


def seed_user(
    user_id: str, email: str | None = None, first_name: str = "Test"
) -> ExternalUser:
    """Register a user with the in-memory identity provider."""
    user = ExternalUser(
        id=user_id,
        email=email if email is not None else f"{user_id}@example.com",
        first_name=first_name,
        last_name="User",
    )
    identity_provider.add_user(user)  # type: ignore[attr-defined]
    return user


def seed_student(user_id: str, email: str | None = None) -> Student:
    """Register a user and store its Student record."""
    user = seed_user(user_id, email)
    assert user.email is not None
    student = Student.new(
        clerk_id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
    )
    record_store.students._by_id[student.id] = student  # type: ignore[attr-defined]
    return student


def seed_org(
    clerk_org_id: str = "org_acme",
    name: str = "Acme",
    status: str = "inactive",
) -> Organization:
    """Register an organization with the identity provider and the record store."""
    identity_provider.add_organization(  # type: ignore[attr-defined]
        ExternalOrganization(id=clerk_org_id, name=name)
    )
    org = Organization.new(
        name=name,
        clerk_organization_id=clerk_org_id,
        billing_email=f"billing@{name.lower()}.example",
    )
    if status != "inactive":
        org = replace(org, subscription_status=status)
    record_store.organizations._by_id[org.id] = org  # type: ignore[attr-defined]
    return org


def seed_subscription(
    org: Organization,
    *,
    status: str = "active",
    plan: str = "professional",
    stripe_subscription_id: str = "sub_test_1",
) -> Subscription:
    sub = Subscription(
        id=f"subscription-{stripe_subscription_id}",
        organization_id=org.id,
        plan=plan,
        employee_limit=50,
        price_per_month=999,
        status=status,
        stripe_subscription_id=stripe_subscription_id,
        start_date=datetime.now(UTC),
    )
    record_store.subscriptions._by_id[sub.id] = sub  # type: ignore[attr-defined]
    return sub


def seed_membership(clerk_org_id: str, user_id: str, role: str = "org:member") -> None:
    identity_provider.add_membership(clerk_org_id, user_id, role)  # type: ignore[attr-defined]


def seed_course(
    course_id: str = "course-prompting",
    *,
    price: float | None = 49,
    is_free: bool = False,
    **kwargs,
) -> Course:
    course = Course(
        id=course_id,
        title=kwargs.pop("title", "Prompt Engineering"),
        slug=kwargs.pop("slug", "prompt-engineering"),
        price=price,
        is_free=is_free,
        **kwargs,
    )
    record_store.courses.add(course)  # type: ignore[attr-defined]
    return course
