from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.models.identity import ExternalUser
from app.models.organization import Organization, Subscription
from app.models.payment import ExternalSubscription
from app.models.student import Student
from app.repos.record_store import RecordStore, in_memory_record_store
from app.services.identity_provider import IdentityProviderError, InMemoryIdentityProvider
from app.services.payment_provider import InMemoryPaymentProvider
from app.services.reconciliation import EventReconciler
from app.services.webhook_ledger import InMemoryWebhookLedger

PERIOD_END = datetime(2030, 1, 1, tzinfo=UTC)


@pytest.fixture
def store() -> RecordStore:
    return in_memory_record_store()


@pytest.fixture
def identity() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


@pytest.fixture
def payments() -> InMemoryPaymentProvider:
    return InMemoryPaymentProvider()


@pytest.fixture
def ledger() -> InMemoryWebhookLedger:
    return InMemoryWebhookLedger(ttl_seconds=3600)


@pytest.fixture
def reconciler(store, identity, payments, ledger) -> EventReconciler:
    return EventReconciler(store, identity, payments, ledger)


def _org(store: RecordStore, clerk_id: str = "org_1") -> Organization:
    org = Organization(
        id=f"organization-{clerk_id}",
        name="Acme",
        clerk_organization_id=clerk_id,
        billing_email="billing@acme.example",
    )
    asyncio.run(store.organizations.add(org))
    return org


def _student(store: RecordStore, clerk_id: str = "user_1") -> Student:
    student = Student.new(clerk_id=clerk_id, email=f"{clerk_id}@example.com")
    asyncio.run(store.students.add(student))
    return student


def _checkout_event(
    session_id: str = "cs_1",
    *,
    user_id: str = "user_1",
    course_id: str = "course-1",
    amount_total: int | None = 4900,
    **metadata: str,
) -> dict:
    return {
        "id": f"evt_{session_id}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "mode": "payment",
                "amount_total": amount_total,
                "metadata": {
                    "courseId": course_id,
                    "userId": user_id,
                    "purchaseType": "individual",
                    **metadata,
                },
            }
        },
    }


def _membership_event(org_id: str, user_id: str, role: str) -> dict:
    return {
        "type": "organizationMembership.created",
        "data": {
            "organization": {"id": org_id},
            "public_user_data": {"user_id": user_id},
            "role": role,
        },
    }


# ---------------------------------------------------------------------------
# Identity events
# ---------------------------------------------------------------------------


def test_user_created_creates_student(reconciler, store):
    event = {
        "type": "user.created",
        "data": {
            "id": "user_1",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "primary_email_address_id": "idn_1",
            "email_addresses": [{"id": "idn_1", "email_address": "ada@example.com"}],
        },
    }

    outcome = asyncio.run(reconciler.handle_identity_event(event))

    assert outcome.outcome == "processed"
    student = asyncio.run(store.students.get_by_clerk_id("user_1"))
    assert student is not None
    assert student.email == "ada@example.com"
    assert student.first_name == "Ada"


def test_user_updated_patches_existing_student(reconciler, store):
    existing = _student(store)
    event = {
        "type": "user.updated",
        "data": {
            "id": "user_1",
            "first_name": "Renamed",
            "primary_email_address_id": "idn_1",
            "email_addresses": [{"id": "idn_1", "email_address": "new@example.com"}],
        },
    }

    asyncio.run(reconciler.handle_identity_event(event))

    student = asyncio.run(store.students.get_by_clerk_id("user_1"))
    assert student.id == existing.id
    assert student.email == "new@example.com"
    assert student.first_name == "Renamed"


def test_user_without_email_is_skipped(reconciler, store):
    event = {"type": "user.created", "data": {"id": "user_1", "email_addresses": []}}

    outcome = asyncio.run(reconciler.handle_identity_event(event))

    assert outcome.outcome == "skipped"
    assert asyncio.run(store.students.get_by_clerk_id("user_1")) is None


def test_membership_created_twice_keeps_one_student_with_latest_role(
    reconciler, store, identity
):
    org = _org(store)
    identity.add_user(ExternalUser(id="user_1", email="u1@example.com"))

    asyncio.run(
        reconciler.handle_identity_event(_membership_event("org_1", "user_1", "org:member"))
    )
    asyncio.run(
        reconciler.handle_identity_event(_membership_event("org_1", "user_1", "org:admin"))
    )

    members = asyncio.run(store.students.list_by_organization(org.id))
    assert len(members) == 1
    assert members[0].clerk_id == "user_1"
    assert members[0].role == "admin"
    assert members[0].accepted_date is not None


def test_membership_for_unknown_organization_is_skipped(reconciler, identity):
    identity.add_user(ExternalUser(id="user_1", email="u1@example.com"))

    outcome = asyncio.run(
        reconciler.handle_identity_event(_membership_event("org_x", "user_1", "org:member"))
    )

    assert outcome.outcome == "skipped"
    assert "org_x" in outcome.reason


def test_membership_propagates_identity_failure(reconciler, store, identity):
    _org(store)
    identity.fail_with = IdentityProviderError("clerk down", status_code=503)

    with pytest.raises(IdentityProviderError):
        asyncio.run(
            reconciler.handle_identity_event(
                _membership_event("org_1", "user_1", "org:member")
            )
        )


def test_session_created_backfills_student(reconciler, store, identity):
    identity.add_user(ExternalUser(id="user_1", email="u1@example.com"))

    outcome = asyncio.run(
        reconciler.handle_identity_event(
            {"type": "session.created", "data": {"user_id": "user_1"}}
        )
    )

    assert outcome.outcome == "processed"
    assert asyncio.run(store.students.get_by_clerk_id("user_1")) is not None


def test_unhandled_identity_event_is_skipped(reconciler):
    outcome = asyncio.run(
        reconciler.handle_identity_event({"type": "email.created", "data": {}})
    )
    assert outcome.outcome == "skipped"


# ---------------------------------------------------------------------------
# Course purchases
# ---------------------------------------------------------------------------


def test_individual_checkout_creates_enrollment(reconciler, store):
    student = _student(store)

    outcome = asyncio.run(reconciler.handle_payment_event(_checkout_event()))

    assert outcome.outcome == "processed"
    enrollment = asyncio.run(store.enrollments.get(student.id, "course-1"))
    assert enrollment is not None
    assert enrollment.amount == 49
    assert enrollment.payment_id == "cs_1"


def test_same_checkout_twice_creates_one_enrollment(reconciler, store):
    student = _student(store)

    asyncio.run(reconciler.handle_payment_event(_checkout_event()))
    asyncio.run(reconciler.handle_payment_event(_checkout_event()))

    assert len(asyncio.run(store.enrollments.list_by_student(student.id))) == 1


def test_second_purchase_of_same_course_is_not_duplicated(reconciler, store):
    student = _student(store)

    asyncio.run(reconciler.handle_payment_event(_checkout_event("cs_1")))
    outcome = asyncio.run(reconciler.handle_payment_event(_checkout_event("cs_2")))

    assert outcome.reason == "student already enrolled"
    assert len(asyncio.run(store.enrollments.list_by_student(student.id))) == 1


def test_checkout_missing_metadata_is_skipped(reconciler, store):
    _student(store)
    event = _checkout_event()
    del event["data"]["object"]["metadata"]["courseId"]

    outcome = asyncio.run(reconciler.handle_payment_event(event))

    assert outcome.outcome == "skipped"


def test_checkout_for_unknown_student_is_skipped(reconciler, store):
    outcome = asyncio.run(reconciler.handle_payment_event(_checkout_event()))

    assert outcome.outcome == "skipped"
    assert asyncio.run(store.enrollments.list_by_payment_id("cs_1")) == []


def test_organization_checkout_unlocks_course_and_enrolls_purchaser(reconciler, store):
    org = _org(store)
    student = _student(store)
    event = _checkout_event(
        amount_total=24500, purchaseType="organization", organizationId=org.id
    )

    asyncio.run(reconciler.handle_payment_event(event))
    asyncio.run(reconciler.handle_payment_event(event))

    unlocks = asyncio.run(store.org_courses.list_active([org.id]))
    assert len(unlocks) == 1
    assert unlocks[0].course_id == "course-1"
    assert unlocks[0].amount == 245
    assert unlocks[0].purchased_by == student.id
    enrollment = asyncio.run(store.enrollments.get(student.id, "course-1"))
    assert enrollment is not None
    assert enrollment.amount == 0


def test_organization_checkout_without_organization_is_skipped(reconciler, store):
    _student(store)
    event = _checkout_event(purchaseType="organization")

    outcome = asyncio.run(reconciler.handle_payment_event(event))

    assert outcome.outcome == "skipped"


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


def _subscription_checkout(org: Organization, plan: str = "professional") -> dict:
    return {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_sub_1",
                "mode": "subscription",
                "subscription": "sub_1",
                "metadata": {
                    "organizationId": org.id,
                    "planId": plan,
                    "employeeLimit": "40",
                    "userId": "user_1",
                },
            }
        },
    }


def test_subscription_checkout_records_subscription_then_org_state(
    reconciler, store, payments
):
    org = _org(store)
    payments.add_subscription(
        ExternalSubscription(
            id="sub_1",
            status="active",
            current_period_start=PERIOD_END - timedelta(days=30),
            current_period_end=PERIOD_END,
        )
    )

    asyncio.run(reconciler.handle_payment_event(_subscription_checkout(org)))

    sub = asyncio.run(store.subscriptions.get_by_stripe_id("sub_1"))
    assert sub is not None
    assert sub.status == "active"
    assert sub.plan == "professional"
    assert sub.employee_limit == 40
    assert sub.end_date == PERIOD_END
    updated = asyncio.run(store.organizations.get_by_id(org.id))
    assert updated.subscription_status == "active"
    assert updated.employee_limit == 40


def test_subscription_checkout_is_idempotent(reconciler, store, payments):
    org = _org(store)
    payments.add_subscription(ExternalSubscription(id="sub_1", status="active"))

    asyncio.run(reconciler.handle_payment_event(_subscription_checkout(org)))
    asyncio.run(reconciler.handle_payment_event(_subscription_checkout(org)))

    assert len(store.subscriptions._by_id) == 1  # type: ignore[attr-defined]


def test_incomplete_subscription_is_not_recorded(reconciler, store, payments):
    org = _org(store)
    payments.add_subscription(ExternalSubscription(id="sub_1", status="incomplete"))

    outcome = asyncio.run(reconciler.handle_payment_event(_subscription_checkout(org)))

    assert outcome.outcome == "skipped"
    assert asyncio.run(store.subscriptions.get_by_stripe_id("sub_1")) is None
    org_after = asyncio.run(store.organizations.get_by_id(org.id))
    assert org_after.subscription_status == "inactive"


def test_unknown_plan_is_skipped(reconciler, store, payments):
    org = _org(store)
    payments.add_subscription(ExternalSubscription(id="sub_1", status="active"))

    outcome = asyncio.run(
        reconciler.handle_payment_event(_subscription_checkout(org, plan="platinum"))
    )

    assert outcome.outcome == "skipped"


@pytest.mark.parametrize(
    "stripe_status,expected",
    [
        ("past_due", "active"),
        ("canceled", "cancelled"),
        ("unpaid", "expired"),
    ],
)
def test_subscription_updated_maps_status(reconciler, store, stripe_status, expected):
    org = _org(store)
    asyncio.run(
        store.subscriptions.add(
            Subscription(
                id="subscription-sub_1",
                organization_id=org.id,
                plan="starter",
                employee_limit=10,
                price_per_month=299,
                status="active",
                stripe_subscription_id="sub_1",
            )
        )
    )
    event = {
        "type": "customer.subscription.updated",
        "data": {
            "object": {
                "id": "sub_1",
                "status": stripe_status,
                "current_period_end": int(PERIOD_END.timestamp()),
            }
        },
    }

    asyncio.run(reconciler.handle_payment_event(event))

    sub = asyncio.run(store.subscriptions.get_by_stripe_id("sub_1"))
    assert sub.status == expected
    assert sub.end_date == PERIOD_END
    assert (sub.cancelled_at is not None) == (expected == "cancelled")
    org_after = asyncio.run(store.organizations.get_by_id(org.id))
    assert org_after.subscription_status == expected


def test_subscription_deleted_without_record_is_skipped(reconciler):
    event = {
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_unknown", "status": "canceled"}},
    }

    outcome = asyncio.run(reconciler.handle_payment_event(event))

    assert outcome.outcome == "skipped"


def _subscription(org: Organization, stripe_id: str, status: str) -> Subscription:
    return Subscription(
        id=f"subscription-{stripe_id}",
        organization_id=org.id,
        plan="starter",
        employee_limit=10,
        price_per_month=299,
        status=status,
        stripe_subscription_id=stripe_id,
        end_date=PERIOD_END,
    )


def _subscription_event(event_type: str, stripe_id: str, status: str, **extra) -> dict:
    return {
        "type": event_type,
        "data": {
            "object": {
                "id": stripe_id,
                "status": status,
                "current_period_end": int(PERIOD_END.timestamp()),
                **extra,
            }
        },
    }


def test_late_deletion_of_replaced_subscription_keeps_org_active(reconciler, store):
    org = _org(store)
    asyncio.run(store.organizations.set_subscription_state(org.id, status="active"))
    asyncio.run(store.subscriptions.add(_subscription(org, "sub_old", "cancelled")))
    asyncio.run(store.subscriptions.add(_subscription(org, "sub_new", "active")))

    outcome = asyncio.run(
        reconciler.handle_payment_event(
            _subscription_event("customer.subscription.deleted", "sub_old", "canceled")
        )
    )

    assert outcome.outcome == "processed"
    old = asyncio.run(store.subscriptions.get_by_stripe_id("sub_old"))
    assert old.status == "cancelled"
    org_after = asyncio.run(store.organizations.get_by_id(org.id))
    assert org_after.subscription_status == "active"


def test_last_subscription_ending_cancels_org(reconciler, store):
    org = _org(store)
    asyncio.run(store.organizations.set_subscription_state(org.id, status="active"))
    asyncio.run(store.subscriptions.add(_subscription(org, "sub_old", "cancelled")))
    asyncio.run(store.subscriptions.add(_subscription(org, "sub_new", "active")))

    asyncio.run(
        reconciler.handle_payment_event(
            _subscription_event("customer.subscription.deleted", "sub_new", "canceled")
        )
    )

    org_after = asyncio.run(store.organizations.get_by_id(org.id))
    assert org_after.subscription_status == "cancelled"


def test_pending_period_end_cancel_is_not_reactivated(reconciler, store):
    org = _org(store)
    asyncio.run(store.organizations.set_subscription_state(org.id, status="cancelled"))
    asyncio.run(store.subscriptions.add(_subscription(org, "sub_1", "cancelled")))

    outcome = asyncio.run(
        reconciler.handle_payment_event(
            _subscription_event(
                "customer.subscription.updated",
                "sub_1",
                "active",
                cancel_at_period_end=True,
            )
        )
    )

    assert outcome.outcome == "skipped"
    sub = asyncio.run(store.subscriptions.get_by_stripe_id("sub_1"))
    assert sub.status == "cancelled"
    org_after = asyncio.run(store.organizations.get_by_id(org.id))
    assert org_after.subscription_status == "cancelled"

    asyncio.run(
        reconciler.handle_payment_event(
            _subscription_event("customer.subscription.deleted", "sub_1", "canceled")
        )
    )

    org_after = asyncio.run(store.organizations.get_by_id(org.id))
    assert org_after.subscription_status == "cancelled"


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


def _refund_event() -> dict:
    return {
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_1", "payment_intent": "pi_1"}},
    }


def test_refund_removes_enrollment(reconciler, store, payments):
    student = _student(store)
    asyncio.run(reconciler.handle_payment_event(_checkout_event()))
    payments.payment_intents["pi_1"] = "cs_1"

    outcome = asyncio.run(reconciler.handle_payment_event(_refund_event()))

    assert outcome.outcome == "processed"
    assert asyncio.run(store.enrollments.get(student.id, "course-1")) is None


def test_refund_deactivates_organization_unlock(reconciler, store, payments):
    org = _org(store)
    _student(store)
    asyncio.run(
        reconciler.handle_payment_event(
            _checkout_event(purchaseType="organization", organizationId=org.id)
        )
    )
    payments.payment_intents["pi_1"] = "cs_1"

    asyncio.run(reconciler.handle_payment_event(_refund_event()))

    assert asyncio.run(store.org_courses.list_active([org.id])) == []
    unlock = asyncio.run(store.org_courses.get_by_payment_id("cs_1"))
    assert unlock.is_active is False
    assert unlock.refunded_at is not None


def test_refund_for_unknown_payment_is_skipped(reconciler, payments):
    payments.payment_intents["pi_1"] = "cs_unknown"

    outcome = asyncio.run(reconciler.handle_payment_event(_refund_event()))

    assert outcome.outcome == "skipped"


# ---------------------------------------------------------------------------
# Delivery ledger
# ---------------------------------------------------------------------------


def test_redelivery_is_reported_as_duplicate(reconciler, store):
    _student(store)

    first = asyncio.run(reconciler.process("stripe", "evt_1", _checkout_event()))
    second = asyncio.run(reconciler.process("stripe", "evt_1", _checkout_event()))

    assert first.outcome == "processed"
    assert second.outcome == "duplicate"


def test_failed_delivery_is_not_recorded(reconciler, store, identity, ledger):
    _org(store)
    identity.fail_with = IdentityProviderError("clerk down", status_code=503)
    event = _membership_event("org_1", "user_1", "org:member")

    with pytest.raises(IdentityProviderError):
        asyncio.run(reconciler.process("clerk", "msg_1", event))

    assert asyncio.run(ledger.seen("clerk", "msg_1")) is False

    identity.fail_with = None
    identity.add_user(ExternalUser(id="user_1", email="u1@example.com"))
    outcome = asyncio.run(reconciler.process("clerk", "msg_1", event))
    assert outcome.outcome == "processed"


def test_delivery_ids_are_scoped_by_source(reconciler, store):
    _student(store)

    asyncio.run(reconciler.process("stripe", "same_id", _checkout_event()))
    outcome = asyncio.run(
        reconciler.process("clerk", "same_id", {"type": "email.created", "data": {}})
    )

    assert outcome.outcome == "skipped"
