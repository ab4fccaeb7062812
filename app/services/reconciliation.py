"""Apply provider webhook events to the record store.

Clerk and Stripe change state that the access engine reads from Sanity.
Their webhooks are the only way that state reaches Sanity, so every
handler here follows the same rules:

  IDEMPOTENT       Delivery is at-least-once.  Before creating anything a
                   handler looks for it by natural key (clerk id, Stripe
                   checkout session id, Stripe subscription id).  The
                   delivery ledger short-circuits exact redeliveries
                   before any handler runs.

  SKIP, DON'T FAIL Events may arrive before the records they reference
                   (a payment for a student whose user.created has not
                   landed yet).  Missing references are logged and the
                   event is acknowledged as skipped.

  RE-DRIVEABLE     Writes are single-document and ordered so that a crash
                   half way leaves a state the provider's retry completes.
                   Adapter errors propagate; the route answers 500 and
                   the provider redelivers.  Nothing is recorded in the
                   ledger for a failed delivery.

Event shapes are the providers' JSON, as plain dicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from app.core.metrics import WEBHOOK_EVENTS
from app.models.enrollment import Enrollment
from app.models.identity import ExternalUser
from app.models.organization import (
    ACCESS_GRANTING_STATUSES,
    SUBSCRIPTION_PLANS,
    OrganizationCourse,
    Subscription,
)
from app.repos.record_store import RecordStore, record_store
from app.services.identity_provider import (
    IdentityProvider,
    identity_provider,
    primary_email,
)
from app.services.membership_sync import (
    MissingRecordError,
    link_student_to_organization,
    upsert_student,
)
from app.services.payment_provider import (
    PaymentProvider,
    payment_provider,
    subscription_from_payload,
)
from app.services.webhook_ledger import WebhookLedger, webhook_ledger

logger = logging.getLogger(__name__)

IDENTITY_SOURCE = "clerk"
PAYMENT_SOURCE = "stripe"

# Stripe subscription status -> local status.  None means "not yet
# meaningful": an incomplete subscription has not been paid for.
STRIPE_STATUS_MAP: dict[str, str | None] = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "active",  # Stripe is still retrying the charge
    "canceled": "cancelled",
    "unpaid": "expired",
    "incomplete_expired": "expired",
    "paused": "expired",
    "incomplete": None,
}


@dataclass(frozen=True, slots=True)
class EventOutcome:
    outcome: str  # processed|skipped|duplicate
    reason: str | None = None

    @staticmethod
    def processed(reason: str | None = None) -> EventOutcome:
        return EventOutcome("processed", reason)

    @staticmethod
    def skipped(reason: str) -> EventOutcome:
        return EventOutcome("skipped", reason)


def user_from_payload(data: dict[str, Any]) -> ExternalUser:
    return ExternalUser(
        id=data["id"],
        email=primary_email(data),
        first_name=data.get("first_name") or "",
        last_name=data.get("last_name") or "",
        image_url=data.get("image_url") or "",
    )


class EventReconciler:
    def __init__(
        self,
        store: RecordStore,
        identity: IdentityProvider,
        payments: PaymentProvider,
        ledger: WebhookLedger,
    ) -> None:
        self._store = store
        self._identity = identity
        self._payments = payments
        self._ledger = ledger

    async def process(
        self, source: str, delivery_id: str | None, event: dict[str, Any]
    ) -> EventOutcome:
        """Run one verified delivery through its handler, once.

        Raises whatever the handler raises; the caller turns that into a
        retryable response.
        """
        event_type = event.get("type", "unknown")
        if delivery_id and await self._ledger.seen(source, delivery_id):
            logger.info(
                "Duplicate delivery ignored",
                extra={
                    "source": source,
                    "event_id": delivery_id,
                    "event_type": event_type,
                },
            )
            WEBHOOK_EVENTS.labels(
                source=source, event_type=event_type, outcome="duplicate"
            ).inc()
            return EventOutcome("duplicate", "delivery already applied")

        handler = (
            self.handle_identity_event
            if source == IDENTITY_SOURCE
            else self.handle_payment_event
        )
        try:
            outcome = await handler(event)
        except Exception:
            WEBHOOK_EVENTS.labels(
                source=source, event_type=event_type, outcome="failed"
            ).inc()
            raise

        if delivery_id:
            await self._ledger.record(source, delivery_id)
        WEBHOOK_EVENTS.labels(
            source=source, event_type=event_type, outcome=outcome.outcome
        ).inc()
        logger.info(
            "Webhook %s: %s",
            outcome.outcome,
            outcome.reason or "-",
            extra={"source": source, "event_id": delivery_id, "event_type": event_type},
        )
        return outcome

    # -----------------------------------------------------------------------
    # Identity provider events
    # -----------------------------------------------------------------------

    async def handle_identity_event(self, event: dict[str, Any]) -> EventOutcome:
        event_type = event.get("type")
        data = event.get("data") or {}

        try:
            if event_type in ("user.created", "user.updated"):
                student = await upsert_student(self._store, user_from_payload(data))
                return EventOutcome.processed(f"student {student.id} upserted")

            if event_type == "organizationMembership.created":
                org_id = (data.get("organization") or {}).get("id")
                user_id = (data.get("public_user_data") or {}).get("user_id")
                if not org_id or not user_id:
                    return EventOutcome.skipped("membership payload incomplete")
                student = await link_student_to_organization(
                    self._store,
                    self._identity,
                    user_id=user_id,
                    clerk_organization_id=org_id,
                    role_claim=data.get("role"),
                )
                return EventOutcome.processed(f"student {student.id} linked")

            if event_type == "session.created":
                user_id = data.get("user_id")
                if not user_id:
                    return EventOutcome.skipped("session payload has no user_id")
                user = await self._identity.get_user(user_id)
                student = await upsert_student(self._store, user)
                return EventOutcome.processed(f"student {student.id} upserted")
        except MissingRecordError as e:
            logger.warning("Skipping %s: %s", event_type, e)
            return EventOutcome.skipped(str(e))

        return EventOutcome.skipped(f"unhandled event type {event_type}")

    # -----------------------------------------------------------------------
    # Payment provider events
    # -----------------------------------------------------------------------

    async def handle_payment_event(self, event: dict[str, Any]) -> EventOutcome:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            mode = obj.get("mode")
            if mode == "subscription":
                return await self._subscription_checkout(obj)
            if mode == "payment":
                return await self._course_checkout(obj)
            return EventOutcome.skipped(f"checkout mode {mode} not handled")

        if event_type in (
            "customer.subscription.updated",
            "customer.subscription.deleted",
        ):
            return await self._subscription_changed(obj)

        if event_type == "charge.refunded":
            return await self._charge_refunded(obj)

        return EventOutcome.skipped(f"unhandled event type {event_type}")

    async def _course_checkout(self, session: dict[str, Any]) -> EventOutcome:
        metadata = session.get("metadata") or {}
        course_id = metadata.get("courseId")
        user_id = metadata.get("userId")
        payment_id = session["id"]
        if not course_id or not user_id:
            logger.warning("Checkout %s missing courseId/userId metadata", payment_id)
            return EventOutcome.skipped("checkout metadata missing courseId or userId")

        student = await self._store.students.get_by_clerk_id(user_id)
        if student is None:
            logger.warning(
                "Checkout %s for unknown student clerk_id=%s", payment_id, user_id
            )
            return EventOutcome.skipped(f"no student for user {user_id}")

        amount_total = session.get("amount_total")
        amount = amount_total / 100 if amount_total is not None else 0

        if metadata.get("purchaseType") == "organization":
            organization_id = metadata.get("organizationId")
            if not organization_id:
                return EventOutcome.skipped(
                    "organization checkout missing organizationId"
                )
            org = await self._store.organizations.get_by_id(organization_id)
            if org is None:
                return EventOutcome.skipped(f"no organization {organization_id}")

            existing = await self._store.org_courses.get_by_payment_id(payment_id)
            if existing is None:
                unlock = await self._store.org_courses.add(
                    OrganizationCourse.new(
                        organization_id=org.id,
                        course_id=course_id,
                        purchased_by=student.id,
                        amount=amount,
                        payment_id=payment_id,
                    )
                )
                logger.info(
                    "Organization course unlocked org=%s course=%s unlock=%s",
                    org.id,
                    course_id,
                    unlock.id,
                )
            # The purchaser also gets individual access, free of charge
            if await self._store.enrollments.get(student.id, course_id) is None:
                await self._store.enrollments.add(
                    Enrollment.new(
                        student_id=student.id,
                        course_id=course_id,
                        amount=0,
                        payment_id=payment_id,
                    )
                )
            return EventOutcome.processed(f"organization {org.id} unlocked {course_id}")

        if await self._store.enrollments.list_by_payment_id(payment_id):
            return EventOutcome.processed("enrollment already recorded for payment")
        if await self._store.enrollments.get(student.id, course_id) is not None:
            return EventOutcome.processed("student already enrolled")

        enrollment = await self._store.enrollments.add(
            Enrollment.new(
                student_id=student.id,
                course_id=course_id,
                amount=amount,
                payment_id=payment_id,
            )
        )
        logger.info(
            "Enrolled student=%s course=%s enrollment=%s",
            student.id,
            course_id,
            enrollment.id,
        )
        return EventOutcome.processed(f"enrollment {enrollment.id} created")

    async def _subscription_checkout(self, session: dict[str, Any]) -> EventOutcome:
        metadata = session.get("metadata") or {}
        organization_id = metadata.get("organizationId")
        stripe_sub_id = session.get("subscription")
        if not organization_id or not stripe_sub_id:
            return EventOutcome.skipped(
                "subscription checkout missing organizationId or subscription"
            )
        org = await self._store.organizations.get_by_id(organization_id)
        if org is None:
            return EventOutcome.skipped(f"no organization {organization_id}")

        plan = SUBSCRIPTION_PLANS.get(metadata.get("planId", ""))
        if plan is None:
            return EventOutcome.skipped(f"unknown plan {metadata.get('planId')!r}")
        try:
            employee_limit = int(metadata.get("employeeLimit") or plan.employee_limit)
        except ValueError:
            employee_limit = plan.employee_limit

        external = await self._payments.retrieve_subscription(stripe_sub_id)
        status = STRIPE_STATUS_MAP.get(external.status)
        if status is None:
            return EventOutcome.skipped(
                f"subscription {stripe_sub_id} is {external.status}"
            )

        # Subscription record first: the org flag alone never grants access
        record = await self._store.subscriptions.get_by_stripe_id(stripe_sub_id)
        if record is None:
            record = await self._store.subscriptions.add(
                Subscription(
                    id=f"subscription-{stripe_sub_id}",
                    organization_id=org.id,
                    plan=plan.id,
                    employee_limit=employee_limit,
                    price_per_month=plan.price_per_month,
                    status=status,
                    stripe_subscription_id=stripe_sub_id,
                    start_date=external.current_period_start or datetime.now(UTC),
                    end_date=external.current_period_end,
                )
            )
        elif record.status != status:
            record = await self._store.subscriptions.update_status(
                record.id, status=status, end_date=external.current_period_end
            )

        await self._store.organizations.set_subscription_state(
            org.id,
            status=status,
            employee_limit=employee_limit,
            end_date=external.current_period_end,
        )
        logger.info(
            "Organization %s subscribed plan=%s status=%s", org.id, plan.id, status
        )
        return EventOutcome.processed(f"subscription {record.id} {status}")

    async def _subscription_changed(self, obj: dict[str, Any]) -> EventOutcome:
        external = subscription_from_payload(obj)
        record = await self._store.subscriptions.get_by_stripe_id(external.id)
        if record is None:
            return EventOutcome.skipped(f"no subscription record for {external.id}")

        status = STRIPE_STATUS_MAP.get(external.status)
        if status is None:
            return EventOutcome.skipped(
                f"subscription {external.id} is {external.status}"
            )

        # A local cancel stays cancelled while Stripe runs out the period
        if (
            record.status == "cancelled"
            and external.cancel_at_period_end
            and status in ACCESS_GRANTING_STATUSES
        ):
            return EventOutcome.skipped(
                f"subscription {record.id} cancelled, ending at period end"
            )

        cancelled_at = datetime.now(UTC) if status == "cancelled" else None
        await self._store.subscriptions.update_status(
            record.id,
            status=status,
            end_date=external.current_period_end,
            cancelled_at=cancelled_at,
        )

        # The org flag follows whichever subscription still grants access
        current = await self._store.subscriptions.get_active_for_organization(
            record.organization_id
        )
        if current is not None:
            await self._store.organizations.set_subscription_state(
                record.organization_id,
                status=current.status,
                end_date=current.end_date,
            )
        else:
            await self._store.organizations.set_subscription_state(
                record.organization_id,
                status=status,
                end_date=external.current_period_end,
            )
        return EventOutcome.processed(f"subscription {record.id} {status}")

    async def _charge_refunded(self, charge: dict[str, Any]) -> EventOutcome:
        payment_intent = charge.get("payment_intent")
        if not payment_intent:
            return EventOutcome.skipped("charge has no payment intent")

        payment_id = await self._payments.find_checkout_session_id(payment_intent)
        if payment_id is None:
            return EventOutcome.skipped(f"no checkout session for {payment_intent}")

        removed = 0
        for enrollment in await self._store.enrollments.list_by_payment_id(payment_id):
            await self._store.enrollments.delete(enrollment.id)
            removed += 1

        deactivated = False
        unlock = await self._store.org_courses.get_by_payment_id(payment_id)
        if unlock is not None and unlock.is_active:
            # Kept for the audit trail, just no longer grants access
            await self._store.org_courses.deactivate(unlock.id, datetime.now(UTC))
            deactivated = True

        if not removed and not deactivated:
            return EventOutcome.skipped(f"nothing recorded for payment {payment_id}")
        logger.info(
            "Refund applied payment=%s enrollments_removed=%d unlock_deactivated=%s",
            payment_id,
            removed,
            deactivated,
        )
        return EventOutcome.processed(
            f"refund applied: {removed} enrollment(s) removed"
            + (", organization unlock deactivated" if deactivated else "")
        )


# Module-level singleton wired to the configured adapters
reconciler = EventReconciler(
    record_store, identity_provider, payment_provider, webhook_ledger
)
