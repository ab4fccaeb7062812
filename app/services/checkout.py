"""Course purchase checkout.

Two ways to buy a course:

  individual     the caller pays, the caller is enrolled
  organization   an organization admin pays once, every member of that
                 organization gets the course (an OrganizationCourse
                 unlock, see app/services/reconciliation.py)

Eligibility is asked of the access engine rather than re-derived here,
so "already has access" means exactly what the course page means by it.
Free courses skip the payment provider and enroll immediately.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from app.core.config import SETTINGS
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.organization import Organization
from app.models.student import Student
from app.repos.record_store import RecordStore, record_store
from app.services.access_service import AccessDecisionEngine, access_engine
from app.services.identity_provider import IdentityProvider, identity_provider
from app.services.membership_sync import upsert_student
from app.services.organizations import OrganizationNotFoundError
from app.services.payment_provider import (
    CURRENCY,
    PaymentProvider,
    payment_provider,
    to_cents,
)

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    pass


class CourseNotFoundError(CheckoutError):
    pass


class AlreadyHasAccessError(CheckoutError):
    pass


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    url: str
    session_id: str | None = None
    enrolled: bool = False  # free course, no payment needed


class CheckoutService:
    def __init__(
        self,
        store: RecordStore,
        identity: IdentityProvider,
        payments: PaymentProvider,
        engine: AccessDecisionEngine,
        *,
        base_url: str,
    ) -> None:
        self._store = store
        self._identity = identity
        self._payments = payments
        self._engine = engine
        self._base_url = base_url

    async def start_individual_checkout(
        self, user_id: str, course_id: str
    ) -> CheckoutResult:
        course = await self._course(course_id)
        student = await self._student(user_id)

        decision = await self._engine.decide_access(user_id, course_id)
        if decision.has_access:
            raise AlreadyHasAccessError(
                f"You already have {decision.access_type} access to this course"
            )

        course_page = f"{self._base_url}/courses/{course.slug}"
        if course.is_free:
            enrollment = await self._store.enrollments.add(
                Enrollment.new(
                    student_id=student.id,
                    course_id=course.id,
                    amount=0,
                    payment_id=f"free_{int(time.time() * 1000)}",
                )
            )
            logger.info(
                "Free enrollment=%s student=%s course=%s",
                enrollment.id,
                student.id,
                course.id,
            )
            return CheckoutResult(url=course_page, enrolled=True)

        price = course.individual_checkout_price
        session = await self._payments.create_checkout_session(
            mode="payment",
            line_items=[_line_item(course, price)],
            success_url=f"{course_page}?success=true",
            cancel_url=f"{course_page}?canceled=true",
            metadata={
                "courseId": course.id,
                "userId": user_id,
                "studentId": student.id,
                "purchaseType": "individual",
                "amount": str(price),
            },
            customer_email=student.email,
        )
        logger.info(
            "Individual checkout session=%s student=%s course=%s",
            session.id,
            student.id,
            course.id,
        )
        return CheckoutResult(url=session.url or "", session_id=session.id)

    async def start_organization_checkout(
        self, user_id: str, clerk_organization_id: str, course_id: str
    ) -> CheckoutResult:
        """Buy a course for a whole organization.

        The caller must already be verified as an admin of the organization.
        """
        org = await self._organization(clerk_organization_id)
        course = await self._course(course_id)
        student = await self._student(user_id)

        if await self._store.org_courses.get_active([org.id], course.id):
            raise AlreadyHasAccessError(
                "Your organization already has access to this course"
            )
        decision = await self._engine.decide_access(user_id, course_id)
        if decision.access_type == "organization":
            raise AlreadyHasAccessError(
                "Your organization already has access to this course"
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

        price = course.organization_checkout_price
        dashboard = f"{self._base_url}/dashboard/organization"
        session = await self._payments.create_checkout_session(
            mode="payment",
            line_items=[_line_item(course, price, suffix=" (Organization License)")],
            success_url=f"{dashboard}?purchase=success&course={course.slug}",
            cancel_url=f"{self._base_url}/courses/{course.slug}?canceled=true",
            metadata={
                "courseId": course.id,
                "userId": user_id,
                "studentId": student.id,
                "organizationId": org.id,
                "purchaseType": "organization",
                "amount": str(price),
            },
            customer_id=customer_id,
        )
        logger.info(
            "Organization checkout session=%s organization=%s course=%s",
            session.id,
            org.id,
            course.id,
        )
        return CheckoutResult(url=session.url or "", session_id=session.id)

    async def _course(self, course_id: str) -> Course:
        course = await self._store.courses.get_by_id(course_id)
        if course is None:
            raise CourseNotFoundError(f"course {course_id} not found")
        return course

    async def _organization(self, clerk_organization_id: str) -> Organization:
        org = await self._store.organizations.get_by_clerk_id(clerk_organization_id)
        if org is None:
            raise OrganizationNotFoundError(
                f"organization {clerk_organization_id} not found"
            )
        return org

    async def _student(self, user_id: str) -> Student:
        # The user.created webhook may not have landed yet
        student = await self._store.students.get_by_clerk_id(user_id)
        if student is not None:
            return student
        user = await self._identity.get_user(user_id)
        return await upsert_student(self._store, user)


def _line_item(course: Course, price: float, *, suffix: str = "") -> dict:
    product: dict = {"name": f"{course.title}{suffix}"}
    if course.description:
        product["description"] = course.description[:500]
    return {
        "price_data": {
            "currency": CURRENCY,
            "product_data": product,
            "unit_amount": to_cents(price),
        },
        "quantity": 1,
    }


checkout_service = CheckoutService(
    record_store,
    identity_provider,
    payment_provider,
    access_engine,
    base_url=SETTINGS.base_url,
)
