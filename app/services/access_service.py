"""Course access decisions.

Every question of the form "may this user open this course?" is answered
here, and only here: the access API, the checkout eligibility checks and
the accessible-course listing all call AccessDecisionEngine.

THREE SOURCES OF TRUTH
----------------------
  1. Clerk memberships      which organizations the user belongs to
  2. Organization + Subscription documents (Sanity)
                            whether that organization is paid up
  3. Enrollment documents   individual purchases

They are updated independently (Clerk directly, Sanity via webhooks), so
at any moment they may disagree.  The rules below are written so that
every disagreement resolves to "deny":

  - A membership lookup that fails counts as no memberships.  Individual
    enrollments still grant access; a denial is reported with the error
    reason, since organization access could not be ruled out.
  - Organization.subscription_status alone is only a cached flag.  It is
    believed only when a Subscription document for that organization is
    also active/trialing and carries a Stripe subscription id.  A webhook
    that flipped the flag but crashed before writing the Subscription
    therefore grants nothing.
  - Any unexpected exception becomes a denial with a fixed reason; the
    engine never raises, because it gates page rendering.

PRECEDENCE
----------
Organization access is checked first and short-circuits:

  subscription (platform-wide)  >  per-course unlock  >  enrollment

A platform subscription and a per-course OrganizationCourse unlock are
simply OR'd; the subscription is looked at first only so its plan can
be reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.metrics import ACCESS_DECISIONS
from app.models.access import (
    ERROR_REASON,
    NO_ACCESS_REASON,
    STUDENT_NOT_FOUND_REASON,
    AccessibleCourses,
    AccessResult,
)
from app.models.organization import ACCESS_GRANTING_STATUSES, Organization, Subscription
from app.repos.record_store import RecordStore, record_store
from app.services.identity_provider import (
    IdentityProvider,
    IdentityProviderError,
    identity_provider,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _SubscribedOrg:
    organization: Organization
    subscription: Subscription


class AccessDecisionEngine:
    def __init__(self, store: RecordStore, identity: IdentityProvider) -> None:
        self._store = store
        self._identity = identity

    async def decide_access(self, user_id: str, course_id: str) -> AccessResult:
        try:
            result = await self._decide(user_id, course_id)
        except Exception:
            logger.exception(
                "Access check failed user=%s course=%s", user_id, course_id
            )
            ACCESS_DECISIONS.labels(access_type="error").inc()
            return AccessResult.denied(ERROR_REASON)

        label = "error" if result.reason == ERROR_REASON else result.access_type
        ACCESS_DECISIONS.labels(access_type=label).inc()
        logger.info(
            "Access decision user=%s course=%s has_access=%s access_type=%s",
            user_id,
            course_id,
            result.has_access,
            result.access_type,
        )
        return result

    async def has_access(self, user_id: str, course_id: str) -> bool:
        return (await self.decide_access(user_id, course_id)).has_access

    async def list_accessible_courses(self, user_id: str) -> AccessibleCourses:
        """Summarise everything the user can open.

        Same resolution rules as decide_access.  Failures propagate here:
        this feeds a dashboard, not a gate.
        """
        orgs, _ = await self._member_organizations(user_id)
        subscribed = await self._subscribed_organization(orgs)
        unlocks = await self._store.org_courses.list_active([o.id for o in orgs])
        unlocked_ids = frozenset(u.course_id for u in unlocks)

        enrolled_ids: set[str] = set()
        student = await self._store.students.get_by_clerk_id(user_id)
        if student is not None:
            enrolled_ids = {
                e.course_id
                for e in await self._store.enrollments.list_by_student(student.id)
            }

        has_org_access = subscribed is not None or bool(unlocked_ids)
        if has_org_access and enrolled_ids:
            access_type = "both"
        elif has_org_access:
            access_type = "organization"
        elif enrolled_ids:
            access_type = "individual"
        else:
            access_type = "none"

        org_name = None
        if subscribed is not None:
            org_name = subscribed.organization.name
        elif unlocks:
            org_name = next(
                (o.name for o in orgs if o.id == unlocks[0].organization_id), None
            )

        return AccessibleCourses(
            access_type=access_type,
            course_ids=tuple(sorted(unlocked_ids | enrolled_ids)),
            all_courses=subscribed is not None,
            organization_name=org_name,
            subscription_plan=subscribed.subscription.plan if subscribed else None,
            unlocked_course_ids=unlocked_ids,
        )

    # --- resolution steps ---

    async def _decide(self, user_id: str, course_id: str) -> AccessResult:
        orgs, lookup_failed = await self._member_organizations(user_id)
        # A denial after a failed membership lookup is reported as an error:
        # organization access could not be ruled out
        denial = ERROR_REASON if lookup_failed else None

        if orgs:
            subscribed = await self._subscribed_organization(orgs)
            if subscribed is not None:
                return AccessResult(
                    has_access=True,
                    access_type="organization",
                    organization_name=subscribed.organization.name,
                    subscription_plan=subscribed.subscription.plan,
                )

            unlock = await self._store.org_courses.get_active(
                [o.id for o in orgs], course_id
            )
            if unlock is not None:
                owner = next(o for o in orgs if o.id == unlock.organization_id)
                return AccessResult(
                    has_access=True,
                    access_type="organization",
                    organization_name=owner.name,
                )

        student = await self._store.students.get_by_clerk_id(user_id)
        if student is None:
            return AccessResult.denied(denial or STUDENT_NOT_FOUND_REASON)

        enrollment = await self._store.enrollments.get(student.id, course_id)
        if enrollment is not None:
            return AccessResult(has_access=True, access_type="individual")

        return AccessResult.denied(denial or NO_ACCESS_REASON)

    async def _member_organizations(
        self, user_id: str
    ) -> tuple[list[Organization], bool]:
        """Return (organizations, lookup_failed).

        A failed membership lookup counts as no memberships: the
        organization path fails closed and enrollments are still checked.
        """
        try:
            memberships = await self._identity.list_organization_memberships(user_id)
        except IdentityProviderError as e:
            logger.warning(
                "Membership lookup failed user=%s: %s, checking enrollments only",
                user_id,
                e,
            )
            return [], True
        if not memberships:
            return [], False
        orgs = await self._store.organizations.list_by_clerk_ids(
            [m.organization_id for m in memberships]
        )
        return orgs, False

    async def _subscribed_organization(
        self, orgs: list[Organization]
    ) -> _SubscribedOrg | None:
        for org in orgs:
            if org.subscription_status not in ACCESS_GRANTING_STATUSES:
                continue
            sub = await self._store.subscriptions.get_active_for_organization(org.id)
            if sub is not None and sub.grants_access():
                return _SubscribedOrg(organization=org, subscription=sub)
            logger.warning(
                "Organization %s is marked %s but has no active subscription record",
                org.id,
                org.subscription_status,
            )
        return None


# Module-level singleton wired to the configured adapters
access_engine = AccessDecisionEngine(record_store, identity_provider)
