from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from app.models.organization import Organization, Subscription
from app.repos.record_store import RecordStore, record_store
from app.services.identity_provider import IdentityProvider, identity_provider
from app.services.membership_sync import upsert_student

logger = logging.getLogger(__name__)


class OrganizationNotFoundError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class OrganizationSummary:
    organization: Organization
    subscription: Subscription | None
    employee_count: int


class OrganizationService:
    def __init__(self, store: RecordStore, identity: IdentityProvider) -> None:
        self._store = store
        self._identity = identity

    async def create_organization(
        self,
        *,
        name: str,
        billing_email: str,
        clerk_organization_id: str,
        admin_user_id: str,
    ) -> tuple[Organization, bool]:
        """Record a newly signed-up organization and make the creator its admin.

        Returns (organization, created).  Calling again for the same Clerk
        organization returns the existing record and re-applies the admin
        link, so a signup interrupted between the two writes can simply be
        retried.
        """
        org = await self._store.organizations.get_by_clerk_id(clerk_organization_id)
        created = org is None
        if org is None:
            org = await self._store.organizations.add(
                Organization.new(
                    name=name,
                    clerk_organization_id=clerk_organization_id,
                    billing_email=billing_email,
                )
            )
            logger.info(
                "Created organization=%s clerk_org=%s", org.id, clerk_organization_id
            )

        student = await self._store.students.get_by_clerk_id(admin_user_id)
        if student is None:
            user = await self._identity.get_user(admin_user_id)
            student = await upsert_student(self._store, user)
        await self._store.students.set_organization(
            student.id,
            organization_id=org.id,
            role="admin",
            accepted_date=datetime.now(UTC),
        )
        return org, created

    async def get_by_clerk_id(self, clerk_organization_id: str) -> Organization:
        org = await self._store.organizations.get_by_clerk_id(clerk_organization_id)
        if org is None:
            raise OrganizationNotFoundError(
                f"organization {clerk_organization_id} not found"
            )
        return org

    async def describe(self, clerk_organization_id: str) -> OrganizationSummary:
        org = await self.get_by_clerk_id(clerk_organization_id)
        subscription = await self._store.subscriptions.get_latest_for_organization(
            org.id
        )
        employees = await self._store.students.list_by_organization(org.id)
        return OrganizationSummary(
            organization=org,
            subscription=subscription,
            employee_count=len(employees),
        )


organization_service = OrganizationService(record_store, identity_provider)
