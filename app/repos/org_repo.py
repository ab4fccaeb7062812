from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol

from app.models.organization import Organization


class OrgRepo(Protocol):
    async def get_by_id(self, org_id: str) -> Organization | None: ...
    async def get_by_clerk_id(self, clerk_org_id: str) -> Organization | None: ...
    async def list_by_clerk_ids(
        self, clerk_org_ids: list[str]
    ) -> list[Organization]: ...
    async def add(self, org: Organization) -> Organization: ...
    async def set_subscription_state(
        self,
        org_id: str,
        *,
        status: str,
        employee_limit: int | None = None,
        end_date: datetime | None = None,
    ) -> Organization: ...
    async def set_stripe_customer(self, org_id: str, customer_id: str) -> None: ...
    async def set_employee_limit(self, org_id: str, employee_limit: int) -> None: ...


class InMemoryOrgRepo:
    def __init__(self) -> None:
        self._by_id: dict[str, Organization] = {}

    async def get_by_id(self, org_id: str) -> Organization | None:
        return self._by_id.get(org_id)

    async def get_by_clerk_id(self, clerk_org_id: str) -> Organization | None:
        return next(
            (
                o
                for o in self._by_id.values()
                if o.clerk_organization_id == clerk_org_id
            ),
            None,
        )

    async def list_by_clerk_ids(self, clerk_org_ids: list[str]) -> list[Organization]:
        wanted = set(clerk_org_ids)
        return [o for o in self._by_id.values() if o.clerk_organization_id in wanted]

    async def add(self, org: Organization) -> Organization:
        if await self.get_by_clerk_id(org.clerk_organization_id) is not None:
            raise ValueError("clerk_organization_id already exists")
        self._by_id[org.id] = org
        return org

    async def set_subscription_state(
        self,
        org_id: str,
        *,
        status: str,
        employee_limit: int | None = None,
        end_date: datetime | None = None,
    ) -> Organization:
        current = self._get(org_id)
        updated = replace(
            current,
            subscription_status=status,
            employee_limit=employee_limit or current.employee_limit,
            subscription_end_date=end_date or current.subscription_end_date,
        )
        self._by_id[org_id] = updated
        return updated

    async def set_stripe_customer(self, org_id: str, customer_id: str) -> None:
        self._by_id[org_id] = replace(self._get(org_id), stripe_customer_id=customer_id)

    async def set_employee_limit(self, org_id: str, employee_limit: int) -> None:
        self._by_id[org_id] = replace(self._get(org_id), employee_limit=employee_limit)

    def _get(self, org_id: str) -> Organization:
        o = self._by_id.get(org_id)
        if o is None:
            raise KeyError("organization not found")
        return o
