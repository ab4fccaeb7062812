"""Sanity implementation of OrgRepo."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.db.sanity import SanityClient, parse_datetime, to_iso
from app.models.organization import Organization

_BY_ID = '*[_type == "organization" && _id == $id][0]'
_BY_CLERK_ID = '*[_type == "organization" && clerkOrganizationId == $clerkOrgId][0]'
_BY_CLERK_IDS = '*[_type == "organization" && clerkOrganizationId in $clerkOrgIds]'


class SanityOrgRepo:
    """Satisfies the OrgRepo Protocol using Sanity documents."""

    def __init__(self, client: SanityClient) -> None:
        self._client = client

    async def get_by_id(self, org_id: str) -> Organization | None:
        doc = await self._client.fetch(_BY_ID, {"id": org_id})
        return _doc_to_org(doc) if doc else None

    async def get_by_clerk_id(self, clerk_org_id: str) -> Organization | None:
        doc = await self._client.fetch(_BY_CLERK_ID, {"clerkOrgId": clerk_org_id})
        return _doc_to_org(doc) if doc else None

    async def list_by_clerk_ids(self, clerk_org_ids: list[str]) -> list[Organization]:
        if not clerk_org_ids:
            return []
        docs = await self._client.fetch(_BY_CLERK_IDS, {"clerkOrgIds": clerk_org_ids})
        return [_doc_to_org(d) for d in docs or []]

    async def add(self, org: Organization) -> Organization:
        doc = await self._client.create(
            {
                "_id": org.id,
                "_type": "organization",
                "name": org.name,
                "clerkOrganizationId": org.clerk_organization_id,
                "billingEmail": org.billing_email,
                "subscriptionStatus": org.subscription_status,
                "employeeLimit": org.employee_limit,
                "createdAt": to_iso(org.created_at),
            }
        )
        return _doc_to_org(doc)

    async def set_subscription_state(
        self,
        org_id: str,
        *,
        status: str,
        employee_limit: int | None = None,
        end_date: datetime | None = None,
    ) -> Organization:
        fields: dict[str, Any] = {"subscriptionStatus": status}
        if employee_limit is not None:
            fields["employeeLimit"] = employee_limit
        if end_date is not None:
            fields["subscriptionEndDate"] = to_iso(end_date)
        return _doc_to_org(await self._client.patch(org_id).set(fields).commit())

    async def set_stripe_customer(self, org_id: str, customer_id: str) -> None:
        await self._client.patch(org_id).set({"stripeCustomerId": customer_id}).commit()

    async def set_employee_limit(self, org_id: str, employee_limit: int) -> None:
        await self._client.patch(org_id).set({"employeeLimit": employee_limit}).commit()


def _doc_to_org(doc: dict[str, Any]) -> Organization:
    return Organization(
        id=doc["_id"],
        name=doc.get("name", ""),
        clerk_organization_id=doc.get("clerkOrganizationId", ""),
        billing_email=doc.get("billingEmail", ""),
        subscription_status=doc.get("subscriptionStatus") or "inactive",
        employee_limit=doc.get("employeeLimit") or 10,
        stripe_customer_id=doc.get("stripeCustomerId"),
        subscription_end_date=parse_datetime(doc.get("subscriptionEndDate")),
        created_at=parse_datetime(doc.get("createdAt")),
    )
