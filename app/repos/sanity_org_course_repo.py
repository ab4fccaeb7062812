"""Sanity implementation of OrgCourseRepo."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from app.db.sanity import SanityClient, parse_datetime, reference, to_iso
from app.models.organization import OrganizationCourse

_ACTIVE_FOR_COURSE = (
    '*[_type == "organizationCourse" && organization._ref in $orgIds'
    " && course._ref == $courseId && isActive == true][0]"
)
_ACTIVE = (
    '*[_type == "organizationCourse" && organization._ref in $orgIds'
    " && isActive == true]"
)
_BY_PAYMENT_ID = '*[_type == "organizationCourse" && paymentId == $paymentId][0]'


class SanityOrgCourseRepo:
    """Satisfies the OrgCourseRepo Protocol using Sanity documents."""

    def __init__(self, client: SanityClient) -> None:
        self._client = client

    async def get_active(
        self, org_ids: list[str], course_id: str
    ) -> OrganizationCourse | None:
        if not org_ids:
            return None
        doc = await self._client.fetch(
            _ACTIVE_FOR_COURSE, {"orgIds": org_ids, "courseId": course_id}
        )
        return _doc_to_unlock(doc) if doc else None

    async def get_by_payment_id(self, payment_id: str) -> OrganizationCourse | None:
        doc = await self._client.fetch(_BY_PAYMENT_ID, {"paymentId": payment_id})
        return _doc_to_unlock(doc) if doc else None

    async def list_active(self, org_ids: list[str]) -> list[OrganizationCourse]:
        if not org_ids:
            return []
        docs = await self._client.fetch(_ACTIVE, {"orgIds": org_ids})
        return [_doc_to_unlock(d) for d in docs or []]

    async def add(self, unlock: OrganizationCourse) -> OrganizationCourse:
        doc = await self._client.create(
            {
                "_id": unlock.id,
                "_type": "organizationCourse",
                "organization": reference(unlock.organization_id),
                "course": reference(unlock.course_id),
                "purchasedBy": reference(unlock.purchased_by),
                "amount": unlock.amount,
                "paymentId": unlock.payment_id,
                "purchasedAt": to_iso(unlock.purchased_at),
                "isActive": unlock.is_active,
            }
        )
        return _doc_to_unlock(doc)

    async def deactivate(self, unlock_id: str, refunded_at: datetime) -> None:
        await (
            self._client.patch(unlock_id)
            .set({"isActive": False, "refundedAt": to_iso(refunded_at)})
            .commit()
        )


def _doc_to_unlock(doc: dict[str, Any]) -> OrganizationCourse:
    purchased_at = parse_datetime(doc.get("purchasedAt") or doc.get("_createdAt"))
    return OrganizationCourse(
        id=doc["_id"],
        organization_id=(doc.get("organization") or {}).get("_ref", ""),
        course_id=(doc.get("course") or {}).get("_ref", ""),
        purchased_by=(doc.get("purchasedBy") or {}).get("_ref", ""),
        amount=doc.get("amount") or 0,
        payment_id=doc.get("paymentId", ""),
        purchased_at=purchased_at or datetime.now(UTC),
        is_active=bool(doc.get("isActive", True)),
        refunded_at=parse_datetime(doc.get("refundedAt")),
    )
