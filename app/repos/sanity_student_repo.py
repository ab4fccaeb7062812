"""Sanity implementation of StudentRepo."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from app.db.sanity import SanityClient, parse_datetime, reference, to_iso
from app.models.student import Student

_BY_CLERK_ID = '*[_type == "student" && clerkId == $clerkId][0]'
_BY_ID = '*[_type == "student" && _id == $id][0]'
_BY_ORG = '*[_type == "student" && organization._ref == $orgId]'


class SanityStudentRepo:
    """Satisfies the StudentRepo Protocol using Sanity documents."""

    def __init__(self, client: SanityClient) -> None:
        self._client = client

    async def get_by_id(self, student_id: str) -> Student | None:
        doc = await self._client.fetch(_BY_ID, {"id": student_id})
        return _doc_to_student(doc) if doc else None

    async def get_by_clerk_id(self, clerk_id: str) -> Student | None:
        doc = await self._client.fetch(_BY_CLERK_ID, {"clerkId": clerk_id})
        return _doc_to_student(doc) if doc else None

    async def add(self, student: Student) -> Student:
        doc: dict[str, Any] = {
            "_id": student.id,
            "_type": "student",
            "clerkId": student.clerk_id,
            "email": student.email,
            "firstName": student.first_name,
            "lastName": student.last_name,
            "imageUrl": student.image_url,
            "createdAt": to_iso(student.created_at or datetime.now(UTC)),
        }
        if student.organization_id:
            doc["organization"] = reference(student.organization_id)
            doc["role"] = student.role
            doc["acceptedDate"] = to_iso(student.accepted_date)
        return _doc_to_student(await self._client.create(doc))

    async def update_profile(
        self,
        student_id: str,
        *,
        email: str,
        first_name: str,
        last_name: str,
        image_url: str,
    ) -> Student:
        doc = (
            await self._client.patch(student_id)
            .set(
                {
                    "email": email,
                    "firstName": first_name,
                    "lastName": last_name,
                    "imageUrl": image_url,
                }
            )
            .commit()
        )
        return _doc_to_student(doc)

    async def set_organization(
        self,
        student_id: str,
        *,
        organization_id: str,
        role: str,
        accepted_date: datetime | None = None,
    ) -> Student:
        fields: dict[str, Any] = {
            "organization": reference(organization_id),
            "role": role,
        }
        if accepted_date is not None:
            fields["acceptedDate"] = to_iso(accepted_date)
        doc = await self._client.patch(student_id).set(fields).commit()
        return _doc_to_student(doc)

    async def list_by_organization(self, organization_id: str) -> list[Student]:
        docs = await self._client.fetch(_BY_ORG, {"orgId": organization_id})
        return [_doc_to_student(d) for d in docs or []]


def _doc_to_student(doc: dict[str, Any]) -> Student:
    org_ref = doc.get("organization") or {}
    return Student(
        id=doc["_id"],
        clerk_id=doc.get("clerkId", ""),
        email=doc.get("email", ""),
        first_name=doc.get("firstName") or "",
        last_name=doc.get("lastName") or "",
        image_url=doc.get("imageUrl") or "",
        organization_id=org_ref.get("_ref"),
        role=doc.get("role"),
        invited_date=parse_datetime(doc.get("invitedDate")),
        accepted_date=parse_datetime(doc.get("acceptedDate")),
        created_at=parse_datetime(doc.get("createdAt")),
    )
