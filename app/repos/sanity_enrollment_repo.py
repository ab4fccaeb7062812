"""Sanity implementation of EnrollmentRepo."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from app.db.sanity import SanityClient, parse_datetime, reference, to_iso
from app.models.enrollment import Enrollment

_BY_STUDENT_AND_COURSE = (
    '*[_type == "enrollment" && student._ref == $studentId'
    " && course._ref == $courseId][0]"
)
_BY_PAYMENT_ID = '*[_type == "enrollment" && paymentId == $paymentId]'
_BY_STUDENT = '*[_type == "enrollment" && student._ref == $studentId]'


class SanityEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using Sanity documents."""

    def __init__(self, client: SanityClient) -> None:
        self._client = client

    async def get(self, student_id: str, course_id: str) -> Enrollment | None:
        doc = await self._client.fetch(
            _BY_STUDENT_AND_COURSE, {"studentId": student_id, "courseId": course_id}
        )
        return _doc_to_enrollment(doc) if doc else None

    async def list_by_payment_id(self, payment_id: str) -> list[Enrollment]:
        docs = await self._client.fetch(_BY_PAYMENT_ID, {"paymentId": payment_id})
        return [_doc_to_enrollment(d) for d in docs or []]

    async def list_by_student(self, student_id: str) -> list[Enrollment]:
        docs = await self._client.fetch(_BY_STUDENT, {"studentId": student_id})
        return [_doc_to_enrollment(d) for d in docs or []]

    async def add(self, enrollment: Enrollment) -> Enrollment:
        doc = await self._client.create(
            {
                "_id": enrollment.id,
                "_type": "enrollment",
                "student": reference(enrollment.student_id),
                "course": reference(enrollment.course_id),
                "amount": enrollment.amount,
                "paymentId": enrollment.payment_id,
                "enrolledAt": to_iso(enrollment.enrolled_at),
            }
        )
        return _doc_to_enrollment(doc)

    async def delete(self, enrollment_id: str) -> None:
        await self._client.delete(enrollment_id)


def _doc_to_enrollment(doc: dict[str, Any]) -> Enrollment:
    # Older documents predate enrolledAt; fall back to the system timestamp
    enrolled_at = parse_datetime(doc.get("enrolledAt") or doc.get("_createdAt"))
    return Enrollment(
        id=doc["_id"],
        student_id=(doc.get("student") or {}).get("_ref", ""),
        course_id=(doc.get("course") or {}).get("_ref", ""),
        amount=doc.get("amount") or 0,
        payment_id=doc.get("paymentId", ""),
        enrolled_at=enrolled_at or datetime.now(UTC),
    )
