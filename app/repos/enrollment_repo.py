from __future__ import annotations

from typing import Protocol

from app.models.enrollment import Enrollment


class EnrollmentRepo(Protocol):
    async def get(self, student_id: str, course_id: str) -> Enrollment | None: ...
    async def list_by_payment_id(self, payment_id: str) -> list[Enrollment]: ...
    async def list_by_student(self, student_id: str) -> list[Enrollment]: ...
    async def add(self, enrollment: Enrollment) -> Enrollment: ...
    async def delete(self, enrollment_id: str) -> None: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._by_id: dict[str, Enrollment] = {}

    async def get(self, student_id: str, course_id: str) -> Enrollment | None:
        return next(
            (
                e
                for e in self._by_id.values()
                if e.student_id == student_id and e.course_id == course_id
            ),
            None,
        )

    async def list_by_payment_id(self, payment_id: str) -> list[Enrollment]:
        return [e for e in self._by_id.values() if e.payment_id == payment_id]

    async def list_by_student(self, student_id: str) -> list[Enrollment]:
        return [e for e in self._by_id.values() if e.student_id == student_id]

    async def add(self, enrollment: Enrollment) -> Enrollment:
        if await self.get(enrollment.student_id, enrollment.course_id) is not None:
            raise ValueError("student already enrolled in course")
        self._by_id[enrollment.id] = enrollment
        return enrollment

    async def delete(self, enrollment_id: str) -> None:
        self._by_id.pop(enrollment_id, None)
