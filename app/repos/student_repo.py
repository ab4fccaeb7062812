from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol

from app.models.student import Student


class StudentRepo(Protocol):
    async def get_by_id(self, student_id: str) -> Student | None: ...
    async def get_by_clerk_id(self, clerk_id: str) -> Student | None: ...
    async def add(self, student: Student) -> Student: ...
    async def update_profile(
        self,
        student_id: str,
        *,
        email: str,
        first_name: str,
        last_name: str,
        image_url: str,
    ) -> Student: ...
    async def set_organization(
        self,
        student_id: str,
        *,
        organization_id: str,
        role: str,
        accepted_date: datetime | None = None,
    ) -> Student: ...
    async def list_by_organization(self, organization_id: str) -> list[Student]: ...


class InMemoryStudentRepo:
    def __init__(self) -> None:
        self._by_id: dict[str, Student] = {}

    async def get_by_id(self, student_id: str) -> Student | None:
        return self._by_id.get(student_id)

    async def get_by_clerk_id(self, clerk_id: str) -> Student | None:
        return next((s for s in self._by_id.values() if s.clerk_id == clerk_id), None)

    async def add(self, student: Student) -> Student:
        if await self.get_by_clerk_id(student.clerk_id) is not None:
            raise ValueError("clerk_id already exists")
        self._by_id[student.id] = student
        return student

    async def update_profile(
        self,
        student_id: str,
        *,
        email: str,
        first_name: str,
        last_name: str,
        image_url: str,
    ) -> Student:
        updated = replace(
            self._get(student_id),
            email=email,
            first_name=first_name,
            last_name=last_name,
            image_url=image_url,
        )
        self._by_id[student_id] = updated
        return updated

    async def set_organization(
        self,
        student_id: str,
        *,
        organization_id: str,
        role: str,
        accepted_date: datetime | None = None,
    ) -> Student:
        current = self._get(student_id)
        updated = replace(
            current,
            organization_id=organization_id,
            role=role,
            accepted_date=accepted_date or current.accepted_date,
        )
        self._by_id[student_id] = updated
        return updated

    async def list_by_organization(self, organization_id: str) -> list[Student]:
        return [s for s in self._by_id.values() if s.organization_id == organization_id]

    def _get(self, student_id: str) -> Student:
        s = self._by_id.get(student_id)
        if s is None:
            raise KeyError("student not found")
        return s
