from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol

from app.models.organization import OrganizationCourse


class OrgCourseRepo(Protocol):
    async def get_active(
        self, org_ids: list[str], course_id: str
    ) -> OrganizationCourse | None: ...
    async def get_by_payment_id(self, payment_id: str) -> OrganizationCourse | None: ...
    async def list_active(self, org_ids: list[str]) -> list[OrganizationCourse]: ...
    async def add(self, unlock: OrganizationCourse) -> OrganizationCourse: ...
    async def deactivate(self, unlock_id: str, refunded_at: datetime) -> None: ...


class InMemoryOrgCourseRepo:
    def __init__(self) -> None:
        self._by_id: dict[str, OrganizationCourse] = {}

    async def get_active(
        self, org_ids: list[str], course_id: str
    ) -> OrganizationCourse | None:
        return next(
            (
                u
                for u in await self.list_active(org_ids)
                if u.course_id == course_id
            ),
            None,
        )

    async def get_by_payment_id(self, payment_id: str) -> OrganizationCourse | None:
        return next(
            (u for u in self._by_id.values() if u.payment_id == payment_id), None
        )

    async def list_active(self, org_ids: list[str]) -> list[OrganizationCourse]:
        wanted = set(org_ids)
        return [
            u
            for u in self._by_id.values()
            if u.organization_id in wanted and u.is_active
        ]

    async def add(self, unlock: OrganizationCourse) -> OrganizationCourse:
        self._by_id[unlock.id] = unlock
        return unlock

    async def deactivate(self, unlock_id: str, refunded_at: datetime) -> None:
        u = self._by_id.get(unlock_id)
        if u is None:
            raise KeyError("organization course not found")
        self._by_id[unlock_id] = replace(u, is_active=False, refunded_at=refunded_at)
