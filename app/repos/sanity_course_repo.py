"""Sanity implementation of CourseRepo (pricing fields only)."""

from __future__ import annotations

from typing import Any

from app.db.sanity import SanityClient
from app.models.course import Course

_BY_ID = (
    '*[_type == "course" && _id == $id][0]'
    "{_id, title, slug, description, price, individualPrice,"
    " organizationPrice, isFree}"
)


class SanityCourseRepo:
    def __init__(self, client: SanityClient) -> None:
        self._client = client

    async def get_by_id(self, course_id: str) -> Course | None:
        doc = await self._client.fetch(_BY_ID, {"id": course_id})
        return _doc_to_course(doc) if doc else None


def _doc_to_course(doc: dict[str, Any]) -> Course:
    slug = doc.get("slug") or {}
    return Course(
        id=doc["_id"],
        title=doc.get("title") or "",
        slug=slug.get("current", "") if isinstance(slug, dict) else str(slug),
        description=doc.get("description") or "",
        price=doc.get("price"),
        individual_price=doc.get("individualPrice"),
        organization_price=doc.get("organizationPrice"),
        is_free=bool(doc.get("isFree")),
    )
