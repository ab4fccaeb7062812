from __future__ import annotations

from typing import Protocol

from app.models.course import Course


class CourseRepo(Protocol):
    async def get_by_id(self, course_id: str) -> Course | None: ...


class InMemoryCourseRepo:
    """Course catalogue stand-in; tests seed it through add()."""

    def __init__(self) -> None:
        self._by_id: dict[str, Course] = {}

    async def get_by_id(self, course_id: str) -> Course | None:
        return self._by_id.get(course_id)

    def add(self, course: Course) -> None:
        self._by_id[course.id] = course
