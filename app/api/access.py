"""Course access endpoints.

Thin wrappers over the access decision engine.  A denied decision is a
normal 200 response with ``has_access: false``; the engine never raises,
so neither does the decision endpoint.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.dependencies import require_user
from app.models.principal import Principal
from app.services.access_service import access_engine

router = APIRouter(prefix="/v1/access", tags=["access"])


class AccessOut(BaseModel):
    course_id: str
    has_access: bool
    access_type: str
    organization_name: str | None = None
    subscription_plan: str | None = None
    reason: str | None = None


class AccessibleCoursesOut(BaseModel):
    access_type: str
    all_courses: bool
    course_ids: list[str]
    organization_name: str | None = None
    subscription_plan: str | None = None


@router.get("/courses/{course_id}", response_model=AccessOut)
async def course_access(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> AccessOut:
    result = await access_engine.decide_access(principal.user_id, course_id)
    return AccessOut(
        course_id=course_id,
        has_access=result.has_access,
        access_type=result.access_type,
        organization_name=result.organization_name,
        subscription_plan=result.subscription_plan,
        reason=result.reason,
    )


@router.get("/courses", response_model=AccessibleCoursesOut)
async def accessible_courses(
    principal: Annotated[Principal, Depends(require_user)],
) -> AccessibleCoursesOut:
    courses = await access_engine.list_accessible_courses(principal.user_id)
    return AccessibleCoursesOut(
        access_type=courses.access_type,
        all_courses=courses.all_courses,
        course_ids=list(courses.course_ids),
        organization_name=courses.organization_name,
        subscription_plan=courses.subscription_plan,
    )
