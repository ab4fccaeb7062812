from __future__ import annotations

from dataclasses import dataclass, field

NO_ACCESS_REASON = "No active subscription or individual enrollment found"
STUDENT_NOT_FOUND_REASON = "Student record not found"
ERROR_REASON = "Error checking access permissions"


@dataclass(frozen=True, slots=True)
class AccessResult:
    has_access: bool
    access_type: str  # organization|individual|none
    organization_name: str | None = None
    subscription_plan: str | None = None
    reason: str | None = None

    @staticmethod
    def denied(reason: str | None = None) -> AccessResult:
        return AccessResult(has_access=False, access_type="none", reason=reason)


@dataclass(frozen=True, slots=True)
class AccessibleCourses:
    """Everything a user can open, for dashboards.

    ``all_courses`` is set when a platform-wide subscription applies, in
    which case ``course_ids`` lists only the explicit unlocks/enrollments.
    """

    access_type: str  # organization|individual|both|none
    course_ids: tuple[str, ...] = ()
    all_courses: bool = False
    organization_name: str | None = None
    subscription_plan: str | None = None
    unlocked_course_ids: frozenset[str] = field(default_factory=frozenset)
