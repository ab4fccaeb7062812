"""The set of typed repos every service works against.

Services take a RecordStore instead of six separate repos so that a test
can hand them one fresh in-memory bundle, and so the choice between
Sanity and in-memory storage is made in exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.db.sanity import SanityClient, sanity_client
from app.repos.course_repo import CourseRepo, InMemoryCourseRepo
from app.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from app.repos.org_course_repo import InMemoryOrgCourseRepo, OrgCourseRepo
from app.repos.org_repo import InMemoryOrgRepo, OrgRepo
from app.repos.sanity_course_repo import SanityCourseRepo
from app.repos.sanity_enrollment_repo import SanityEnrollmentRepo
from app.repos.sanity_org_course_repo import SanityOrgCourseRepo
from app.repos.sanity_org_repo import SanityOrgRepo
from app.repos.sanity_student_repo import SanityStudentRepo
from app.repos.sanity_subscription_repo import SanitySubscriptionRepo
from app.repos.student_repo import InMemoryStudentRepo, StudentRepo
from app.repos.subscription_repo import InMemorySubscriptionRepo, SubscriptionRepo


@dataclass(frozen=True, slots=True)
class RecordStore:
    students: StudentRepo
    organizations: OrgRepo
    subscriptions: SubscriptionRepo
    enrollments: EnrollmentRepo
    org_courses: OrgCourseRepo
    courses: CourseRepo


def in_memory_record_store() -> RecordStore:
    return RecordStore(
        students=InMemoryStudentRepo(),
        organizations=InMemoryOrgRepo(),
        subscriptions=InMemorySubscriptionRepo(),
        enrollments=InMemoryEnrollmentRepo(),
        org_courses=InMemoryOrgCourseRepo(),
        courses=InMemoryCourseRepo(),
    )


def sanity_record_store(client: SanityClient) -> RecordStore:
    return RecordStore(
        students=SanityStudentRepo(client),
        organizations=SanityOrgRepo(client),
        subscriptions=SanitySubscriptionRepo(client),
        enrollments=SanityEnrollmentRepo(client),
        org_courses=SanityOrgCourseRepo(client),
        courses=SanityCourseRepo(client),
    )


# ---------------------------------------------------------------------------
# Module-level singleton: Sanity when configured, else in-memory
# ---------------------------------------------------------------------------

if sanity_client is not None:
    record_store = sanity_record_store(sanity_client)
else:
    record_store = in_memory_record_store()
