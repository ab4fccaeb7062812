from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import httpx
import pytest

from app.db.sanity import RecordStoreError, SanityClient, parse_datetime
from app.models.enrollment import Enrollment
from app.repos.sanity_enrollment_repo import SanityEnrollmentRepo
from app.repos.sanity_student_repo import SanityStudentRepo


class FakeSanity:
    """Records every request and answers with canned bodies."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responses.pop(0)

    def client(self) -> SanityClient:
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(self),
            base_url="https://proj.api.sanity.io/v2024-01-01",
        )
        return SanityClient(project_id="proj", dataset="production", token=None, http=http)

    def mutations(self, index: int = -1) -> list[dict]:
        return json.loads(self.requests[index].content)["mutations"]


def _mutation_result(document: dict) -> httpx.Response:
    return httpx.Response(
        200, json={"results": [{"id": document["_id"], "document": document}]}
    )


# ---- client ----


def test_fetch_json_encodes_params() -> None:
    fake = FakeSanity(httpx.Response(200, json={"result": {"_id": "s1"}}))

    result = asyncio.run(fake.client().fetch("*[clerkId == $clerkId][0]", {"clerkId": "user_1"}))

    assert result == {"_id": "s1"}
    request = fake.requests[0]
    assert request.url.path == "/v2024-01-01/data/query/production"
    assert request.url.params["$clerkId"] == '"user_1"'


def test_patch_sends_set_and_unset() -> None:
    fake = FakeSanity(_mutation_result({"_id": "org-1", "name": "Acme"}))

    doc = asyncio.run(
        fake.client().patch("org-1").set({"name": "Acme"}).unset(["trialEndsAt"]).commit()
    )

    assert doc["name"] == "Acme"
    assert fake.mutations() == [
        {"patch": {"id": "org-1", "set": {"name": "Acme"}, "unset": ["trialEndsAt"]}}
    ]
    assert fake.requests[0].url.params["returnDocuments"] == "true"


def test_error_status_is_record_store_error() -> None:
    fake = FakeSanity(httpx.Response(403, json={"error": "forbidden"}))

    with pytest.raises(RecordStoreError) as exc_info:
        asyncio.run(fake.client().delete("doc-1"))

    assert exc_info.value.status_code == 403


def test_parse_datetime_accepts_trailing_z() -> None:
    assert parse_datetime("2025-03-01T12:00:00Z") == datetime(2025, 3, 1, 12, tzinfo=UTC)
    assert parse_datetime(None) is None


# ---- repos ----


def test_student_lookup_by_clerk_id() -> None:
    fake = FakeSanity(
        httpx.Response(
            200,
            json={
                "result": {
                    "_id": "student-1",
                    "clerkId": "user_1",
                    "email": "ada@example.com",
                    "firstName": "Ada",
                    "organization": {"_type": "reference", "_ref": "org-1"},
                    "role": "admin",
                    "acceptedDate": "2025-01-02T00:00:00Z",
                }
            },
        )
    )

    student = asyncio.run(SanityStudentRepo(fake.client()).get_by_clerk_id("user_1"))

    assert student.id == "student-1"
    assert student.organization_id == "org-1"
    assert student.role == "admin"
    assert student.accepted_date == datetime(2025, 1, 2, tzinfo=UTC)
    assert student.last_name == ""


def test_student_lookup_miss_is_none() -> None:
    fake = FakeSanity(httpx.Response(200, json={"result": None}))

    assert asyncio.run(SanityStudentRepo(fake.client()).get_by_clerk_id("user_x")) is None


def test_set_organization_writes_reference() -> None:
    fake = FakeSanity(
        _mutation_result(
            {
                "_id": "student-1",
                "clerkId": "user_1",
                "email": "ada@example.com",
                "organization": {"_type": "reference", "_ref": "org-1"},
                "role": "employee",
            }
        )
    )

    student = asyncio.run(
        SanityStudentRepo(fake.client()).set_organization(
            "student-1", organization_id="org-1", role="employee"
        )
    )

    assert student.organization_id == "org-1"
    assert fake.mutations()[0]["patch"]["set"] == {
        "organization": {"_type": "reference", "_ref": "org-1"},
        "role": "employee",
    }


def test_enrollment_add_uses_references() -> None:
    enrolled_at = datetime(2025, 5, 1, tzinfo=UTC)
    enrollment = Enrollment(
        id="enrollment-1",
        student_id="student-1",
        course_id="course-1",
        amount=49,
        payment_id="cs_1",
        enrolled_at=enrolled_at,
    )
    stored = {
        "_id": "enrollment-1",
        "_type": "enrollment",
        "student": {"_type": "reference", "_ref": "student-1"},
        "course": {"_type": "reference", "_ref": "course-1"},
        "amount": 49,
        "paymentId": "cs_1",
        "enrolledAt": enrolled_at.isoformat(),
    }
    fake = FakeSanity(_mutation_result(stored))

    result = asyncio.run(SanityEnrollmentRepo(fake.client()).add(enrollment))

    assert result == enrollment
    assert fake.mutations() == [{"create": stored}]


def test_enrollment_falls_back_to_created_at() -> None:
    fake = FakeSanity(
        httpx.Response(
            200,
            json={
                "result": [
                    {
                        "_id": "enrollment-old",
                        "student": {"_ref": "student-1"},
                        "course": {"_ref": "course-1"},
                        "paymentId": "cs_old",
                        "_createdAt": "2024-06-01T00:00:00Z",
                    }
                ]
            },
        )
    )

    [enrollment] = asyncio.run(
        SanityEnrollmentRepo(fake.client()).list_by_payment_id("cs_old")
    )

    assert enrollment.amount == 0
    assert enrollment.enrolled_at == datetime(2024, 6, 1, tzinfo=UTC)
