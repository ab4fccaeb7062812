from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

ORG_ROLES = ("admin", "employee")


@dataclass(frozen=True, slots=True)
class Student:
    """Local mirror of an identity-provider user.

    ``organization_id`` is the record id of the Organization document, not
    the provider's organization id.  A student belongs to at most one
    organization at a time.
    """

    id: str
    clerk_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    image_url: str = ""
    organization_id: str | None = None
    role: str | None = None  # admin|employee, only with an organization
    invited_date: datetime | None = None
    accepted_date: datetime | None = None
    created_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email

    @staticmethod
    def new(
        *,
        clerk_id: str,
        email: str,
        first_name: str = "",
        last_name: str = "",
        image_url: str = "",
    ) -> Student:
        # Provider profiles without a first name fall back to the mailbox part
        return Student(
            id=f"student-{uuid4()}",
            clerk_id=clerk_id,
            email=email,
            first_name=first_name or email.split("@")[0],
            last_name=last_name,
            image_url=image_url,
            created_at=datetime.now(UTC),
        )
