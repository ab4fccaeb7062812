from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4


@dataclass(frozen=True, slots=True)
class Enrollment:
    id: str
    student_id: str
    course_id: str
    amount: float
    payment_id: str
    enrolled_at: datetime

    @staticmethod
    def new(
        *, student_id: str, course_id: str, amount: float, payment_id: str
    ) -> Enrollment:
        return Enrollment(
            id=f"enrollment-{uuid4()}",
            student_id=student_id,
            course_id=course_id,
            amount=amount,
            payment_id=payment_id,
            enrolled_at=datetime.now(UTC),
        )
