from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

# The identity provider does not expose an expiry; pending invitations
# older than this are treated as expired everywhere they are shown or used.
INVITATION_TTL = timedelta(days=7)

INVITATION_STATUSES = ("pending", "accepted", "revoked")

INVITE_PATH = "/employee-join"


@dataclass(frozen=True, slots=True)
class Invitation:
    """Organization invitation as reported by the identity provider."""

    id: str
    organization_id: str
    email_address: str
    role: str  # provider role claim, e.g. org:admin | org:member
    status: str  # pending|accepted|revoked
    created_at: datetime

    @property
    def expires_at(self) -> datetime:
        return self.created_at + INVITATION_TTL

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return self.status == "pending" and now > self.expires_at

    def effective_status(self, now: datetime | None = None) -> str:
        """Provider status, with stale pending invitations reported as expired."""
        if self.is_expired(now):
            return "expired"
        return self.status


def invitation_link(base_url: str, invitation_id: str) -> str:
    return f"{base_url.rstrip('/')}{INVITE_PATH}/{invitation_id}"
