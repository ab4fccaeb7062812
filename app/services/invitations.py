"""Organization invitation lifecycle.

Invitations live only at the identity provider.  No local copy is kept,
so there is nothing to keep in sync: the cost is that looking an
invitation up by id means scanning every organization's invitation
list.  That is acceptable at the organization counts this platform
serves, and is the place to add an index if it ever is not.

States, as observed here:

    pending ──accept──▶ accepted
       │
       ├──revoke──▶ revoked
       │
       └──(created_at + INVITATION_TTL passes)──▶ expired  (derived)

The invitation id doubles as the invite code in the link we email,
``{BASE_URL}/employee-join/{invitation_id}``, so it must be treated as a
credential: never log full links at INFO.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.core.config import SETTINGS
from app.core.metrics import INVITATIONS_ISSUED
from app.models.identity import local_role, provider_role
from app.models.invitation import Invitation, invitation_link
from app.repos.record_store import RecordStore, record_store
from app.services.identity_provider import (
    IdentityProvider,
    IdentityProviderError,
    identity_provider,
)
from app.services.mailer import Mailer, MailerError, invitation_email, mailer
from app.services.membership_sync import link_student_to_organization

logger = logging.getLogger(__name__)


class InvitationNotFoundError(Exception):
    pass


class InvitationExpiredError(InvitationNotFoundError):
    pass


class InvitationAlreadyUsedError(Exception):
    def __init__(self, status: str) -> None:
        super().__init__(f"This invitation has already been {status}")
        self.status = status


class InvitationRequestError(ValueError):
    """The issue request itself is unusable (no valid addresses, bad role)."""


@dataclass(frozen=True, slots=True)
class InvitationDetails:
    invitation_id: str
    email: str
    organization_id: str
    organization_name: str
    role: str  # local role: admin|employee
    created_at: datetime
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class AddressResult:
    email: str
    invitation_id: str | None = None
    link: str | None = None
    error: str | None = None
    email_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.invitation_id is not None


@dataclass(frozen=True, slots=True)
class IssueReport:
    results: list[AddressResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def first_error(self) -> str | None:
        return next((r.error for r in self.results if r.error), None)

    @property
    def email_warnings(self) -> list[str]:
        return [
            f"{r.email}: {r.email_error}"
            for r in self.results
            if r.ok and r.email_error
        ]


@dataclass(frozen=True, slots=True)
class AcceptResult:
    organization_id: str
    organization_name: str
    role: str
    student_id: str
    already_member: bool = False


@dataclass(frozen=True, slots=True)
class InvitationView:
    id: str
    email: str
    role: str
    status: str  # pending|accepted|revoked|expired
    created_at: datetime
    expires_at: datetime


def normalize_emails(emails: list[str]) -> list[str]:
    """Lower-case, strip and de-duplicate, keeping first-seen order."""
    seen: dict[str, None] = {}
    for raw in emails:
        email = raw.strip().lower()
        if email:
            seen.setdefault(email, None)
    return list(seen)


class InvitationManager:
    def __init__(
        self,
        store: RecordStore,
        identity: IdentityProvider,
        mail: Mailer,
        *,
        base_url: str,
    ) -> None:
        self._store = store
        self._identity = identity
        self._mail = mail
        self._base_url = base_url

    # --- issue ---

    async def issue(
        self,
        organization_id: str,
        emails: list[str],
        *,
        role: str,
        inviter_user_id: str,
    ) -> IssueReport:
        """Invite every address; one failure never stops the others."""
        if role not in ("admin", "employee"):
            raise InvitationRequestError(
                f"role must be admin or employee (got {role!r})"
            )
        addresses = normalize_emails(emails)
        if not addresses:
            raise InvitationRequestError("at least one email address is required")

        org = await self._identity.get_organization(organization_id)
        inviter_name = await self._inviter_name(inviter_user_id)

        created = await asyncio.gather(
            *(
                self._create_one(organization_id, email, role, inviter_user_id)
                for email in addresses
            )
        )
        results = await asyncio.gather(
            *(
                self._notify(r, organization_name=org.name, inviter_name=inviter_name)
                for r in created
            )
        )
        report = IssueReport(results=list(results))
        logger.info(
            "Invitations issued org=%s succeeded=%d failed=%d email_warnings=%d",
            organization_id,
            report.succeeded,
            report.failed,
            len(report.email_warnings),
        )
        return report

    async def _create_one(
        self, organization_id: str, email: str, role: str, inviter_user_id: str
    ) -> AddressResult:
        if "@" not in email:
            INVITATIONS_ISSUED.labels(result="failed").inc()
            return AddressResult(email=email, error="invalid email address")
        try:
            invitation = await self._identity.create_organization_invitation(
                organization_id,
                email=email,
                role=provider_role(role),
                inviter_user_id=inviter_user_id,
            )
        except IdentityProviderError as e:
            logger.warning(
                "Invitation failed org=%s email=%s: %s", organization_id, email, e
            )
            INVITATIONS_ISSUED.labels(result="failed").inc()
            return AddressResult(email=email, error=str(e))

        INVITATIONS_ISSUED.labels(result="created").inc()
        return AddressResult(
            email=email,
            invitation_id=invitation.id,
            link=invitation_link(self._base_url, invitation.id),
        )

    async def _notify(
        self, result: AddressResult, *, organization_name: str, inviter_name: str
    ) -> AddressResult:
        if not result.ok or result.link is None:
            return result
        message = invitation_email(
            to=result.email,
            organization_name=organization_name,
            inviter_name=inviter_name,
            link=result.link,
        )
        try:
            await self._mail.send(message)
        except MailerError as e:
            # The invitation stands; the admin can share the link by hand
            logger.warning("Invitation email failed email=%s: %s", result.email, e)
            INVITATIONS_ISSUED.labels(result="email_failed").inc()
            return AddressResult(
                email=result.email,
                invitation_id=result.invitation_id,
                link=result.link,
                email_error=str(e),
            )
        return result

    async def _inviter_name(self, inviter_user_id: str) -> str:
        try:
            inviter = await self._identity.get_user(inviter_user_id)
        except IdentityProviderError as e:
            logger.warning("Could not load inviter=%s: %s", inviter_user_id, e)
            return "Your team administrator"
        full = f"{inviter.first_name} {inviter.last_name}".strip()
        return full or inviter.email or "Your team administrator"

    # --- validate / accept ---

    async def validate(self, invitation_id: str) -> InvitationDetails:
        invitation, org_name = await self._find(invitation_id)
        if invitation.status != "pending":
            raise InvitationAlreadyUsedError(invitation.status)
        if invitation.is_expired():
            raise InvitationExpiredError("This invitation has expired")
        return InvitationDetails(
            invitation_id=invitation.id,
            email=invitation.email_address,
            organization_id=invitation.organization_id,
            organization_name=org_name,
            role=local_role(invitation.role),
            created_at=invitation.created_at,
            expires_at=invitation.expires_at,
        )

    async def accept(self, user_id: str, invitation_id: str) -> AcceptResult:
        details = await self.validate(invitation_id)
        already_member = False
        try:
            await self._identity.create_organization_membership(
                details.organization_id,
                user_id=user_id,
                role=provider_role(details.role),
            )
        except IdentityProviderError as e:
            if not e.is_already_member:
                raise
            logger.info(
                "User %s already a member of %s, syncing locally",
                user_id,
                details.organization_id,
            )
            already_member = True

        student = await link_student_to_organization(
            self._store,
            self._identity,
            user_id=user_id,
            clerk_organization_id=details.organization_id,
            role_claim=details.role,
        )
        return AcceptResult(
            organization_id=details.organization_id,
            organization_name=details.organization_name,
            role=details.role,
            student_id=student.id,
            already_member=already_member,
        )

    async def _find(self, invitation_id: str) -> tuple[Invitation, str]:
        for org in await self._identity.list_organizations():
            try:
                invitations = await self._identity.list_organization_invitations(
                    org.id
                )
            except IdentityProviderError as e:
                logger.warning(
                    "Skipping org=%s during invitation lookup: %s", org.id, e
                )
                continue
            for invitation in invitations:
                if invitation.id == invitation_id:
                    return invitation, org.name
        raise InvitationNotFoundError("Invitation not found")

    # --- revoke / list ---

    async def revoke(
        self, organization_id: str, invitation_id: str, *, requesting_user_id: str
    ) -> None:
        try:
            await self._identity.revoke_invitation(
                organization_id, invitation_id, requesting_user_id=requesting_user_id
            )
        except IdentityProviderError as e:
            if e.is_not_found:
                raise InvitationNotFoundError("Invitation not found") from e
            raise
        logger.info(
            "Revoked invitation org=%s by=%s", organization_id, requesting_user_id
        )

    async def list_for_organization(
        self, organization_id: str
    ) -> list[InvitationView]:
        now = datetime.now(UTC)
        invitations = await self._identity.list_organization_invitations(
            organization_id
        )
        return [
            InvitationView(
                id=inv.id,
                email=inv.email_address,
                role=local_role(inv.role),
                status=inv.effective_status(now),
                created_at=inv.created_at,
                expires_at=inv.expires_at,
            )
            for inv in sorted(invitations, key=lambda i: i.created_at, reverse=True)
        ]


# Module-level singleton wired to the configured adapters
invitation_manager = InvitationManager(
    record_store, identity_provider, mailer, base_url=SETTINGS.base_url
)
