"""Identity provider adapter (Clerk).

Clerk owns users, organizations, memberships and invitations.  This
service never stores memberships or invitations itself: every access
decision asks Clerk for the caller's current memberships, and the
invitation lifecycle is a thin layer over Clerk's invitation API.

THE SEAM
--------
IdentityProvider is a Protocol with two implementations:

  ClerkIdentityProvider     Clerk Backend API over httpx.  Used whenever
                            CLERK_SECRET_KEY is set.
  InMemoryIdentityProvider  Dict-backed stand-in for dev and tests, with
                            seeding helpers (add_user, add_organization,
                            add_membership) and a fail_with switch to
                            simulate an outage.

Callers only see IdentityProviderError.  Clerk reports failures as
``{"errors": [{"code": ..., "message": ...}]}``; the first entry's code
is kept so callers can recognise "already a member" without parsing
messages.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

import httpx

from app.core.config import SETTINGS
from app.models.identity import ExternalMembership, ExternalOrganization, ExternalUser
from app.models.invitation import Invitation

logger = logging.getLogger(__name__)

CLERK_API_URL = "https://api.clerk.com/v1"

# Single page per list call; invitation lookups scan at most this many orgs
_PAGE_LIMIT = 100


class IdentityProviderError(Exception):
    def __init__(
        self, message: str, *, status_code: int | None = None, code: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    @property
    def is_already_member(self) -> bool:
        return bool(self.code and self.code.startswith("already_a_member"))

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


@runtime_checkable
class IdentityProvider(Protocol):
    async def get_user(self, user_id: str) -> ExternalUser: ...

    async def list_organization_memberships(
        self, user_id: str
    ) -> list[ExternalMembership]: ...

    async def list_organizations(self) -> list[ExternalOrganization]: ...

    async def get_organization(self, organization_id: str) -> ExternalOrganization: ...

    async def create_organization_invitation(
        self,
        organization_id: str,
        *,
        email: str,
        role: str,
        inviter_user_id: str,
    ) -> Invitation: ...

    async def list_organization_invitations(
        self, organization_id: str, *, status: str | None = None
    ) -> list[Invitation]: ...

    async def create_organization_membership(
        self, organization_id: str, *, user_id: str, role: str
    ) -> None: ...

    async def revoke_invitation(
        self, organization_id: str, invitation_id: str, *, requesting_user_id: str
    ) -> None: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryIdentityProvider:
    """Per-process stand-in for Clerk.

    Invitations keep Clerk's behaviour of accepting a membership create
    for an existing member with an ``already_a_member_in_organization``
    error, so the accept path can be tested end to end.
    """

    def __init__(self) -> None:
        self._users: dict[str, ExternalUser] = {}
        self._orgs: dict[str, ExternalOrganization] = {}
        # (org_id, user_id) -> role claim
        self._memberships: dict[tuple[str, str], str] = {}
        self._invitations: dict[str, Invitation] = {}
        self.fail_with: IdentityProviderError | None = None

    # --- seeding helpers (dev/test only) ---

    def add_user(self, user: ExternalUser) -> None:
        self._users[user.id] = user

    def add_organization(self, org: ExternalOrganization) -> None:
        self._orgs[org.id] = org

    def add_membership(self, organization_id: str, user_id: str, role: str) -> None:
        self._memberships[(organization_id, user_id)] = role

    def add_invitation(self, invitation: Invitation) -> None:
        self._invitations[invitation.id] = invitation

    def reset(self) -> None:
        self._users.clear()
        self._orgs.clear()
        self._memberships.clear()
        self._invitations.clear()
        self.fail_with = None

    # --- IdentityProvider ---

    async def get_user(self, user_id: str) -> ExternalUser:
        self._check_available()
        user = self._users.get(user_id)
        if user is None:
            raise IdentityProviderError(
                "user not found", status_code=404, code="resource_not_found"
            )
        return user

    async def list_organization_memberships(
        self, user_id: str
    ) -> list[ExternalMembership]:
        self._check_available()
        return [
            ExternalMembership(
                organization_id=org_id,
                role=role,
                organization_name=self._orgs[org_id].name
                if org_id in self._orgs
                else "",
            )
            for (org_id, uid), role in self._memberships.items()
            if uid == user_id
        ]

    async def list_organizations(self) -> list[ExternalOrganization]:
        self._check_available()
        return list(self._orgs.values())

    async def get_organization(self, organization_id: str) -> ExternalOrganization:
        self._check_available()
        org = self._orgs.get(organization_id)
        if org is None:
            raise IdentityProviderError(
                "organization not found", status_code=404, code="resource_not_found"
            )
        return org

    async def create_organization_invitation(
        self,
        organization_id: str,
        *,
        email: str,
        role: str,
        inviter_user_id: str,
    ) -> Invitation:
        self._check_available()
        await self.get_organization(organization_id)
        for inv in self._invitations.values():
            if (
                inv.organization_id == organization_id
                and inv.email_address == email
                and inv.status == "pending"
            ):
                raise IdentityProviderError(
                    "an invitation for this email is already pending",
                    status_code=400,
                    code="duplicate_record",
                )
        invitation = Invitation(
            id=f"orginv_{uuid4().hex}",
            organization_id=organization_id,
            email_address=email,
            role=role,
            status="pending",
            created_at=datetime.now(UTC),
        )
        self._invitations[invitation.id] = invitation
        return invitation

    async def list_organization_invitations(
        self, organization_id: str, *, status: str | None = None
    ) -> list[Invitation]:
        self._check_available()
        return [
            inv
            for inv in self._invitations.values()
            if inv.organization_id == organization_id
            and (status is None or inv.status == status)
        ]

    async def create_organization_membership(
        self, organization_id: str, *, user_id: str, role: str
    ) -> None:
        self._check_available()
        await self.get_organization(organization_id)
        if (organization_id, user_id) in self._memberships:
            raise IdentityProviderError(
                "user is already a member of this organization",
                status_code=400,
                code="already_a_member_in_organization",
            )
        self._memberships[(organization_id, user_id)] = role
        # Clerk marks the matching pending invitation accepted
        user = self._users.get(user_id)
        if user is not None and user.email:
            for inv in list(self._invitations.values()):
                if (
                    inv.organization_id == organization_id
                    and inv.email_address == user.email
                    and inv.status == "pending"
                ):
                    self._invitations[inv.id] = replace(inv, status="accepted")

    async def revoke_invitation(
        self, organization_id: str, invitation_id: str, *, requesting_user_id: str
    ) -> None:
        self._check_available()
        inv = self._invitations.get(invitation_id)
        if inv is None or inv.organization_id != organization_id:
            raise IdentityProviderError(
                "invitation not found", status_code=404, code="resource_not_found"
            )
        if inv.status != "pending":
            raise IdentityProviderError(
                "only pending invitations can be revoked",
                status_code=400,
                code="invitation_not_pending",
            )
        self._invitations[invitation_id] = replace(inv, status="revoked")

    def _check_available(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with


# ---------------------------------------------------------------------------
# Clerk Backend API implementation
# ---------------------------------------------------------------------------


class ClerkIdentityProvider:
    """Satisfies the IdentityProvider Protocol against api.clerk.com."""

    def __init__(
        self, secret_key: str, *, http: httpx.AsyncClient | None = None
    ) -> None:
        self._http = http or httpx.AsyncClient(
            base_url=CLERK_API_URL,
            headers={"Authorization": f"Bearer {secret_key}"},
            timeout=httpx.Timeout(10.0),
        )

    async def get_user(self, user_id: str) -> ExternalUser:
        return _to_user(await self._request("GET", f"/users/{user_id}"))

    async def list_organization_memberships(
        self, user_id: str
    ) -> list[ExternalMembership]:
        body = await self._request(
            "GET",
            f"/users/{user_id}/organization_memberships",
            params={"limit": _PAGE_LIMIT},
        )
        memberships = []
        for m in body.get("data", []):
            org = m.get("organization") or {}
            memberships.append(
                ExternalMembership(
                    organization_id=org.get("id", ""),
                    role=m.get("role", ""),
                    organization_name=org.get("name", ""),
                )
            )
        return memberships

    async def list_organizations(self) -> list[ExternalOrganization]:
        body = await self._request(
            "GET", "/organizations", params={"limit": _PAGE_LIMIT}
        )
        return [
            ExternalOrganization(id=o["id"], name=o.get("name", ""))
            for o in body.get("data", [])
        ]

    async def get_organization(self, organization_id: str) -> ExternalOrganization:
        body = await self._request("GET", f"/organizations/{organization_id}")
        return ExternalOrganization(id=body["id"], name=body.get("name", ""))

    async def create_organization_invitation(
        self,
        organization_id: str,
        *,
        email: str,
        role: str,
        inviter_user_id: str,
    ) -> Invitation:
        body = await self._request(
            "POST",
            f"/organizations/{organization_id}/invitations",
            json={
                "email_address": email,
                "role": role,
                "inviter_user_id": inviter_user_id,
            },
        )
        return _to_invitation(body, organization_id)

    async def list_organization_invitations(
        self, organization_id: str, *, status: str | None = None
    ) -> list[Invitation]:
        params: dict[str, Any] = {"limit": _PAGE_LIMIT}
        if status:
            params["status"] = status
        body = await self._request(
            "GET", f"/organizations/{organization_id}/invitations", params=params
        )
        return [_to_invitation(i, organization_id) for i in body.get("data", [])]

    async def create_organization_membership(
        self, organization_id: str, *, user_id: str, role: str
    ) -> None:
        await self._request(
            "POST",
            f"/organizations/{organization_id}/memberships",
            json={"user_id": user_id, "role": role},
        )

    async def revoke_invitation(
        self, organization_id: str, invitation_id: str, *, requesting_user_id: str
    ) -> None:
        await self._request(
            "POST",
            f"/organizations/{organization_id}/invitations/{invitation_id}/revoke",
            json={"requesting_user_id": requesting_user_id},
        )

    async def ping(self) -> None:
        await self._request("GET", "/organizations", params={"limit": 1})

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Clerk %s %s failed: %s", method, path, e)
            raise IdentityProviderError(f"identity provider unreachable: {e}") from e

        if resp.status_code >= 400:
            code, message = _first_error(resp)
            logger.warning(
                "Clerk %s %s returned status=%d code=%s",
                method,
                path,
                resp.status_code,
                code,
            )
            raise IdentityProviderError(
                message, status_code=resp.status_code, code=code
            )
        return resp.json()


def _first_error(resp: httpx.Response) -> tuple[str | None, str]:
    try:
        errors = resp.json().get("errors") or []
    except ValueError:
        errors = []
    if not errors:
        return None, f"identity provider returned {resp.status_code}"
    first = errors[0]
    return first.get("code"), first.get("long_message") or first.get("message", "")


def _to_user(body: dict[str, Any]) -> ExternalUser:
    return ExternalUser(
        id=body["id"],
        email=primary_email(body),
        first_name=body.get("first_name") or "",
        last_name=body.get("last_name") or "",
        image_url=body.get("image_url") or "",
    )


def primary_email(user_payload: dict[str, Any]) -> str | None:
    """Pick the primary address out of a Clerk user payload.

    Falls back to the first address when no primary is flagged, and to
    None when the user has no addresses at all.
    """
    addresses = user_payload.get("email_addresses") or []
    primary_id = user_payload.get("primary_email_address_id")
    for addr in addresses:
        if addr.get("id") == primary_id:
            return addr.get("email_address")
    if addresses:
        return addresses[0].get("email_address")
    return None


def _to_invitation(body: dict[str, Any], organization_id: str) -> Invitation:
    # Clerk timestamps are milliseconds since the epoch
    created_ms = body.get("created_at") or 0
    return Invitation(
        id=body["id"],
        organization_id=body.get("organization_id") or organization_id,
        email_address=body.get("email_address", ""),
        role=body.get("role", ""),
        status=body.get("status", "pending"),
        created_at=datetime.fromtimestamp(created_ms / 1000, tz=UTC),
    )


# ---------------------------------------------------------------------------
# Module-level singleton: Clerk when configured, else in-memory
# ---------------------------------------------------------------------------

if SETTINGS.clerk_secret_key:
    identity_provider: IdentityProvider = ClerkIdentityProvider(
        SETTINGS.clerk_secret_key
    )
else:
    identity_provider = InMemoryIdentityProvider()
