"""Shapes returned by the identity provider adapter."""

from __future__ import annotations

from dataclasses import dataclass

ADMIN_ROLE_CLAIMS = frozenset({"org:admin", "admin"})


@dataclass(frozen=True, slots=True)
class ExternalUser:
    id: str
    email: str | None  # primary address; None when the profile has none
    first_name: str = ""
    last_name: str = ""
    image_url: str = ""


@dataclass(frozen=True, slots=True)
class ExternalOrganization:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class ExternalMembership:
    organization_id: str
    role: str
    organization_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLE_CLAIMS


def local_role(role_claim: str | None) -> str:
    """Map a provider role claim onto the local admin|employee roles."""
    if role_claim in ADMIN_ROLE_CLAIMS:
        return "admin"
    return "employee"


def provider_role(local: str) -> str:
    return "org:admin" if local == "admin" else "org:member"
