from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller extracted from a validated session token.

    Carried through the request via FastAPI's dependency system.

    Always set:
        user_id: identity-provider user id (the token subject)

    Set by require_org_admin when the request is organization-scoped:
        org_id: identity-provider organization id from the path
        org_role: the caller's role claim in that organization
    """

    user_id: str
    session_id: str | None = None
    org_id: str | None = None
    org_role: str | None = None
