from __future__ import annotations

import logging
from dataclasses import replace
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.models.identity import ADMIN_ROLE_CLAIMS, ExternalMembership
from app.models.principal import Principal
from app.services import session_tokens
from app.services.identity_provider import IdentityProviderError, identity_provider

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# Clerk's frontend SDK keeps the session token in this cookie
SESSION_COOKIE = "__session"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_user(
    request: Request,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> Principal:
    """Extract and validate the session token. Returns a Principal.

    The token is read from the Authorization header, falling back to the
    session cookie for same-site browser requests.
    """
    raw_token = credentials.credentials if credentials else None
    if not raw_token:
        raw_token = request.cookies.get(SESSION_COOKIE)
    if not raw_token:
        raise _unauthorized("Not authenticated")

    try:
        claims = session_tokens.decode_session_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired session token rejected")
        raise _unauthorized("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid session token rejected: %s", e)
        raise _unauthorized("Invalid token") from None

    principal = Principal(user_id=claims["sub"], session_id=claims.get("sid"))
    logger.debug("Session validated for user=%s", principal.user_id)
    return principal


# ---------------------------------------------------------------------------
# Org-scoped access guards
# ---------------------------------------------------------------------------


async def _membership(user_id: str, org_id: str) -> ExternalMembership | None:
    try:
        memberships = await identity_provider.list_organization_memberships(user_id)
    except IdentityProviderError as e:
        logger.error("Membership lookup failed user=%s: %s", user_id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Identity provider unavailable",
        ) from None
    return next((m for m in memberships if m.organization_id == org_id), None)


async def require_org_member(
    org_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> Principal:
    """Resolve org context from the ``org_id`` path parameter.

    Returns a new Principal enriched with org_id and org_role.
    Raises 403 if the user is not a member of the org.
    """
    membership = await _membership(principal.user_id, org_id)
    if membership is None:
        logger.warning(
            "Access denied: user=%s not a member of org=%s",
            principal.user_id,
            org_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this organization",
        )
    return replace(principal, org_id=org_id, org_role=membership.role)


async def require_org_admin(
    principal: Annotated[Principal, Depends(require_org_member)],
) -> Principal:
    """Demand the admin role in the path organization.

    Usage::

        @router.post("/v1/orgs/{org_id}/invitations")
        async def invite(principal: Annotated[Principal, Depends(require_org_admin)]):
            ...
    """
    if principal.org_role not in ADMIN_ROLE_CLAIMS:
        logger.warning(
            "Access denied: user=%s org_role=%s required=admin org=%s",
            principal.user_id,
            principal.org_role,
            principal.org_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Organization admin required",
        )
    return principal
