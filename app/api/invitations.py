"""Organization invitation endpoints.

Admin side (org-scoped, admin only):
  POST   /v1/orgs/{org_id}/invitations
  GET    /v1/orgs/{org_id}/invitations
  DELETE /v1/orgs/{org_id}/invitations/{invitation_id}

Invitee side:
  GET    /v1/invitations/{invitation_id}          (public, the join page)
  POST   /v1/invitations/{invitation_id}/accept   (signed in)

``org_id`` is the identity provider's organization id.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from app.api.dependencies import require_org_admin, require_user
from app.models.principal import Principal
from app.services.identity_provider import IdentityProviderError
from app.services.invitations import (
    InvitationAlreadyUsedError,
    InvitationNotFoundError,
    InvitationRequestError,
    invitation_manager,
)
from app.services.membership_sync import MissingRecordError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invitations"])


class InviteIn(BaseModel):
    emails: list[str] = Field(min_length=1, max_length=50)
    role: Literal["admin", "employee"] = "employee"


class InviteResultOut(BaseModel):
    email: str
    ok: bool
    invitation_id: str | None = None
    link: str | None = None
    error: str | None = None
    email_error: str | None = None


class InviteReportOut(BaseModel):
    succeeded: int
    failed: int
    results: list[InviteResultOut]
    email_warnings: list[str]


class InvitationOut(BaseModel):
    id: str
    email: str
    role: str
    status: str
    created_at: datetime
    expires_at: datetime


class InvitationDetailsOut(BaseModel):
    invitation_id: str
    email: str
    organization_id: str
    organization_name: str
    role: str
    created_at: datetime
    expires_at: datetime


class AcceptOut(BaseModel):
    organization_id: str
    organization_name: str
    role: str
    student_id: str
    already_member: bool


def _provider_unavailable(e: IdentityProviderError) -> HTTPException:
    logger.error("Identity provider call failed: %s", e)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Identity provider unavailable",
    )


# ---------------------------------------------------------------------------
# Admin side
# ---------------------------------------------------------------------------


@router.post(
    "/v1/orgs/{org_id}/invitations",
    response_model=InviteReportOut,
    status_code=status.HTTP_201_CREATED,
)
async def issue_invitations(
    org_id: str,
    payload: InviteIn,
    principal: Annotated[Principal, Depends(require_org_admin)],
) -> InviteReportOut:
    try:
        report = await invitation_manager.issue(
            org_id,
            payload.emails,
            role=payload.role,
            inviter_user_id=principal.user_id,
        )
    except InvitationRequestError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(e)
        ) from None
    except IdentityProviderError as e:
        raise _provider_unavailable(e) from None

    if report.succeeded == 0:
        # Nothing was created: surface the first reason instead of a report
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=report.first_error or "No invitations could be created",
        )
    return InviteReportOut(
        succeeded=report.succeeded,
        failed=report.failed,
        results=[
            InviteResultOut(
                email=r.email,
                ok=r.ok,
                invitation_id=r.invitation_id,
                link=r.link,
                error=r.error,
                email_error=r.email_error,
            )
            for r in report.results
        ],
        email_warnings=report.email_warnings,
    )


@router.get("/v1/orgs/{org_id}/invitations", response_model=list[InvitationOut])
async def list_invitations(
    org_id: str,
    principal: Annotated[Principal, Depends(require_org_admin)],
) -> list[InvitationOut]:
    try:
        views = await invitation_manager.list_for_organization(org_id)
    except IdentityProviderError as e:
        raise _provider_unavailable(e) from None
    return [
        InvitationOut(
            id=v.id,
            email=v.email,
            role=v.role,
            status=v.status,
            created_at=v.created_at,
            expires_at=v.expires_at,
        )
        for v in views
    ]


@router.delete(
    "/v1/orgs/{org_id}/invitations/{invitation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def revoke_invitation(
    org_id: str,
    invitation_id: str,
    principal: Annotated[Principal, Depends(require_org_admin)],
) -> Response:
    try:
        await invitation_manager.revoke(
            org_id, invitation_id, requesting_user_id=principal.user_id
        )
    except InvitationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found"
        ) from None
    except IdentityProviderError as e:
        if e.status_code == status.HTTP_400_BAD_REQUEST:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail=str(e)
            ) from None
        raise _provider_unavailable(e) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Invitee side
# ---------------------------------------------------------------------------


@router.get("/v1/invitations/{invitation_id}", response_model=InvitationDetailsOut)
async def validate_invitation(invitation_id: str) -> InvitationDetailsOut:
    try:
        details = await invitation_manager.validate(invitation_id)
    except InvitationNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(e)
        ) from None
    except InvitationAlreadyUsedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(e)
        ) from None
    except IdentityProviderError as e:
        raise _provider_unavailable(e) from None
    return InvitationDetailsOut(
        invitation_id=details.invitation_id,
        email=details.email,
        organization_id=details.organization_id,
        organization_name=details.organization_name,
        role=details.role,
        created_at=details.created_at,
        expires_at=details.expires_at,
    )


@router.post("/v1/invitations/{invitation_id}/accept", response_model=AcceptOut)
async def accept_invitation(
    invitation_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> AcceptOut:
    try:
        result = await invitation_manager.accept(principal.user_id, invitation_id)
    except InvitationNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(e)
        ) from None
    except InvitationAlreadyUsedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(e)
        ) from None
    except MissingRecordError as e:
        # The organization signed up with the provider but has no local record
        logger.error("Accept failed user=%s: %s", principal.user_id, e)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(e)
        ) from None
    except IdentityProviderError as e:
        raise _provider_unavailable(e) from None

    logger.info(
        "Invitation accepted user=%s org=%s already_member=%s",
        principal.user_id,
        result.organization_id,
        result.already_member,
    )
    return AcceptOut(
        organization_id=result.organization_id,
        organization_name=result.organization_name,
        role=result.role,
        student_id=result.student_id,
        already_member=result.already_member,
    )
