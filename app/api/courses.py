"""Course purchase endpoints.

  POST /v1/courses/{course_id}/checkout                  individual purchase
  POST /v1/orgs/{org_id}/courses/{course_id}/checkout    organization purchase

Both return a URL to send the browser to: the payment provider's hosted
checkout, or for free courses the course page itself (already enrolled).
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from app.api.dependencies import require_org_admin, require_user
from app.models.principal import Principal
from app.services.checkout import (
    AlreadyHasAccessError,
    CheckoutResult,
    CourseNotFoundError,
    checkout_service,
)
from app.services.identity_provider import IdentityProviderError
from app.services.membership_sync import MissingRecordError
from app.services.organizations import OrganizationNotFoundError
from app.services.payment_provider import PaymentProviderError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["courses"])


class CheckoutOut(BaseModel):
    url: str
    session_id: str | None = None
    enrolled: bool = False


def _checkout_out(result: CheckoutResult) -> CheckoutOut:
    return CheckoutOut(
        url=result.url, session_id=result.session_id, enrolled=result.enrolled
    )


def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, (CourseNotFoundError, OrganizationNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, AlreadyHasAccessError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, MissingRecordError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(e)
        )
    logger.error("Checkout provider call failed: %s", e)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY, detail="Upstream provider error"
    )


_CHECKOUT_ERRORS = (
    CourseNotFoundError,
    OrganizationNotFoundError,
    AlreadyHasAccessError,
    MissingRecordError,
    IdentityProviderError,
    PaymentProviderError,
)


@router.post(
    "/v1/courses/{course_id}/checkout",
    response_model=CheckoutOut,
    status_code=status.HTTP_201_CREATED,
)
async def individual_checkout(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> CheckoutOut:
    try:
        result = await checkout_service.start_individual_checkout(
            principal.user_id, course_id
        )
    except _CHECKOUT_ERRORS as e:
        raise _to_http(e) from None
    return _checkout_out(result)


@router.post(
    "/v1/orgs/{org_id}/courses/{course_id}/checkout",
    response_model=CheckoutOut,
    status_code=status.HTTP_201_CREATED,
)
async def organization_checkout(
    org_id: str,
    course_id: str,
    principal: Annotated[Principal, Depends(require_org_admin)],
) -> CheckoutOut:
    try:
        result = await checkout_service.start_organization_checkout(
            principal.user_id, org_id, course_id
        )
    except _CHECKOUT_ERRORS as e:
        raise _to_http(e) from None
    return _checkout_out(result)
