"""Organization signup and subscription billing endpoints.

``org_id`` in every path is the identity provider's organization id.  The
organization is created there first (by the frontend SDK); PUT on
/v1/orgs/{org_id} then records it locally and makes the caller its admin.
Repeating the PUT is safe.

Starting a subscription checkout changes nothing locally: access begins
once the payment webhook confirms the subscription.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from app.api.dependencies import require_org_admin, require_org_member
from app.models.organization import Organization, Subscription
from app.models.principal import Principal
from app.services.billing import BillingConflictError, BillingError, billing_service
from app.services.identity_provider import IdentityProviderError
from app.services.membership_sync import MissingRecordError
from app.services.organizations import (
    OrganizationNotFoundError,
    OrganizationSummary,
    organization_service,
)
from app.services.payment_provider import PaymentProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/orgs", tags=["orgs"])

PlanId = Literal["starter", "professional", "enterprise"]


class OrganizationIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    billing_email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class SubscriptionOut(BaseModel):
    id: str
    plan: str
    status: str
    employee_limit: int
    price_per_month: float
    start_date: datetime | None = None
    end_date: datetime | None = None
    cancelled_at: datetime | None = None


class OrganizationOut(BaseModel):
    id: str
    name: str
    clerk_organization_id: str
    billing_email: str
    subscription_status: str
    employee_limit: int
    employee_count: int | None = None
    subscription: SubscriptionOut | None = None


class PlanIn(BaseModel):
    plan: PlanId
    employee_count: int = Field(ge=1)


class EmployeeLimitIn(BaseModel):
    employee_limit: int = Field(ge=1)


class RedirectOut(BaseModel):
    url: str
    session_id: str | None = None


def _subscription_out(sub: Subscription) -> SubscriptionOut:
    return SubscriptionOut(
        id=sub.id,
        plan=sub.plan,
        status=sub.status,
        employee_limit=sub.employee_limit,
        price_per_month=sub.price_per_month,
        start_date=sub.start_date,
        end_date=sub.end_date,
        cancelled_at=sub.cancelled_at,
    )


def _organization_out(
    org: Organization, summary: OrganizationSummary | None = None
) -> OrganizationOut:
    return OrganizationOut(
        id=org.id,
        name=org.name,
        clerk_organization_id=org.clerk_organization_id,
        billing_email=org.billing_email,
        subscription_status=org.subscription_status,
        employee_limit=org.employee_limit,
        employee_count=summary.employee_count if summary else None,
        subscription=_subscription_out(summary.subscription)
        if summary and summary.subscription
        else None,
    )


def _to_http(e: Exception) -> HTTPException:
    """Map a domain or adapter error onto the response the client sees."""
    if isinstance(e, OrganizationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, BillingError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(e)
        )
    if isinstance(e, (BillingConflictError, MissingRecordError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    logger.error("Provider call failed: %s", e)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY, detail="Upstream provider error"
    )


_ORG_ERRORS = (
    OrganizationNotFoundError,
    BillingError,
    BillingConflictError,
    MissingRecordError,
    IdentityProviderError,
    PaymentProviderError,
)


# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------


@router.put("/{org_id}", response_model=OrganizationOut)
async def create_organization(
    org_id: str,
    payload: OrganizationIn,
    principal: Annotated[Principal, Depends(require_org_admin)],
    response: Response,
) -> OrganizationOut:
    try:
        org, created = await organization_service.create_organization(
            name=payload.name,
            billing_email=payload.billing_email,
            clerk_organization_id=org_id,
            admin_user_id=principal.user_id,
        )
    except _ORG_ERRORS as e:
        raise _to_http(e) from None
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return _organization_out(org)


@router.get("/{org_id}", response_model=OrganizationOut)
async def get_organization(
    org_id: str,
    _principal: Annotated[Principal, Depends(require_org_member)],
) -> OrganizationOut:
    try:
        summary = await organization_service.describe(org_id)
    except _ORG_ERRORS as e:
        raise _to_http(e) from None
    return _organization_out(summary.organization, summary)


@router.patch("/{org_id}", response_model=OrganizationOut)
async def update_employee_limit(
    org_id: str,
    payload: EmployeeLimitIn,
    _principal: Annotated[Principal, Depends(require_org_admin)],
) -> OrganizationOut:
    try:
        await billing_service.update_employee_limit(org_id, payload.employee_limit)
        summary = await organization_service.describe(org_id)
    except _ORG_ERRORS as e:
        raise _to_http(e) from None
    return _organization_out(summary.organization, summary)


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


@router.post(
    "/{org_id}/subscription/checkout",
    response_model=RedirectOut,
    status_code=status.HTTP_201_CREATED,
)
async def start_subscription_checkout(
    org_id: str,
    payload: PlanIn,
    principal: Annotated[Principal, Depends(require_org_admin)],
) -> RedirectOut:
    try:
        session = await billing_service.create_subscription_checkout(
            org_id,
            user_id=principal.user_id,
            plan_id=payload.plan,
            employee_count=payload.employee_count,
        )
    except _ORG_ERRORS as e:
        raise _to_http(e) from None
    return RedirectOut(url=session.url or "", session_id=session.id)


@router.put("/{org_id}/subscription", response_model=SubscriptionOut)
async def change_plan(
    org_id: str,
    payload: PlanIn,
    _principal: Annotated[Principal, Depends(require_org_admin)],
) -> SubscriptionOut:
    try:
        sub = await billing_service.change_plan(
            org_id, plan_id=payload.plan, employee_count=payload.employee_count
        )
    except _ORG_ERRORS as e:
        raise _to_http(e) from None
    return _subscription_out(sub)


@router.delete("/{org_id}/subscription", response_model=SubscriptionOut)
async def cancel_subscription(
    org_id: str,
    _principal: Annotated[Principal, Depends(require_org_admin)],
    at_period_end: bool = True,
) -> SubscriptionOut:
    try:
        sub = await billing_service.cancel(org_id, at_period_end=at_period_end)
    except _ORG_ERRORS as e:
        raise _to_http(e) from None
    return _subscription_out(sub)


@router.post("/{org_id}/billing-portal", response_model=RedirectOut)
async def billing_portal(
    org_id: str,
    _principal: Annotated[Principal, Depends(require_org_admin)],
) -> RedirectOut:
    try:
        url = await billing_service.billing_portal_url(org_id)
    except _ORG_ERRORS as e:
        raise _to_http(e) from None
    return RedirectOut(url=url)
