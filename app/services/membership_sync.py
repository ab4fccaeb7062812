"""Mirror identity-provider users and memberships into Student records.

Two paths lead here:

  - the organizationMembership.created webhook (asynchronous), and
  - invitation acceptance (synchronous, so the UI can redirect into the
    app before the webhook arrives).

Both must produce the same Student state, so both call
link_student_to_organization().  Running it twice is harmless: the
student is found by clerk id and patched, never created twice.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from app.models.identity import ExternalUser, local_role
from app.models.student import Student
from app.repos.record_store import RecordStore
from app.services.identity_provider import IdentityProvider

logger = logging.getLogger(__name__)


class MissingRecordError(Exception):
    """A record the operation depends on does not exist (yet).

    Webhook handlers treat this as "skip": creation order across
    providers is not guaranteed, and a later event or retry completes it.
    """


async def upsert_student(store: RecordStore, user: ExternalUser) -> Student:
    """Create the Student for a provider user, or refresh its profile fields."""
    existing = await store.students.get_by_clerk_id(user.id)
    if existing is not None:
        updated = await store.students.update_profile(
            existing.id,
            email=user.email or existing.email,
            first_name=user.first_name or existing.first_name,
            last_name=user.last_name,
            image_url=user.image_url,
        )
        logger.debug("Updated student=%s clerk_id=%s", updated.id, user.id)
        return updated

    if not user.email:
        raise MissingRecordError(f"user {user.id} has no email address")

    student = await store.students.add(
        Student.new(
            clerk_id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            image_url=user.image_url,
        )
    )
    logger.info("Created student=%s clerk_id=%s", student.id, user.id)
    return student


async def link_student_to_organization(
    store: RecordStore,
    identity: IdentityProvider,
    *,
    user_id: str,
    clerk_organization_id: str,
    role_claim: str | None,
) -> Student:
    """Associate a provider user with a local Organization.

    The user profile is always re-fetched from the provider: membership
    payloads carry id, name and image but not the email address.

    Raises MissingRecordError when the organization has no local record,
    IdentityProviderError when the profile cannot be fetched.
    """
    org = await store.organizations.get_by_clerk_id(clerk_organization_id)
    if org is None:
        raise MissingRecordError(
            f"organization {clerk_organization_id} has no local record"
        )

    user = await identity.get_user(user_id)
    student = await upsert_student(store, user)
    role = local_role(role_claim)
    linked = await store.students.set_organization(
        student.id,
        organization_id=org.id,
        role=role,
        accepted_date=datetime.now(UTC),
    )
    logger.info(
        "Linked student=%s to organization=%s role=%s", linked.id, org.id, role
    )
    return linked
