from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from fastapi import HTTPException, status
from fastapi.testclient import TestClient

from app.api.dependencies import require_org_admin, require_org_member
from app.models.principal import Principal
from app.services import session_tokens
from app.services.identity_provider import IdentityProviderError, identity_provider
from tests.conftest import seed_membership, seed_org, seed_student


def test_require_org_member_returns_org_context_for_member() -> None:
    seed_membership("org_acme", "user_1", "org:member")

    principal = asyncio.run(
        require_org_member(org_id="org_acme", principal=Principal(user_id="user_1"))
    )

    assert principal.org_id == "org_acme"
    assert principal.org_role == "org:member"


def test_require_org_member_rejects_non_member() -> None:
    seed_membership("org_other", "user_1", "org:admin")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(
            require_org_member(org_id="org_acme", principal=Principal(user_id="user_1"))
        )

    assert exc.value.status_code == status.HTTP_403_FORBIDDEN


def test_require_org_member_reports_provider_outage() -> None:
    identity_provider.fail_with = IdentityProviderError(  # type: ignore[attr-defined]
        "clerk down", status_code=503
    )

    with pytest.raises(HTTPException) as exc:
        asyncio.run(
            require_org_member(org_id="org_acme", principal=Principal(user_id="user_1"))
        )

    assert exc.value.status_code == status.HTTP_502_BAD_GATEWAY


@pytest.mark.parametrize("role", ["org:admin", "admin"])
def test_require_org_admin_accepts_admin_claims(role: str) -> None:
    principal = Principal(user_id="user_1", org_id="org_acme", org_role=role)

    assert asyncio.run(require_org_admin(principal=principal)) is principal


def test_require_org_admin_rejects_member() -> None:
    principal = Principal(user_id="user_1", org_id="org_acme", org_role="org:member")

    with pytest.raises(HTTPException) as exc:
        asyncio.run(require_org_admin(principal=principal))

    assert exc.value.status_code == status.HTTP_403_FORBIDDEN
    assert exc.value.detail == "Organization admin required"


# ---- token extraction, through a real route ----


def test_missing_token_is_401(client: TestClient) -> None:
    resp = client.get("/v1/access/courses/course-1")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Not authenticated"
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_expired_token_is_401(client: TestClient) -> None:
    token = session_tokens.create_session_token(sub="user_1", ttl=timedelta(minutes=-5))
    resp = client.get(
        "/v1/access/courses/course-1", headers={"Authorization": f"Bearer {token}"}
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


def test_garbage_token_is_401(client: TestClient) -> None:
    resp = client.get(
        "/v1/access/courses/course-1", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


def test_session_cookie_is_accepted(client: TestClient) -> None:
    seed_student("user_1")
    client.cookies.set("__session", session_tokens.create_session_token(sub="user_1"))

    resp = client.get("/v1/access/courses/course-1")

    assert resp.status_code == 200


def test_org_route_checks_membership_of_path_org(client: TestClient) -> None:
    seed_org("org_acme")
    seed_org("org_rival", name="Rival")
    seed_membership("org_rival", "user_1", "org:admin")
    token = session_tokens.create_session_token(sub="user_1")

    resp = client.get("/v1/orgs/org_acme", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 403
