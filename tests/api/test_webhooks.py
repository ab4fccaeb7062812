from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import time
from dataclasses import replace
from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient
from svix.webhooks import Webhook

from app.api import webhooks
from app.repos.record_store import record_store
from app.services.identity_provider import IdentityProviderError, identity_provider
from tests.conftest import seed_org, seed_student, seed_user

CLERK_SECRET = "whsec_" + base64.b64encode(b"clerk-webhook-test-secret-32byte").decode()
STRIPE_SECRET = "whsec_stripe_test_secret"


@pytest.fixture(autouse=True)
def webhook_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        webhooks,
        "SETTINGS",
        replace(
            webhooks.SETTINGS,
            clerk_webhook_secret=CLERK_SECRET,
            stripe_webhook_secret=STRIPE_SECRET,
        ),
    )


def _post_clerk(client: TestClient, event: dict, msg_id: str = "msg_1"):
    body = json.dumps(event)
    now = datetime.now(UTC)
    headers = {
        "svix-id": msg_id,
        "svix-timestamp": str(int(now.timestamp())),
        "svix-signature": Webhook(CLERK_SECRET).sign(msg_id, now, body),
        "content-type": "application/json",
    }
    return client.post("/webhooks/clerk", content=body, headers=headers)


def _post_stripe(client: TestClient, event: dict, secret: str = STRIPE_SECRET):
    body = json.dumps(event).encode()
    ts = int(time.time())
    mac = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256)
    headers = {
        "stripe-signature": f"t={ts},v1={mac.hexdigest()}",
        "content-type": "application/json",
    }
    return client.post("/webhooks/stripe", content=body, headers=headers)


def _checkout(event_id: str = "evt_1") -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_1",
                "mode": "payment",
                "amount_total": 4900,
                "metadata": {
                    "courseId": "course-1",
                    "userId": "user_1",
                    "purchaseType": "individual",
                },
            }
        },
    }


# ---- identity provider ----


def test_clerk_user_created(client: TestClient) -> None:
    event = {
        "type": "user.created",
        "data": {
            "id": "user_1",
            "primary_email_address_id": "idn_1",
            "email_addresses": [{"id": "idn_1", "email_address": "u1@example.com"}],
        },
    }

    resp = _post_clerk(client, event)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "processed"
    student = asyncio.run(record_store.students.get_by_clerk_id("user_1"))
    assert student.email == "u1@example.com"


def test_clerk_bad_signature_is_400(client: TestClient) -> None:
    resp = client.post(
        "/webhooks/clerk",
        content=b"{}",
        headers={
            "svix-id": "msg_1",
            "svix-timestamp": str(int(time.time())),
            "svix-signature": "v1,bm90LWEtc2lnbmF0dXJl",
        },
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid webhook signature"


def test_clerk_missing_secret_is_400(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        webhooks, "SETTINGS", replace(webhooks.SETTINGS, clerk_webhook_secret=None)
    )

    resp = _post_clerk(client, {"type": "user.created", "data": {}})

    assert resp.status_code == 400


def test_clerk_membership_before_org_is_skipped_with_200(client: TestClient) -> None:
    seed_user("user_1")
    event = {
        "type": "organizationMembership.created",
        "data": {
            "organization": {"id": "org_unknown"},
            "public_user_data": {"user_id": "user_1"},
            "role": "org:member",
        },
    }

    resp = _post_clerk(client, event)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "skipped"


def test_clerk_handler_failure_is_500_and_retryable(client: TestClient) -> None:
    seed_org("org_acme")
    event = {
        "type": "organizationMembership.created",
        "data": {
            "organization": {"id": "org_acme"},
            "public_user_data": {"user_id": "user_1"},
            "role": "org:admin",
        },
    }
    identity_provider.fail_with = IdentityProviderError(  # type: ignore[attr-defined]
        "clerk down", status_code=503
    )

    assert _post_clerk(client, event).status_code == 500

    identity_provider.fail_with = None  # type: ignore[attr-defined]
    seed_user("user_1")
    retry = _post_clerk(client, event)
    assert retry.status_code == 200
    assert retry.json()["outcome"] == "processed"


# ---- payment provider ----


def test_stripe_checkout_enrolls_student(client: TestClient) -> None:
    student = seed_student("user_1")

    resp = _post_stripe(client, _checkout())

    assert resp.status_code == 200
    assert resp.json()["received"] is True
    assert resp.json()["outcome"] == "processed"
    assert asyncio.run(record_store.enrollments.get(student.id, "course-1")) is not None


def test_stripe_redelivery_is_duplicate(client: TestClient) -> None:
    student = seed_student("user_1")

    _post_stripe(client, _checkout())
    resp = _post_stripe(client, _checkout())

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "duplicate"
    assert len(asyncio.run(record_store.enrollments.list_by_student(student.id))) == 1


def test_stripe_bad_signature_is_400(client: TestClient) -> None:
    seed_student("user_1")

    resp = _post_stripe(client, _checkout(), secret="whsec_wrong")

    assert resp.status_code == 400
    assert asyncio.run(record_store.enrollments.list_by_payment_id("cs_1")) == []


def test_stripe_missing_signature_is_400(client: TestClient) -> None:
    resp = client.post("/webhooks/stripe", content=json.dumps(_checkout()))
    assert resp.status_code == 400


def test_stripe_unhandled_event_is_acknowledged(client: TestClient) -> None:
    resp = _post_stripe(
        client,
        {"id": "evt_2", "object": "event", "type": "invoice.paid", "data": {"object": {}}},
    )

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "skipped"
