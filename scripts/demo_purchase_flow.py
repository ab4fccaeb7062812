"""Demo: walk checkout → payment webhook → access check using FastAPI TestClient.

Everything runs against the in-memory adapters, so no provider keys are
needed.  The Stripe webhook is signed locally with a throwaway secret.

Run with:
    python scripts/demo_purchase_flow.py
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time

# Must be set before app.core.config reads the environment
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_demo")

from fastapi.testclient import TestClient  # noqa: E402

from app.main import app  # noqa: E402
from app.models.course import Course  # noqa: E402
from app.models.identity import ExternalUser  # noqa: E402
from app.repos.record_store import record_store  # noqa: E402
from app.services.identity_provider import identity_provider  # noqa: E402
from app.services.session_tokens import create_session_token  # noqa: E402

USER_ID = "user_demo"
COURSE_ID = "course-demo"


def _signed_stripe_post(client: TestClient, event: dict):
    body = json.dumps(event).encode()
    ts = int(time.time())
    secret = os.environ["STRIPE_WEBHOOK_SECRET"]
    mac = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256)
    return client.post(
        "/webhooks/stripe",
        content=body,
        headers={
            "stripe-signature": f"t={ts},v1={mac.hexdigest()}",
            "content-type": "application/json",
        },
    )


def main() -> None:
    client = TestClient(app)
    headers = {"Authorization": f"Bearer {create_session_token(sub=USER_ID)}"}

    # ── Seed data ───────────────────────────────────────────────────
    identity_provider.add_user(  # type: ignore[attr-defined]
        ExternalUser(id=USER_ID, email="demo@example.com", first_name="Demo")
    )
    record_store.courses.add(  # type: ignore[attr-defined]
        Course(id=COURSE_ID, title="Demo Course", slug="demo-course", price=49)
    )

    # ── Step 1: access before purchase ──────────────────────────────
    r = client.get(f"/v1/access/courses/{COURSE_ID}", headers=headers)
    print(f"1. GET  access             → {r.status_code}  has_access={r.json()['has_access']}")

    # ── Step 2: start checkout ──────────────────────────────────────
    r = client.post(f"/v1/courses/{COURSE_ID}/checkout", headers=headers)
    session_id = r.json()["session_id"]
    print(f"2. POST checkout           → {r.status_code}  session={session_id}")

    # ── Step 3: payment provider reports completion ─────────────────
    event = {
        "id": "evt_demo_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "mode": "payment",
                "amount_total": 4900,
                "metadata": {
                    "courseId": COURSE_ID,
                    "userId": USER_ID,
                    "purchaseType": "individual",
                },
            }
        },
    }
    r = _signed_stripe_post(client, event)
    print(f"3. POST /webhooks/stripe   → {r.status_code}  outcome={r.json()['outcome']}")

    # ── Step 4: redelivery is recognised ────────────────────────────
    r = _signed_stripe_post(client, event)
    print(f"4. POST /webhooks/stripe   → {r.status_code}  outcome={r.json()['outcome']}")

    # ── Step 5: access after purchase ───────────────────────────────
    r = client.get(f"/v1/access/courses/{COURSE_ID}", headers=headers)
    data = r.json()
    print(
        f"5. GET  access             → {r.status_code}  "
        f"has_access={data['has_access']} type={data['access_type']}"
    )
    assert data["access_type"] == "individual", "purchase did not grant access!"

    print("\nPurchase flow complete.")


if __name__ == "__main__":
    main()
