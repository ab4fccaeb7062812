"""Sanity content lake client.

Every durable record this service owns (students, organizations,
subscriptions, enrollments, organization course unlocks) lives in Sanity
as a JSON document.  This module is the only place that speaks Sanity's
HTTP API; the typed repos in app/repos/sanity_*_repo.py sit on top of it.

THE SURFACE
-----------
Deliberately small, mirroring the client used by the web front end:

    await client.fetch(groq, {"clerkId": "user_123"})
    await client.create({"_type": "student", ...})
    await client.patch(doc_id).set({"role": "admin"}).commit()
    await client.delete(doc_id)

Queries go to GET /data/query/{dataset}.  GROQ parameters travel as
``$name`` query-string entries whose values are JSON encoded, which is
why ``fetch`` runs ``json.dumps`` over each one.  Writes go to
POST /data/mutate/{dataset} as a single-mutation transaction with
``returnDocuments=true`` so callers get the stored document back.

NO TRANSACTIONS ACROSS CALLS
----------------------------
Each call is its own transaction.  Callers that write more than one
document order their writes so that a failure between them leaves the
store in a state a webhook redelivery can finish.

When SANITY_PROJECT_ID is unset, sanity_client is None and the repos fall
back to their in-memory implementations.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import httpx

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    """A record-store read or write failed (transport or non-2xx)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def reference(doc_id: str) -> dict[str, str]:
    """Build a strong reference to another document."""
    return {"_type": "reference", "_ref": doc_id}


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as stored by Sanity (trailing Z allowed)."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class PatchBuilder:
    """Accumulates set/unset operations for one document until commit()."""

    def __init__(self, client: SanityClient, doc_id: str) -> None:
        self._client = client
        self._doc_id = doc_id
        self._set: dict[str, Any] = {}
        self._unset: list[str] = []

    def set(self, fields: dict[str, Any]) -> PatchBuilder:
        self._set.update(fields)
        return self

    def unset(self, paths: list[str]) -> PatchBuilder:
        self._unset.extend(paths)
        return self

    async def commit(self) -> dict[str, Any]:
        patch: dict[str, Any] = {"id": self._doc_id}
        if self._set:
            patch["set"] = self._set
        if self._unset:
            patch["unset"] = self._unset
        return await self._client.mutate({"patch": patch})


class SanityClient:
    def __init__(
        self,
        *,
        project_id: str,
        dataset: str,
        token: str | None,
        api_version: str = "2024-01-01",
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._dataset = dataset
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = http or httpx.AsyncClient(
            base_url=f"https://{project_id}.api.sanity.io/v{api_version.lstrip('v')}",
            headers=headers,
            timeout=httpx.Timeout(10.0),
        )

    async def fetch(self, query: str, params: dict[str, Any] | None = None) -> Any:
        """Run a GROQ query and return its ``result`` (any JSON value)."""
        qs = {"query": query}
        for name, value in (params or {}).items():
            qs[f"${name}"] = json.dumps(value)
        body = await self._request("GET", f"/data/query/{self._dataset}", params=qs)
        return body.get("result")

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        return await self.mutate({"create": document})

    def patch(self, doc_id: str) -> PatchBuilder:
        return PatchBuilder(self, doc_id)

    async def delete(self, doc_id: str) -> None:
        await self.mutate({"delete": {"id": doc_id}})

    async def mutate(self, mutation: dict[str, Any]) -> dict[str, Any]:
        """Apply one mutation; returns the resulting document when there is one."""
        body = await self._request(
            "POST",
            f"/data/mutate/{self._dataset}",
            params={"returnIds": "true", "returnDocuments": "true"},
            json={"mutations": [mutation]},
        )
        results = body.get("results") or []
        if not results:
            return {}
        return results[0].get("document") or {"_id": results[0].get("id")}

    async def ping(self) -> None:
        await self.fetch("count(*[_type == $type])", {"type": "organization"})

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Sanity %s %s failed: %s", method, path, e)
            raise RecordStoreError(f"record store unreachable: {e}") from e

        if resp.status_code >= 400:
            logger.error(
                "Sanity %s %s returned status=%d", method, path, resp.status_code
            )
            raise RecordStoreError(
                f"record store returned {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp.json()


if SETTINGS.sanity_project_id:
    sanity_client: SanityClient | None = SanityClient(
        project_id=SETTINGS.sanity_project_id,
        dataset=SETTINGS.sanity_dataset,
        token=SETTINGS.sanity_api_token,
        api_version=SETTINGS.sanity_api_version,
    )
else:
    sanity_client = None


@asynccontextmanager
async def lifespan_sanity() -> AsyncGenerator[None, None]:
    """Close the Sanity HTTP client on shutdown."""
    if sanity_client is None:
        logger.info("No SANITY_PROJECT_ID configured, record store is in-memory")
        yield
        return

    logger.info(
        "Sanity record store  project=%s dataset=%s",
        SETTINGS.sanity_project_id,
        SETTINGS.sanity_dataset,
    )
    yield
    await sanity_client.aclose()
    logger.info("Sanity client closed")
