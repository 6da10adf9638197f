"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files:

    from helpers import FakeGenerator, RemoteServer
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Mapping, Sequence

import httpx

from copydesk.services.gateway import DurableStoreGateway
from copydesk.services.local_cache import LocalCacheStore
from copydesk.services.remote_store import RemoteStore

REMOTE_URL = "https://remote.test"

BROCHURE_FORMS: dict[str, dict[str, str]] = {
    "cover": {
        "brochureTitle": "Ship Faster with Acme Cloud",
        "subtitle": "Deploys without the drama",
        "companyName": "Acme",
        "coverTone": "Bold",
    },
    "hero": {
        "mainValueProp": "Acme Cloud turns a week of release prep into a single click.",
        "keyBenefits": "Faster releases, fewer rollbacks, happier teams",
        "targetAudience": "Platform engineering leads",
        "emotionalAngle": "Results",
    },
    "solutions": {
        "productServiceName": "Acme Deploy",
        "mainFeatures": "Preview environments\nOne-click rollback\nAudit trail",
        "featureEmphasis": "Both",
    },
    "proof": {
        "includeCaseStudy": "No - Other proof type",
        "proofType": "Trusted by 400 engineering teams; SOC 2 Type II certified.",
    },
    "cta": {
        "primaryCTA": "Book a 20-minute demo",
        "urgencyLevel": "Medium",
        "contactMethod": "Schedule demo",
    },
    "other": {
        "sectionName": "Pricing",
        "sectionPurpose": "Explain the plans",
        "keyPoints": "Free tier, team plan, enterprise support",
    },
}


class FakeGenerator:
    """Scripted stand-in for the generation client.

    ``outcomes`` are consumed in order: strings are returned, exceptions are
    raised. Once exhausted every call returns numbered placeholder copy. Set
    :attr:`gate` to an unset :class:`asyncio.Event` to hold calls open.
    """

    def __init__(self, *outcomes: str | BaseException) -> None:
        self.outcomes: list[str | BaseException] = list(outcomes)
        self.calls: list[list[dict[str, str]]] = []
        self.gate: asyncio.Event | None = None

    async def generate(self, messages: Sequence[Mapping[str, str]]) -> str:
        self.calls.append([dict(message) for message in messages])
        if self.gate is not None:
            await self.gate.wait()
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return f"<p>Generated copy {len(self.calls)}</p>"

    @property
    def last_prompt(self) -> str:
        return self.calls[-1][-1]["content"]


class RemoteServer:
    """In-memory remote store served through :class:`httpx.MockTransport`."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.online = True
        self.fail_status: int | None = None

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.online:
            raise httpx.ConnectError("remote offline", request=request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="unavailable")
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        owner = request.headers.get("X-Owner-Id", "")
        _, collection, key = request.url.path.split("/", 2)
        ident = (owner, collection, key)
        if request.method == "GET":
            if ident not in self.records:
                return httpx.Response(404)
            return httpx.Response(200, json=self.records[ident])
        if request.method == "PUT":
            self.records[ident] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})
        if request.method == "DELETE":
            if self.records.pop(ident, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(405)

    def stored(self, collection: str, key: str, owner: str = "user-1") -> dict[str, Any] | None:
        return self.records.get((owner, collection, key))

    def methods(self) -> list[str]:
        return [request.method for request in self.requests]


def make_remote(server: RemoteServer, user_id: str | None = "user-1") -> RemoteStore:
    return RemoteStore(REMOTE_URL, identity=lambda: user_id, transport=server.transport())


def make_gateway(
    cache_dir: Path,
    server: RemoteServer | None = None,
    *,
    capacity_bytes: int = 5 * 1024 * 1024,
    user_id: str | None = "user-1",
) -> DurableStoreGateway:
    """Fresh gateway over ``cache_dir``; call again to simulate a reload."""

    local = LocalCacheStore.in_directory(cache_dir, capacity_bytes=capacity_bytes)
    remote = make_remote(server, user_id) if server is not None else None
    return DurableStoreGateway(local, remote)
