"""HTTP client for the optional remote durable store.

The remote API is entity scoped: each document and each generation-progress
record lives at ``/{collection}/{id}`` for the owner named in the
``X-Owner-Id`` header. There are no composite writes, so a document and its
progress are always sent as two independent requests.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from .errors import MissingIdentity, RemoteUnavailable
from .records import COLLECTIONS, PersistedRecord

__all__ = ["IdentityProvider", "RemoteStore"]

LOGGER = logging.getLogger(__name__)

IdentityProvider = Callable[[], str | None]


class RemoteStore:
    """Async CRUD over the remote store using ``httpx``."""

    def __init__(
        self,
        base_url: str,
        *,
        identity: IdentityProvider,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._identity = identity
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def get(self, collection: str, key: str) -> PersistedRecord | None:
        response = await self._request("GET", collection, key)
        if response.status_code == 404:
            return None
        try:
            return PersistedRecord.from_dict(response.json())
        except ValueError as exc:
            raise RemoteUnavailable(
                message="Remote store returned an unreadable record",
                details={"collection": collection, "id": key, "reason": str(exc)},
                status_code=response.status_code,
            ) from exc

    async def put(self, collection: str, key: str, record: PersistedRecord) -> None:
        await self._request("PUT", collection, key, json=record.to_dict())

    async def delete(self, collection: str, key: str) -> bool:
        response = await self._request("DELETE", collection, key)
        return response.status_code != 404

    async def ping(self) -> bool:
        """Connectivity check used before reconciling pending writes."""

        try:
            response = await self._client.get("/health", headers=self._owner_headers())
        except MissingIdentity:
            return False
        except httpx.HTTPError as exc:
            LOGGER.debug("Remote ping failed: %s", exc)
            return False
        return response.is_success

    async def _request(
        self, method: str, collection: str, key: str, *, json: Any | None = None
    ) -> httpx.Response:
        if collection not in COLLECTIONS:
            raise KeyError(f"Unknown collection {collection!r}")
        headers = self._owner_headers()
        url = f"/{collection}/{key}"
        try:
            response = await self._client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteUnavailable(
                details={"method": method, "url": url, "reason": str(exc) or type(exc).__name__}
            ) from exc
        if response.status_code == 404 and method in {"GET", "DELETE"}:
            return response
        if response.is_error:
            raise RemoteUnavailable(
                details={"method": method, "url": url, "body": response.text[:200]},
                status_code=response.status_code,
            )
        LOGGER.debug("Remote %s %s -> %s", method, url, response.status_code)
        return response

    def _owner_headers(self) -> dict[str, str]:
        owner = self._identity()
        if not owner:
            raise MissingIdentity()
        return {"X-Owner-Id": owner}

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""

        await self._client.aclose()
