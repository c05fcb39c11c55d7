"""Shared JSON-over-HTTP plumbing for conversation backends."""

from __future__ import annotations

from typing import Any

import httpx

from ..types import TransportError


class JSONHttpBackend:
    """Owns an ``httpx.AsyncClient`` and turns failures into TransportError.

    Subclasses build URLs and payloads; retries belong to RetryableTransport.
    """

    _timeout: float = 30.0

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout or self._timeout)

    def _headers(self) -> dict:
        return {"Content-Type": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: Any = None,
        params: dict | None = None,
        expect_json: bool = True,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(
                method, url, headers=self._headers(), json=json, params=params,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error: {e}", operation=operation) from e

        if response.status_code >= 400:
            raise TransportError(
                f"HTTP {response.status_code}: {response.text[:500]}",
                operation=operation,
                status_code=response.status_code,
            )
        if not expect_json or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}", operation=operation) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
