"""
Transport collaborator — the only way the core talks to the backend.

``Transport`` is the protocol the orchestrator and the remote reference
data depend on; ``HttpTransport`` implements it on ``httpx.AsyncClient``.
Non-2xx responses and network failures surface as TransportError, never
as successful results.  Timeouts belong to the transport.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from signup.core.config import settings
from signup.core.constants import APIRequestMethod
from signup.core.logging import get_logger
from signup.errors import TransportError

logger = get_logger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"


class Transport(Protocol):
    """Issue one backend call and return the parsed JSON body."""

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> Any:
        ...


class HttpTransport:
    """
    JSON-over-HTTP transport.

    Usage::

        async with HttpTransport() as transport:
            client = await transport.request("POST", "/api/clients", payload)

    A pre-built ``httpx.AsyncClient`` may be injected (tests pass one with
    an ``httpx.MockTransport``); the transport then does not close it.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else settings.BACKEND_API_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.BACKEND_API_KEY
        self.timeout = timeout if timeout is not None else settings.TRANSPORT_TIMEOUT_SECONDS
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
        )

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, idempotency_key: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key
        return headers

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> Any:
        method = APIRequestMethod(method.upper())
        log = logger.bind(method=str(method), path=path, idempotency_key=idempotency_key)

        try:
            response = await self._client.request(
                str(method),
                path,
                json=body if method != APIRequestMethod.GET else None,
                headers=self._headers(idempotency_key),
            )
        except httpx.HTTPError as exc:
            log.warning("Backend request failed", error=str(exc))
            raise TransportError(
                f"{method} {path} failed: {exc}",
                payload=body,
            ) from exc

        if not response.is_success:
            log.warning(
                "Backend returned error status",
                status_code=response.status_code,
            )
            raise TransportError(
                _error_message(response),
                status_code=response.status_code,
                response_body=response.text,
                payload=body,
            )

        log.debug("Backend request succeeded", status_code=response.status_code)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
                response_body=response.text,
                payload=body,
            ) from exc


def _error_message(response: httpx.Response) -> str:
    """Prefer the backend's own ``message``/``error`` field when it sends JSON."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            if isinstance(data.get(key), str) and data[key]:
                return data[key]
    return f"Backend returned HTTP {response.status_code}"
