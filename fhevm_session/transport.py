"""
HTTP transport protocol for JSON-RPC nodes and the relayer service.

Defines the seam where concrete HTTP implementations plug in. The
JSON-RPC client, the network probe and the relayer backend depend on
this protocol, not on httpx directly, so the transport can be swapped
for test fakes without editing request/parsing logic.

Concrete implementations:
    - HttpxTransport (default, uses httpx.AsyncClient)
    - FakeTransport (tests, returns canned responses)

Transport errors (connection refused, timeout, TLS failure, non-2xx
status) propagate as httpx exceptions. Callers classify them.
"""

from __future__ import annotations

import itertools
from typing import Any, Protocol, runtime_checkable

_request_ids = itertools.count(1)


def next_request_id() -> int:
    """Process-wide JSON-RPC request id."""
    return next(_request_ids)


def jsonrpc_request(method: str, params: list[Any] | None = None) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 request envelope."""
    return {
        "jsonrpc": "2.0",
        "id": next_request_id(),
        "method": method,
        "params": params if params is not None else [],
    }


@runtime_checkable
class HttpTransport(Protocol):
    """Async transport for JSON POST and GET requests."""

    async def post_json(self, url: str, payload: dict[str, Any]) -> Any:
        """POST a JSON body and return the parsed JSON response.

        Raises:
            Exception: On transport-level failures (connection refused,
                timeout, TLS error, non-2xx status).
        """
        ...

    async def get_json(self, url: str) -> Any:
        """GET a URL and return the parsed JSON response."""
        ...

    async def get_bytes(self, url: str) -> bytes:
        """GET a URL and return the raw response body."""
        ...


class HttpxTransport:
    """Default transport using httpx.AsyncClient.

    A fresh client per call keeps the transport free of connection
    state, so it can be shared between components and event loops.
    """

    def __init__(self, timeout: float = 30.0, headers: dict[str, str] | None = None) -> None:
        self._timeout = timeout
        self._headers = headers or {}

    @property
    def timeout(self) -> float:
        return self._timeout

    async def post_json(self, url: str, payload: dict[str, Any]) -> Any:
        """Send a JSON request via httpx."""
        import httpx

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json", **self._headers},
            )
            response.raise_for_status()
            return response.json()

    async def get_json(self, url: str) -> Any:
        import httpx

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, headers=self._headers)
            response.raise_for_status()
            return response.json()

    async def get_bytes(self, url: str) -> bytes:
        import httpx

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(url, headers=self._headers)
            response.raise_for_status()
            return response.content
