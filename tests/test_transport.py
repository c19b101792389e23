"""
Tests for HttpxTransport and the JSON-RPC envelope helper.

Uses pytest-httpx; no real network.

Test plan:
- jsonrpc_request: envelope shape, default params, increasing ids
- post_json: sends JSON body and content type, parses response
- get_json / get_bytes: parse JSON, return raw body
- Non-2xx statuses raise httpx.HTTPStatusError
- Extra headers are sent
"""

import httpx
import pytest
from pytest_httpx import HTTPXMock

from fhevm_session.transport import HttpTransport, HttpxTransport, jsonrpc_request

URL = "http://node.test:8545"


class TestJsonRpcRequest:
    def test_envelope(self) -> None:
        request = jsonrpc_request("eth_chainId")
        assert request["jsonrpc"] == "2.0"
        assert request["method"] == "eth_chainId"
        assert request["params"] == []

    def test_params_passed_through(self) -> None:
        assert jsonrpc_request("eth_getTransactionReceipt", ["0x01"])["params"] == ["0x01"]

    def test_ids_increase(self) -> None:
        first = jsonrpc_request("a")["id"]
        second = jsonrpc_request("b")["id"]
        assert second > first


class TestHttpxTransport:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(HttpxTransport(), HttpTransport)

    @pytest.mark.asyncio
    async def test_post_json(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, method="POST", json={"jsonrpc": "2.0", "id": 1, "result": "0x7a69"})
        response = await HttpxTransport().post_json(URL, {"method": "eth_chainId"})
        assert response["result"] == "0x7a69"

        request = httpx_mock.get_requests()[0]
        assert request.headers["Content-Type"] == "application/json"
        assert b"eth_chainId" in request.content

    @pytest.mark.asyncio
    async def test_get_json(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{URL}/v1/keyurl", method="GET", json={"response": {}})
        assert await HttpxTransport().get_json(f"{URL}/v1/keyurl") == {"response": {}}

    @pytest.mark.asyncio
    async def test_get_bytes(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=f"{URL}/key.bin", method="GET", content=b"\x00\x01key")
        assert await HttpxTransport().get_bytes(f"{URL}/key.bin") == b"\x00\x01key"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, method="POST", status_code=503)
        with pytest.raises(httpx.HTTPStatusError):
            await HttpxTransport().post_json(URL, {})

    @pytest.mark.asyncio
    async def test_connection_error_propagates(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("refused"), url=URL)
        with pytest.raises(httpx.ConnectError):
            await HttpxTransport().post_json(URL, {})

    @pytest.mark.asyncio
    async def test_extra_headers(self, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=URL, method="GET", json={})
        await HttpxTransport(headers={"x-api-key": "k"}).get_json(URL)
        assert httpx_mock.get_requests()[0].headers["x-api-key"] == "k"
