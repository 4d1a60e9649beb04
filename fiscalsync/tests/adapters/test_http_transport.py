"""Tests for the HTTP transport adapter using httpx.MockTransport."""

import json
from collections.abc import Callable

import httpx
import pytest

from fiscalsync.adapters.transport.http import REGISTRATION_PATH, HttpTransport
from fiscalsync.core.errors import ConnectivityError, MalformedResponseError

API_URL = "https://authority.test"


def make_transport(
    handler: Callable[[httpx.Request], httpx.Response], api_key: str = ""
) -> HttpTransport:
    client = httpx.AsyncClient(base_url=API_URL, transport=httpx.MockTransport(handler))
    return HttpTransport(api_url=API_URL, api_key=api_key, client=client)


@pytest.mark.asyncio
async def test_success_returns_identifier() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"id": "O-7DBCDA8A56EE426DBCDA8A56EE426D1A"})

    async with make_transport(handler, api_key="secret") as transport:
        response = await transport.send('{"kind":"receipt"}', timeout=5.0)

    assert response.accepted
    assert response.authority_id == "O-7DBCDA8A56EE426DBCDA8A56EE426D1A"
    assert requests[0].url.path == REGISTRATION_PATH
    assert requests[0].method == "POST"
    assert requests[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(requests[0].content) == {"kind": "receipt"}


@pytest.mark.asyncio
async def test_refusal_returns_rejection() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"error": {"code": -3, "message": "Invalid cash register code"}}
        )

    transport = make_transport(handler)
    try:
        response = await transport.send("{}", timeout=5.0)
    finally:
        await transport.close()

    assert not response.accepted
    assert response.error_code == -3
    assert response.error_message == "Invalid cash register code"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [408, 429, 500, 502, 503])
async def test_transient_statuses_are_connectivity_errors(status: int) -> None:
    transport = make_transport(lambda request: httpx.Response(status, text="busy"))

    with pytest.raises(ConnectivityError, match=str(status)):
        await transport.send("{}", timeout=5.0)

    await transport.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exception",
    [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")],
)
async def test_network_failures_are_connectivity_errors(exception: Exception) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise exception

    transport = make_transport(handler)

    with pytest.raises(ConnectivityError):
        await transport.send("{}", timeout=5.0)

    await transport.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>ok</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"status": "ok"}),
        httpx.Response(404, json={"detail": "not found"}),
        httpx.Response(400, json={"error": {"code": "E1", "message": "bad"}}),
        httpx.Response(302, json={}),
    ],
)
async def test_malformed_answers(response: httpx.Response) -> None:
    transport = make_transport(lambda request: response)

    with pytest.raises(MalformedResponseError):
        await transport.send("{}", timeout=5.0)

    await transport.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exception",
    [httpx.DecodingError("bad gzip stream"), httpx.TooManyRedirects("redirect loop")],
)
async def test_other_httpx_errors_are_malformed(exception: Exception) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise exception

    transport = make_transport(handler)

    with pytest.raises(MalformedResponseError) as exc_info:
        await transport.send("{}", timeout=5.0)

    assert exc_info.value.__cause__ is exception
    await transport.close()
