"""
Unit tests for the httpx-backed transport.
"""
import json

import httpx
import pytest

from session_broker_service.clients.transport import HttpxTransport, TransportError


@pytest.mark.asyncio
async def test_post_returns_status_and_body():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(201, json={"teamID": "blue-7"})

    transport = HttpxTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    response = await transport.post(
        "http://gamebrain.test/privileged/get_team",
        {"Content-Type": "application/json", "Authorization": "Bearer abc"},
        '{"user_token": "player-token"}',
    )

    assert response.status_code == 201
    assert json.loads(response.body) == {"teamID": "blue-7"}
    assert captured[0].method == "POST"
    assert captured[0].headers["Authorization"] == "Bearer abc"
    assert captured[0].content == b'{"user_token": "player-token"}'
    await transport.aclose()


@pytest.mark.asyncio
async def test_error_statuses_are_returned_not_raised():
    transport = HttpxTransport(
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(401, text="nope"))
        )
    )

    response = await transport.post("http://identity.test/connect/token", {}, b"grant_type=x")

    assert response.status_code == 401
    assert response.text == "nope"
    await transport.aclose()


@pytest.mark.asyncio
async def test_connection_errors_become_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport = HttpxTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(TransportError):
        await transport.post("http://identity.test/connect/token", {}, "")
    await transport.aclose()


@pytest.mark.asyncio
async def test_aclose_releases_client():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    transport = HttpxTransport(client=client)

    await transport.aclose()

    assert client.is_closed
