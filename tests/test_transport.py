from __future__ import annotations

from typing import Any

import aiohttp
import pytest

from _fakes import FakeHttpSession, FakeResponse
from pyarova._transport import RestTransport
from pyarova.config import ArovaConfig
from pyarova.exceptions import ArovaTransportError


def _transport(response: FakeResponse | Exception, **config: Any) -> tuple[RestTransport, FakeHttpSession]:
    session = FakeHttpSession(response)
    return RestTransport(ArovaConfig(**config), session), session  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_request_sends_auth_headers_and_decodes_json() -> None:
    transport, session = _transport(
        FakeResponse(200, '{"id": "stream-1"}'),
        base_url="https://db.example.com/",
        api_key="anon",
        access_token="user-jwt",
    )

    decoded = await transport.request_json("GET", "/rest/v1/live_stream_config", headers={"x-extra": "1"})

    assert decoded == {"id": "stream-1"}
    sent = session.requests[0]
    assert sent["url"] == "https://db.example.com/rest/v1/live_stream_config"
    assert sent["headers"]["apikey"] == "anon"
    assert sent["headers"]["authorization"] == "Bearer user-jwt"
    assert sent["headers"]["x-extra"] == "1"


@pytest.mark.asyncio
async def test_empty_body_decodes_to_none() -> None:
    transport, _ = _transport(FakeResponse(204, ""))

    assert await transport.request_json("POST", "/rest/v1/rpc/noop") is None


@pytest.mark.asyncio
async def test_non_2xx_raises_with_status() -> None:
    transport, _ = _transport(FakeResponse(401, '{"message": "JWT expired"}'))

    with pytest.raises(ArovaTransportError) as excinfo:
        await transport.request_json("GET", "/rest/v1/live_stream_config")

    assert excinfo.value.status_code == 401
    assert excinfo.value.endpoint == "/rest/v1/live_stream_config"


@pytest.mark.asyncio
async def test_invalid_json_raises() -> None:
    transport, _ = _transport(FakeResponse(200, "<html>gateway</html>"))

    with pytest.raises(ArovaTransportError, match="Invalid JSON"):
        await transport.request_json("GET", "/rest/v1/live_stream_config")


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [aiohttp.ClientConnectionError("refused"), TimeoutError()])
async def test_network_failures_raise_transport_error(error: Exception) -> None:
    transport, _ = _transport(error)

    with pytest.raises(ArovaTransportError):
        await transport.request_json("GET", "/rest/v1/live_stream_config")
