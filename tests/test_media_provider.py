from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from integrations.media_provider import (
    FakeMediaProvider,
    MediaProviderConfig,
    OpenTokProvider,
    build_media_provider,
)
from signaling.errors import UpstreamDependencyError


def _config(**overrides) -> MediaProviderConfig:
    values = {
        "provider": "opentok",
        "api_key": "44669102",
        "api_secret": "secret",
        "server_url": "https://provider.example",
    }
    values.update(overrides)
    return MediaProviderConfig(**values)


def test_opentok_allocates_session_and_signs_role_tokens():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=json.dumps([{"session_id": "1_MX4session"}]))

    provider = OpenTokProvider(_config(), transport=httpx.MockTransport(handler), clock=lambda: 1000.0)
    session = asyncio.run(provider.allocate_session())

    assert session.session_id == "1_MX4session"
    assert seen[0].url == "https://provider.example/session/create"
    assert seen[0].headers["X-TB-PARTNER-AUTH"] == "44669102:secret"

    for token in (session.callee_token, session.caller_token):
        assert token.startswith("T1==")
        decoded = base64.b64decode(token[4:]).decode()
        assert decoded.startswith("partner_id=44669102&sig=")
        assert "session_id=1_MX4session" in decoded
        assert "expire_time=87400" in decoded


@pytest.mark.parametrize(
    "response",
    [httpx.Response(500), httpx.Response(200, content=b"not json"), httpx.Response(200, content=b"[]")],
)
def test_opentok_failures_surface_as_upstream_errors(response):
    provider = OpenTokProvider(_config(), transport=httpx.MockTransport(lambda request: response))

    with pytest.raises(UpstreamDependencyError):
        asyncio.run(provider.allocate_session())


def test_opentok_ping_reports_unreachable_provider():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = OpenTokProvider(_config(), transport=httpx.MockTransport(handler))

    assert asyncio.run(provider.ping()) is False


def test_fake_provider_returns_distinct_sessions():
    provider = FakeMediaProvider(_config(provider="fake"))

    first = asyncio.run(provider.allocate_session())
    second = asyncio.run(provider.allocate_session())

    assert first.session_id != second.session_id
    assert first.callee_token != first.caller_token
    assert asyncio.run(provider.ping()) is True
    assert provider.api_key == "44669102"


def test_build_media_provider_follows_configuration():
    assert isinstance(build_media_provider(_config(provider="fake")), FakeMediaProvider)
    assert isinstance(build_media_provider(_config()), OpenTokProvider)
