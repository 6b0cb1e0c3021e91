"""
Tests for the OAuth application token provider.
"""

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from config import BROWSE_SCOPE, FALLBACK_SCOPE, EbaySettings
from services.ebay_auth import TokenProvider
from services.exceptions import MissingCredentialsError, TokenError
from smart_cache import TTLCache
from tests.conftest import FakeClock, SleepRecorder, mock_client


def _provider(handler, clock=None, ebay=None, sleeper=None):
    clock = clock or FakeClock()
    ebay = ebay or EbaySettings(client_id="id", client_secret="secret")
    return TokenProvider(
        ebay,
        mock_client(handler),
        TTLCache(max_size=5, ttl_seconds=900, clock=clock),
        clock=clock,
        sleep=sleeper or SleepRecorder(),
    )


def _token_response(token="tok-1", expires_in=7200):
    return httpx.Response(200, json={"access_token": token, "expires_in": expires_in})


def test_token_is_cached_between_calls():
    requests = []

    def handler(request):
        requests.append(request)
        return _token_response()

    provider = _provider(handler)

    async def run():
        return [await provider.get_token(), await provider.get_token()]

    assert asyncio.run(run()) == ["tok-1", "tok-1"]
    assert len(requests) == 1
    assert requests[0].url.path == "/identity/v1/oauth2/token"
    assert requests[0].headers["Authorization"].startswith("Basic ")
    assert provider.cache_key == "appToken:production"


def test_token_refreshed_when_close_to_expiry():
    tokens = iter(["tok-1", "tok-2"])
    clock = FakeClock()

    def handler(request):
        return _token_response(next(tokens), expires_in=7200)

    provider = _provider(handler, clock=clock)

    async def run():
        first = await provider.get_token()
        clock.advance(7200 - 59)
        second = await provider.get_token()
        return first, second

    assert asyncio.run(run()) == ("tok-1", "tok-2")


def test_invalid_scope_falls_back_to_base_scope():
    scopes = []

    def handler(request):
        scope = parse_qs(request.content.decode())["scope"][0]
        scopes.append(scope)
        if scope == BROWSE_SCOPE:
            return httpx.Response(400, json={"error": "invalid_scope"})
        return _token_response("fallback-token")

    provider = _provider(handler)

    assert asyncio.run(provider.get_token()) == "fallback-token"
    assert scopes == [BROWSE_SCOPE, FALLBACK_SCOPE]


def test_server_errors_retried_then_token_error():
    calls = []
    sleeper = SleepRecorder()

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    provider = _provider(handler, sleeper=sleeper)

    with pytest.raises(TokenError):
        asyncio.run(provider.get_token())
    assert len(calls) == 3
    assert sleeper.delays == pytest.approx([0.8, 1.6])


def test_client_error_is_terminal():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": "invalid_client"})

    provider = _provider(handler)

    with pytest.raises(TokenError) as excinfo:
        asyncio.run(provider.get_token())
    assert excinfo.value.error == "invalid_client"
    assert len(calls) == 1


def test_missing_credentials_never_reach_network():
    calls = []

    def handler(request):
        calls.append(request)
        return _token_response()

    provider = _provider(handler, ebay=EbaySettings())

    with pytest.raises(MissingCredentialsError):
        asyncio.run(provider.get_token())
    assert calls == []


def test_invalidate_forces_new_token():
    tokens = iter(["tok-1", "tok-2"])

    def handler(request):
        return _token_response(next(tokens))

    provider = _provider(handler)

    async def run():
        first = await provider.get_token()
        provider.invalidate()
        return first, await provider.get_token()

    assert asyncio.run(run()) == ("tok-1", "tok-2")
