"""Tests for discovery, token and revocation requests against the dev provider, and ID token decoding."""
import asyncio
import logging
import time

import httpx
import jwt
import pytest

from oidc_client.discovery import ProviderConfiguration, discovery_url, fetch_configuration
from oidc_client.errors import DiscoveryError, RevocationError, TokenRequestError
from oidc_client.tokens import (
    TokenResponse,
    authorization_code_grant,
    decode_id_token,
    refresh_token_grant,
    request_token,
    revoke_token,
)

ISSUER = "https://idp.example/realm"


def test_discovery_url_trims_trailing_slashes():
    assert discovery_url("https://idp.example/realm//") == "https://idp.example/realm/.well-known/openid-configuration"


def test_fetch_configuration(make_http):
    async def scenario():
        async with make_http() as http:
            return await fetch_configuration(ISSUER + "/", http)

    config = asyncio.run(scenario())
    assert config.authorization_endpoint == f"{ISSUER}/authorize"
    assert config.token_endpoint == f"{ISSUER}/token"
    assert config.revocation_endpoint == f"{ISSUER}/revoke"
    assert config.issuer == ISSUER


def test_fetch_configuration_http_error():
    def handler(request):
        return httpx.Response(404, text="not found")

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            await fetch_configuration(ISSUER, http)

    with pytest.raises(DiscoveryError) as exc:
        asyncio.run(scenario())
    assert "404" in str(exc.value)


def test_fetch_configuration_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            await fetch_configuration(ISSUER, http)

    with pytest.raises(DiscoveryError):
        asyncio.run(scenario())


def test_configuration_requires_token_endpoint():
    with pytest.raises(DiscoveryError):
        ProviderConfiguration.from_document({"authorization_endpoint": "https://idp/authorize"})


def test_authorization_code_grant_omits_missing_verifier():
    data = authorization_code_grant(code="abc", redirect_uri="https://app/", identity={"client_id": "c1"})
    assert data == {"grant_type": "authorization_code", "code": "abc", "redirect_uri": "https://app/", "client_id": "c1"}
    data = authorization_code_grant(
        code="abc", redirect_uri="https://app/", identity={"client_id": "c1"}, code_verifier="v1"
    )
    assert data["code_verifier"] == "v1"


def test_request_token_error_is_parsed(provider, make_http):
    async def scenario():
        async with make_http() as http:
            config = await fetch_configuration(ISSUER, http)
            await request_token(
                config,
                authorization_code_grant(code="bogus", redirect_uri="https://app/", identity={"client_id": "c1"}),
                http,
            )

    with pytest.raises(TokenRequestError) as exc:
        asyncio.run(scenario())
    assert exc.value.error == "invalid_grant"
    assert exc.value.status_code == 400
    assert provider.log.token_requests[-1]["code"] == "bogus"


def test_request_token_without_access_token():
    def handler(request):
        return httpx.Response(200, json={"token_type": "Bearer"})

    config = ProviderConfiguration(authorization_endpoint="https://idp/a", token_endpoint="https://idp/t")

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            await request_token(config, refresh_token_grant(refresh_token="r", redirect_uri="x", identity={}), http)

    with pytest.raises(TokenRequestError) as exc:
        asyncio.run(scenario())
    assert exc.value.error == "invalid_response"


def test_revoke_token_without_endpoint():
    config = ProviderConfiguration(authorization_endpoint="https://idp/a", token_endpoint="https://idp/t")
    with pytest.raises(RevocationError):
        asyncio.run(revoke_token(config, "rt", {"client_id": "c1"}))


def test_revoke_token_failure(provider, make_http):
    provider.fail_revocation = True

    async def scenario():
        async with make_http() as http:
            config = await fetch_configuration(ISSUER, http)
            await revoke_token(config, "rt", {"client_id": "c1"}, http)

    with pytest.raises(RevocationError):
        asyncio.run(scenario())
    assert provider.log.revocations[-1]["token_type_hint"] == "refresh_token"


def test_decode_id_token_without_verification():
    token = jwt.encode({"sub": "u1", "exp": 1700000000}, "any-secret", algorithm="HS256")
    assert decode_id_token(token) == {"sub": "u1", "exp": 1700000000}


def test_decode_id_token_handles_utf8_claims():
    token = jwt.encode({"name": "Zoë"}, "any-secret", algorithm="HS256")
    assert decode_id_token(token)["name"] == "Zoë"


def test_decode_malformed_id_token_logs_and_returns_none(caplog):
    with caplog.at_level(logging.ERROR, logger="oidc_client.tokens"):
        assert decode_id_token("not-a-jwt") is None
    assert "Unable to parse" in caplog.text


def test_expires_epoch_prefers_id_token_exp():
    tokens = TokenResponse(access_token="at", expires_in=60)
    assert tokens.expires_epoch({"exp": 2000}, now=1000) == 2000
    assert tokens.expires_epoch(None, now=1000) == 1060
    assert TokenResponse(access_token="at").expires_epoch(None) is None


def test_expires_epoch_defaults_to_wall_clock():
    tokens = TokenResponse(access_token="at", expires_in=60)
    assert abs(tokens.expires_epoch({}) - (time.time() + 60)) < 5
