"""
Token endpoint calls (authorization_code and refresh_token grants, RFC 6749 4.1.3 and 6),
token revocation (RFC 7009) and ID token claim extraction.
ID tokens are decoded, not verified: signature checks are the resource server's job.
"""
import logging
import time
from dataclasses import dataclass

import httpx
import jwt

from oidc_client.config import HTTP_TIMEOUT
from oidc_client.discovery import ProviderConfiguration
from oidc_client.errors import RevocationError, TokenRequestError

logger = logging.getLogger(__name__)

GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"
GRANT_TYPE_REFRESH_TOKEN = "refresh_token"


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    scope: str = ""
    token_type: str = "Bearer"

    @classmethod
    def from_json(cls, data: dict) -> "TokenResponse":
        access_token = data.get("access_token")
        if not access_token:
            raise TokenRequestError("invalid_response", "Token response has no access_token")
        expires_in = data.get("expires_in")
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token") or None,
            expires_in=int(expires_in) if expires_in is not None else None,
            scope=data.get("scope", ""),
            token_type=data.get("token_type", "Bearer"),
        )

    def expires_epoch(self, claims: dict | None, now: float | None = None) -> float | None:
        """ID token exp when available; else now + expires_in; else None."""
        if claims and claims.get("exp") is not None:
            try:
                return float(int(claims["exp"]))
            except (TypeError, ValueError):
                logger.warning("Ignoring non-numeric exp claim in ID token")
        if self.expires_in is not None:
            return (now if now is not None else time.time()) + self.expires_in
        return None


def decode_id_token(id_token: str) -> dict | None:
    """Claims of a compact JWT without signature verification; None (and a log line) if malformed."""
    try:
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.error("Unable to parse JWT ID token: %s", e)
        return None
    if not isinstance(claims, dict):
        logger.error("Unable to parse JWT ID token: payload is not an object")
        return None
    return claims


def _error_from_response(r: httpx.Response, default: str) -> tuple[str, str]:
    err = {}
    if r.headers.get("content-type", "").startswith("application/json"):
        try:
            body = r.json()
        except ValueError:
            body = {}
        # FastAPI-style providers wrap the OAuth2 error object in "detail"
        if isinstance(body, dict):
            err = body.get("detail") if isinstance(body.get("detail"), dict) else body
    error = err.get("error") or default
    description = err.get("error_description") or err.get("error") or r.text or f"HTTP {r.status_code}"
    return str(error), str(description)


async def _post_form(url: str, data: dict, http: httpx.AsyncClient | None, timeout: float) -> httpx.Response:
    headers = {"Accept": "application/json"}
    if http is not None:
        return await http.post(url, data=data, headers=headers, timeout=timeout)
    async with httpx.AsyncClient(timeout=timeout) as client:
        return await client.post(url, data=data, headers=headers)


async def request_token(
    config: ProviderConfiguration,
    data: dict,
    http: httpx.AsyncClient | None = None,
    timeout: float = HTTP_TIMEOUT,
) -> TokenResponse:
    """POST a grant to the token endpoint. Raises TokenRequestError on transport, HTTP or format errors."""
    form = {k: v for k, v in data.items() if v is not None}
    logger.debug("Requesting %s grant at %s", form.get("grant_type"), config.token_endpoint)
    try:
        r = await _post_form(config.token_endpoint, form, http, timeout)
    except httpx.HTTPError as e:
        raise TokenRequestError("request_failed", str(e)) from e

    if r.status_code != 200:
        error, description = _error_from_response(r, "token_request_failed")
        raise TokenRequestError(error, description, status_code=r.status_code)
    try:
        body = r.json()
    except ValueError as e:
        raise TokenRequestError("invalid_response", "Token endpoint did not return JSON", r.status_code) from e
    if not isinstance(body, dict):
        raise TokenRequestError("invalid_response", "Token endpoint did not return a JSON object", r.status_code)
    return TokenResponse.from_json(body)


def authorization_code_grant(
    *, code: str, redirect_uri: str, identity: dict, code_verifier: str | None = None
) -> dict:
    data = {
        "grant_type": GRANT_TYPE_AUTHORIZATION_CODE,
        "code": code,
        "redirect_uri": redirect_uri,
        **identity,
    }
    if code_verifier:
        data["code_verifier"] = code_verifier
    return data


def refresh_token_grant(*, refresh_token: str | None, redirect_uri: str, identity: dict) -> dict:
    return {
        "grant_type": GRANT_TYPE_REFRESH_TOKEN,
        "refresh_token": refresh_token,
        "redirect_uri": redirect_uri,
        **identity,
    }


async def revoke_token(
    config: ProviderConfiguration,
    token: str,
    identity: dict,
    http: httpx.AsyncClient | None = None,
    timeout: float = HTTP_TIMEOUT,
    token_type_hint: str = "refresh_token",
) -> None:
    """Revoke a token at the provider. Raises RevocationError if the provider has no endpoint or refuses."""
    if not config.revocation_endpoint:
        raise RevocationError("unsupported", "Provider does not advertise a revocation_endpoint")
    data = {"token": token, "token_type_hint": token_type_hint, **identity}
    try:
        r = await _post_form(config.revocation_endpoint, data, http, timeout)
    except httpx.HTTPError as e:
        raise RevocationError("request_failed", str(e)) from e
    if r.status_code != 200:
        error, description = _error_from_response(r, "revocation_failed")
        raise RevocationError(error, description)
