"""
OpenID Connect discovery: fetch the provider's endpoints from its well-known configuration document.
"""
import logging
from dataclasses import dataclass

import httpx

from oidc_client.config import HTTP_TIMEOUT
from oidc_client.errors import DiscoveryError

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


@dataclass(frozen=True)
class ProviderConfiguration:
    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: str | None = None
    end_session_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    issuer: str | None = None

    @classmethod
    def from_document(cls, document: dict) -> "ProviderConfiguration":
        missing = [name for name in ("authorization_endpoint", "token_endpoint") if not document.get(name)]
        if missing:
            raise DiscoveryError("invalid_configuration", f"Discovery document lacks {', '.join(missing)}")
        return cls(
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            revocation_endpoint=document.get("revocation_endpoint"),
            end_session_endpoint=document.get("end_session_endpoint"),
            userinfo_endpoint=document.get("userinfo_endpoint"),
            issuer=document.get("issuer"),
        )


def discovery_url(issuer_url: str) -> str:
    return f"{issuer_url.rstrip('/')}{WELL_KNOWN_PATH}"


async def fetch_configuration(
    issuer_url: str,
    http: httpx.AsyncClient | None = None,
    timeout: float = HTTP_TIMEOUT,
) -> ProviderConfiguration:
    """GET the discovery document. Raises DiscoveryError on any failure."""
    url = discovery_url(issuer_url)
    try:
        if http is not None:
            r = await http.get(url, headers={"Accept": "application/json"}, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                r = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        raise DiscoveryError("discovery_failed", f"{url}: {e}") from e

    if r.status_code != 200:
        raise DiscoveryError("discovery_failed", f"{url} returned HTTP {r.status_code}")
    try:
        document = r.json()
    except ValueError as e:
        raise DiscoveryError("invalid_configuration", f"{url} did not return JSON") from e
    if not isinstance(document, dict):
        raise DiscoveryError("invalid_configuration", f"{url} did not return a JSON object")

    config = ProviderConfiguration.from_document(document)
    logger.debug("Discovered endpoints for %s: token_endpoint=%s", issuer_url, config.token_endpoint)
    return config
