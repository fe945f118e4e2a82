"""
OpenID-Connect client configuration. Defaults come from the environment; no secrets in this file.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Any

# Identity provider (issuer base URL); trailing slashes are trimmed before discovery
AUTH_SERVER_URL = os.environ.get("OIDC_AUTH_SERVER_URL", "http://127.0.0.1:9000").rstrip("/")

# Our client_id (must be registered at the provider)
CLIENT_ID = os.environ.get("OIDC_CLIENT_ID", "test-client")

# Optional; public (browser) clients usually have none
CLIENT_SECRET = os.environ.get("OIDC_CLIENT_SECRET", "").strip() or None

# Unset: use the current address with the protocol parameters stripped
REDIRECT_URI = os.environ.get("OIDC_REDIRECT_URI", "").strip() or None

DEFAULT_SCOPE = os.environ.get("OIDC_SCOPE", "openid")

# Renew this many seconds before expiry; 0 disables automatic renewal
MIN_VALIDITY_SECONDS = int(os.environ.get("OIDC_MIN_VALIDITY_SECONDS", "0"))

# Timeout (seconds) for discovery, token and revocation requests
HTTP_TIMEOUT = float(os.environ.get("OIDC_HTTP_TIMEOUT", "10.0"))

DEBUG = os.environ.get("OIDC_DEBUG", "").strip().lower() in ("1", "true", "yes")

# Development provider (dev_provider.py)
DEV_ISSUER = os.environ.get("OIDC_DEV_ISSUER", "http://127.0.0.1:9000").rstrip("/")
DEV_TOKEN_TTL = int(os.environ.get("OIDC_DEV_TOKEN_TTL", "300"))


@dataclass(frozen=True)
class ClientConfig:
    """What the client sends to the provider when the OpenID-Connect machinery starts."""

    client_id: str
    client_secret: str | None = None
    redirect_uri: str | None = None
    scope: str = "openid"
    extras: dict[str, str] = field(default_factory=dict)
    storage: Any = None

    def identity(self) -> dict[str, str]:
        """client_id (and client_secret when set) as form fields."""
        fields = {"client_id": self.client_id}
        if self.client_secret:
            fields["client_secret"] = self.client_secret
        return fields


@dataclass
class OpenIDConnectConfig:
    auth_server_url: str
    client: ClientConfig
    debug: bool = False
    # Takes precedence over client.storage; None for both means cookie-less mode
    storage: Any = None
    min_validity_seconds: int | None = None

    @property
    def issuer_url(self) -> str:
        return self.auth_server_url.rstrip("/")

    def resolved_storage(self):
        return self.storage if self.storage is not None else self.client.storage

    @classmethod
    def from_env(cls, **overrides) -> "OpenIDConnectConfig":
        client = ClientConfig(
            client_id=CLIENT_ID,
            client_secret=CLIENT_SECRET,
            redirect_uri=REDIRECT_URI,
            scope=DEFAULT_SCOPE,
        )
        values = {
            "auth_server_url": AUTH_SERVER_URL,
            "client": client,
            "debug": DEBUG,
            "min_validity_seconds": MIN_VALIDITY_SECONDS or None,
        }
        values.update(overrides)
        return cls(**values)


def set_debug_logging(enabled: bool) -> None:
    """Turn DEBUG output of the oidc_client loggers on or off."""
    logging.getLogger("oidc_client").setLevel(logging.DEBUG if enabled else logging.NOTSET)
