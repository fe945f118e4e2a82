"""
Pytest configuration for oidc_client. The identity provider is the in-memory DevProvider served
in-process (httpx.ASGITransport), so tests never touch the network.
"""
import httpx
import pytest

from oidc_client.config import ClientConfig, OpenIDConnectConfig
from oidc_client.dev_provider import DevProvider
from oidc_client.machine import Callbacks

ISSUER = "https://idp.example/realm"


class FakeTimeouts:
    """Timeouts that only fire when told to."""

    def __init__(self):
        self.pending: dict[int, tuple[float, object]] = {}
        self.cancelled: list[int] = []
        self._next = 0

    def call_later(self, delay_seconds, callback):
        self._next += 1
        self.pending[self._next] = (delay_seconds, callback)
        return self._next

    def cancel(self, handle):
        self.pending.pop(handle, None)
        self.cancelled.append(handle)

    def delays(self) -> list[float]:
        return [delay for delay, _ in self.pending.values()]

    def fire_all(self):
        for handle, (_, callback) in list(self.pending.items()):
            del self.pending[handle]
            callback()


class Recorder:
    """Collects every callback the machine makes."""

    def __init__(self):
        self.access_tokens: list = []
        self.id_tokens: list = []
        self.logouts = 0
        self.errors: list = []

    def callbacks(self) -> Callbacks:
        return Callbacks(
            on_access_token=self.access_tokens.append,
            on_id_token=lambda raw, claims: self.id_tokens.append((raw, claims)),
            on_logout=self._logout,
            on_error=self.errors.append,
        )

    def _logout(self):
        self.logouts += 1


@pytest.fixture
def provider():
    return DevProvider(ISSUER, token_ttl=600)


@pytest.fixture
def make_http(provider):
    """Factory: an AsyncClient whose requests go to the DevProvider app (use inside the event loop)."""

    def _make() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=provider.app))

    return _make


@pytest.fixture
def timeouts():
    return FakeTimeouts()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def make_config():
    def _make(storage=None, redirect_uri="https://app.example/", min_validity_seconds=None, **client_kwargs):
        return OpenIDConnectConfig(
            auth_server_url=ISSUER + "/",
            client=ClientConfig(client_id="c1", redirect_uri=redirect_uri, **client_kwargs),
            storage=storage,
            min_validity_seconds=min_validity_seconds,
        )

    return _make
