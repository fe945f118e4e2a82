"""
OpenID-Connect state machine: discovery, login redirect, redirect-back consumption,
code / refresh token exchange, scheduled renewal, revocation and logout.

Everything the browser would provide (address bar, navigation, storage, timers, HTTP) is injected,
so the machine holds no hidden globals.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from oidc_client.config import HTTP_TIMEOUT, OpenIDConnectConfig, set_debug_logging
from oidc_client.discovery import ProviderConfiguration, fetch_configuration
from oidc_client.errors import AuthorizationError, RenewalHeadroomError, TokenRequestError
from oidc_client.flow_store import PendingRequests
from oidc_client.host import Location, Navigator
from oidc_client.pkce import build_authorize_url, generate_pkce, generate_state
from oidc_client.renewal import RenewalTimer, Timeouts
from oidc_client.storage import ReplayStore, is_durable
from oidc_client.tokens import (
    authorization_code_grant,
    decode_id_token,
    refresh_token_grant,
    request_token,
    revoke_token,
)
from oidc_client.url_params import CredentialParser, strip_protocol_params

logger = logging.getLogger(__name__)


def _ignore(*args) -> None:
    pass


def _retrieve_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


@dataclass
class Callbacks:
    """
    What the caller hears from the machine.

    on_access_token(token): a new access token; None when logout completes, just before on_logout
    on_id_token(raw, claims): a new ID token; claims is None if it could not be decoded
    on_logout(): logout() completed
    on_error(error): an operation failed; errors never propagate out of run/login/logout
    """

    on_access_token: Callable[[str | None], None] = _ignore
    on_id_token: Callable[[str, dict | None], None] = _ignore
    on_logout: Callable[[], None] = _ignore
    on_error: Callable[[Exception], None] = _ignore


class OpenIDConnect:
    def __init__(
        self,
        config: OpenIDConnectConfig,
        location: Location,
        navigator: Navigator | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        timeouts: Timeouts | None = None,
        callbacks: Callbacks | None = None,
        clock: Callable[[], float] = time.time,
        http_timeout: float = HTTP_TIMEOUT,
    ):
        self._config = config
        self._client = config.client
        self._location = location
        self._navigator = navigator if navigator is not None else location
        self._http = http
        self._clock = clock
        self._http_timeout = http_timeout

        storage = config.resolved_storage()
        if storage is None:
            # No browser storage: state round-trips through the URL only, and PKCE is off
            storage = ReplayStore.from_address(location.href)
        self._storage = storage
        self._pending = PendingRequests(storage)
        self._use_pkce = is_durable(storage)

        self._callbacks = callbacks if callbacks is not None else Callbacks()
        self._configured: asyncio.Future | None = None
        self._discovery_error: Exception | None = None
        self._consumed = False
        self._tasks: set[asyncio.Future] = set()
        # Bumped by logout(); a token response from an older generation is dropped
        self._generation = 0
        self._closed = False
        self._timer = RenewalTimer(timeouts)

        self.refresh_token: str | None = None
        self.expires_epoch: float | None = None
        # Only ever set when storage is durable
        self.pkce_code_verifier: str | None = None

    @property
    def storage(self):
        return self._storage

    @property
    def uses_pkce(self) -> bool:
        return self._use_pkce

    @property
    def renewal_armed(self) -> bool:
        return self._timer.armed

    async def run(self, callbacks: Callbacks | None = None) -> bool:
        """
        Start discovery, consume the redirect-back parameters if any, and exchange the code.
        Returns True iff on_access_token was called with a token before returning.
        """
        if callbacks is not None:
            self._callbacks = callbacks
        if self._config.debug:
            set_debug_logging(True)
        if self._consumed:
            logger.warning("run() called twice; the redirect-back parameters were already consumed")
            return False
        self._consumed = True
        try:
            # Start fetching the provider configuration even if we turn out not to be logged in,
            # to speed up login() later
            self._configuration()

            code = self._consume_code_from_location()
            if not code:
                return False
            return await self._obtain_and_dispatch_tokens(code)
        except Exception as e:
            logger.error("OpenID-Connect run failed: %s", e)
            self._report(e)
            return False

    def _configuration(self) -> asyncio.Future:
        """
        Future of the provider configuration; all awaiters share one discovery fetch.
        After a failed fetch the next caller starts a new one.
        """
        if self._configured is None:
            self._configured = asyncio.get_running_loop().create_future()
            self._configured.add_done_callback(_retrieve_exception)
            self._spawn(self._discover(self._configured))
        return self._configured

    async def _discover(self, future: asyncio.Future) -> None:
        try:
            config = await fetch_configuration(self._config.issuer_url, self._http, self._http_timeout)
        except Exception as e:
            logger.error("Discovery failed for %s: %s", self._config.issuer_url, e)
            self._discovery_error = e
            if self._configured is future:
                self._configured = None
            if not future.done():
                future.set_exception(e)
            if not self._closed:
                self._callbacks.on_error(e)
            return
        if not future.done():
            future.set_result(config)

    def _report(self, e: Exception) -> None:
        # Discovery failures were already reported by _discover
        if e is not self._discovery_error and not self._closed:
            self._callbacks.on_error(e)

    def _spawn(self, coro) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _consume_code_from_location(self) -> str | None:
        """
        Return the code= from the current address, raise AuthorizationError for error= (or a state
        that matches no pending request), or return None when there are no protocol parameters.
        The address is scrubbed of code, state, error and session_state in every case.
        """
        parser = CredentialParser(self._location.href)
        try:
            params = parser.parse()
            if params.get("error"):
                self._pending.discard(self._pending.current_state())
                raise AuthorizationError(params["error"], params.get("error_description"))
            code = params.get("code")
            if not code:
                return None
            flow = self._pending.complete(params.get("state"))
            if flow.code_verifier:
                self.pkce_code_verifier = flow.code_verifier
            return code
        finally:
            self._location.replace(parser.scrub())

    def _redirect_uri(self) -> str:
        return self._client.redirect_uri or strip_protocol_params(self._location.href)

    def _current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    async def _obtain_and_dispatch_tokens(self, code: str | None = None) -> bool:
        """
        authorization_code grant when code is given (with the PKCE verifier, if any),
        else refresh_token grant with the refresh token we hold. Then dispatch to the callbacks.

        The request is never aborted, but if logout() or close() happens while it is in flight its
        result (or failure) is dropped without touching any state. Returns True iff tokens were dispatched.
        """
        generation = self._generation
        try:
            provider = await self._configuration()
            if self._current(generation):
                tokens = await request_token(provider, self._grant(code), self._http, self._http_timeout)
        except Exception:
            if self._current(generation):
                raise
        if not self._current(generation):
            logger.debug("Dropping token response: logged out or closed while the request was in flight")
            return False

        claims = decode_id_token(tokens.id_token) if tokens.id_token else None
        expires = tokens.expires_epoch(claims, now=self._clock())
        if expires is not None:
            self.expires_epoch = expires
        if tokens.refresh_token:
            self.refresh_token = tokens.refresh_token

        self._callbacks.on_access_token(tokens.access_token)
        if tokens.id_token:
            self._callbacks.on_id_token(tokens.id_token, claims)

        if self.refresh_token:
            self.schedule_renewal()
        return True

    def _grant(self, code: str | None) -> dict:
        identity = self._client.identity()
        if code:
            data = authorization_code_grant(
                code=code,
                redirect_uri=self._redirect_uri(),
                identity=identity,
                code_verifier=self.pkce_code_verifier,
            )
            self.pkce_code_verifier = None
            return data
        if not self.refresh_token:
            raise TokenRequestError("invalid_request", "No refresh token to renew with")
        return refresh_token_grant(
            refresh_token=self.refresh_token, redirect_uri=self._redirect_uri(), identity=identity
        )

    async def login(self) -> None:
        """Navigate away to the provider so that the user may log in."""
        try:
            provider = await self._configuration()
            self._redirect_for_login(provider)
        except Exception as e:
            logger.error("Login redirect failed: %s", e)
            self._report(e)

    def _redirect_for_login(self, provider: ProviderConfiguration) -> None:
        state = generate_state()
        code_verifier = code_challenge = None
        if self._use_pkce:
            code_verifier, code_challenge = generate_pkce()
        self._pending.save(state, code_verifier)

        redirect_uri = self._redirect_uri()
        url = build_authorize_url(
            authorization_endpoint=provider.authorization_endpoint,
            client_id=self._client.client_id,
            redirect_uri=redirect_uri,
            scope=self._client.scope or "openid",
            state=state,
            code_challenge=code_challenge,
            extras=self._client.extras,
        )
        logger.debug(
            "Redirecting to %s (redirect_uri=%s) %s PKCE",
            provider.authorization_endpoint,
            redirect_uri,
            "with" if self._use_pkce else "without",
        )
        self._navigator.navigate(url)

    async def logout(self) -> None:
        """
        Stop renewal, revoke the refresh token (best effort), forget tokens, then call
        on_access_token(None) and on_logout. A token request still in flight is dropped when it returns.
        """
        self._generation += 1
        self.stop()
        try:
            await self._revoke_refresh_token()
        except Exception as e:
            logger.warning("Refresh token revocation failed: %s", e)
        finally:
            self.refresh_token = None
            self.expires_epoch = None
            self.pkce_code_verifier = None
            if not self._closed:
                self._callbacks.on_access_token(None)
                self._callbacks.on_logout()

    async def _revoke_refresh_token(self) -> None:
        # The access token is not revoked: resource servers do not ask the provider about it
        if not self.refresh_token:
            return
        provider = await asyncio.wait_for(asyncio.shield(self._configuration()), timeout=self._http_timeout)
        await revoke_token(provider, self.refresh_token, self._client.identity(), self._http, self._http_timeout)
        logger.debug("Refresh token revoked")

    def expires_in_seconds(self) -> float | None:
        """Seconds until the current token expires; None if there is no current token."""
        if self.expires_epoch is None:
            return None
        return self.expires_epoch - self._clock()

    def schedule_renewal(self) -> None:
        if self._closed:
            return
        min_validity = self._config.min_validity_seconds
        if not min_validity:
            return
        expires_in = self.expires_in_seconds()
        if expires_in is None:
            logger.debug("Token expiry unknown; not scheduling renewal")
            return
        delay = expires_in - min_validity
        if delay <= 0:
            self.stop()
            self._callbacks.on_error(RenewalHeadroomError(self._config.auth_server_url, expires_in, min_validity))
            return
        logger.debug("Scheduling renewal in %.0f seconds", delay)
        self._timer.start(delay, self._on_renewal_due)

    def _on_renewal_due(self) -> None:
        if self._closed:
            return
        self._spawn(self._renew())

    async def _renew(self) -> None:
        try:
            await self._obtain_and_dispatch_tokens()
        except Exception as e:
            # No retry: the renewal chain stops here
            logger.error("Token renewal failed: %s", e)
            self._report(e)

    def stop(self) -> None:
        """Stop the renewal timer. No-op if none is armed."""
        self._timer.stop()

    def close(self) -> None:
        """The owner is gone: stop renewal and drop every result still in flight, silently."""
        self._closed = True
        self.stop()

    async def join(self) -> None:
        """Wait for background work (discovery, renewal in flight) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
