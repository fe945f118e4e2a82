"""
Authentication state on top of the OpenIDConnect machine, for the UI layer to consume:
one of LOGGED_OUT / IN_PROGRESS / LOGGED_IN / ERROR, the last error, the access token and the
decoded ID token.

The context may be closed (its owner torn down) while a network step is still in flight;
every callback checks liveness first and drops the result silently once closed.
"""
import dataclasses
import logging
import time
from enum import IntEnum
from typing import Callable

import httpx

from oidc_client.config import OpenIDConnectConfig
from oidc_client.host import Location, Navigator
from oidc_client.machine import Callbacks, OpenIDConnect
from oidc_client.renewal import Timeouts

logger = logging.getLogger(__name__)

# Renewal headroom when the caller does not set min_validity_seconds
DEFAULT_MIN_VALIDITY_SECONDS = 5


class AuthState(IntEnum):
    LOGGED_OUT = 0
    IN_PROGRESS = 1
    LOGGED_IN = 2
    ERROR = 3


class AuthContext:
    def __init__(
        self,
        config: OpenIDConnectConfig,
        location: Location,
        navigator: Navigator | None = None,
        *,
        on_new_token: Callable[[str], None] | None = None,
        on_logout: Callable[[], None] | None = None,
        on_initial_auth_complete: Callable[[], None] | None = None,
        http: httpx.AsyncClient | None = None,
        timeouts: Timeouts | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if not config.min_validity_seconds:
            config = dataclasses.replace(config, min_validity_seconds=DEFAULT_MIN_VALIDITY_SECONDS)
        callbacks = Callbacks(
            on_access_token=self._on_change_token,
            on_id_token=self._on_id_token,
            on_error=self._on_error,
        )
        self._oidc = OpenIDConnect(
            config, location, navigator, http=http, timeouts=timeouts, clock=clock, callbacks=callbacks
        )
        self._on_new_token = on_new_token
        self._on_logout = on_logout
        self._on_initial_auth_complete = on_initial_auth_complete

        self._active = True
        self._in_progress = False
        self.error: Exception | None = None
        self.access_token: str | None = None
        self.id_token: dict | None = None

    @property
    def oidc(self) -> OpenIDConnect:
        return self._oidc

    @property
    def active(self) -> bool:
        return self._active

    @property
    def state(self) -> AuthState:
        # A pending error wins over everything, including a token we still hold
        if self.error is not None:
            return AuthState.ERROR
        if self._in_progress:
            return AuthState.IN_PROGRESS
        if self.access_token is None:
            return AuthState.LOGGED_OUT
        return AuthState.LOGGED_IN

    def _initial_auth_completed(self) -> None:
        # Only run() completes the initial authentication; at most once
        if self._on_initial_auth_complete is not None:
            hook, self._on_initial_auth_complete = self._on_initial_auth_complete, None
            hook()

    async def run(self) -> bool:
        """Consume any redirect-back parameters and exchange them; True iff logged in afterwards."""
        self._in_progress = True
        try:
            return await self._oidc.run()
        finally:
            if self._active:
                self._in_progress = False
                self._initial_auth_completed()

    async def login(self) -> None:
        await self._oidc.login()

    async def logout(self) -> None:
        self._in_progress = True
        try:
            await self._oidc.logout()
        finally:
            if self._active:
                self._in_progress = False

    def stop(self) -> None:
        self._oidc.stop()

    def close(self) -> None:
        """The owner is gone: stop renewal and ignore whatever is still in flight."""
        self._active = False
        self._oidc.close()

    def expires_in_seconds(self) -> float | None:
        return self._oidc.expires_in_seconds()

    def _on_change_token(self, access_token: str | None) -> None:
        if not self._active:
            return
        self.access_token = access_token
        if access_token is None:
            self.id_token = None
            if self._on_logout is not None:
                self._on_logout()
        else:
            self.error = None
            if self._on_new_token is not None:
                self._on_new_token(access_token)

    def _on_id_token(self, raw: str, claims: dict | None) -> None:
        if not self._active:
            return
        self.id_token = claims

    def _on_error(self, error: Exception) -> None:
        logger.error("%s", error)
        if not self._active:
            return
        self.error = error
