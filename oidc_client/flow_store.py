"""
Pending authorization request (state -> code_verifier) kept in a key-value store between
login() and the redirect back. TTL so a stale request left over from an abandoned login is not honored.
"""
import json
import logging
import time
from dataclasses import asdict, dataclass

from oidc_client.errors import AuthorizationError
from oidc_client.storage import CURRENT_REQUEST_KEY, KeyValueStore, request_key

logger = logging.getLogger(__name__)

# TTL seconds for a pending request (time for the user to log in at the provider)
FLOW_TTL = 600


@dataclass
class PendingAuthorization:
    state: str
    code_verifier: str | None = None
    created_at: float | None = None

    def expired(self, now: float | None = None) -> bool:
        if self.created_at is None:
            return False
        return ((now if now is not None else time.time()) - self.created_at) > FLOW_TTL


class PendingRequests:
    """Read and write PendingAuthorization records in any KeyValueStore."""

    def __init__(self, store: KeyValueStore):
        self._store = store

    def save(self, state: str, code_verifier: str | None = None) -> PendingAuthorization:
        flow = PendingAuthorization(state=state, code_verifier=code_verifier, created_at=time.time())
        record = {k: v for k, v in asdict(flow).items() if v is not None}
        self._store.set(request_key(state), json.dumps(record))
        self._store.set(CURRENT_REQUEST_KEY, state)
        return flow

    def current_state(self) -> str | None:
        return self._store.get(CURRENT_REQUEST_KEY) or None

    def load(self, state: str) -> PendingAuthorization | None:
        raw = self._store.get(request_key(state))
        if not raw:
            return None
        try:
            record = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Pending authorization request for state is not valid JSON; ignoring it")
            return None
        if not isinstance(record, dict) or "state" not in record:
            return None
        return PendingAuthorization(
            state=str(record["state"]),
            code_verifier=record.get("code_verifier"),
            created_at=record.get("created_at"),
        )

    def discard(self, state: str | None) -> None:
        if state:
            self._store.remove(request_key(state))
        self._store.remove(CURRENT_REQUEST_KEY)

    def complete(self, returned_state: str | None) -> PendingAuthorization:
        """
        Match the state= the provider sent back against the request we started; consume it.
        Raises AuthorizationError (state_mismatch) when there is no such request.
        """
        current = self.current_state()
        flow = self.load(returned_state) if returned_state else None
        self.discard(current)
        if returned_state and current != returned_state:
            self.discard(returned_state)
        if not returned_state or current != returned_state or flow is None or flow.state != returned_state:
            raise AuthorizationError("state_mismatch", "Returned state does not match a pending authorization request")
        if flow.expired():
            raise AuthorizationError("state_mismatch", "Pending authorization request has expired")
        return flow
