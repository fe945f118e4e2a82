"""
Key-value stores for the authorization request that must survive the redirect to the provider and back
(CSRF state, PKCE code_verifier).

Durable stores (MemoryStore, JsonFileStore) really keep what they are given.
ReplayStore keeps nothing: it answers reads from the state= found in the current address, so the
redirect-completion logic works without any browser storage (cookie-less mode; no PKCE, state unchecked).
"""
import json
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Protocol

from oidc_client.url_params import CredentialParser

logger = logging.getLogger(__name__)

# Key naming for pending authorization requests; classify_key() is the only reader of this scheme
CURRENT_REQUEST_KEY = "oidc_current_authorization_request"
REQUEST_KEY_SUFFIX = "_oidc_authorization_request"

# Returned by ReplayStore for keys it cannot answer
UNKNOWN_KEY_PLACEHOLDER = "???"


class KeyKind(Enum):
    PENDING_STATE = "pending_state"
    PENDING_REQUEST = "pending_request"
    OTHER = "other"


def request_key(state: str) -> str:
    return f"{state}{REQUEST_KEY_SUFFIX}"


def classify_key(key: str) -> KeyKind:
    if key == CURRENT_REQUEST_KEY:
        return KeyKind.PENDING_STATE
    if key.endswith(REQUEST_KEY_SUFFIX):
        return KeyKind.PENDING_REQUEST
    return KeyKind.OTHER


class KeyValueStore(Protocol):
    durable: bool

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...


def is_durable(store) -> bool:
    return bool(getattr(store, "durable", True))


class MemoryStore:
    """Process-lifetime store (the session-storage flavor)."""

    durable = True

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class JsonFileStore:
    """
    Store persisted as one JSON object in a file (the local-storage flavor).
    Writes go to a temp file in the same directory and are moved into place atomically.
    """

    durable = True

    def __init__(self, path: str | os.PathLike[str]):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except json.JSONDecodeError as e:
            logger.warning("Ignoring unreadable store file %s: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring store file %s: not a JSON object", self._path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, items: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(items, handle, separators=(",", ":"), sort_keys=True)
            os.replace(tmp_path, self._path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        self._write(items)

    def remove(self, key: str) -> None:
        items = self._read()
        if items.pop(key, None) is not None:
            self._write(items)

    def clear(self) -> None:
        self._write({})


class ReplayStore:
    """
    A store that pretends to remember things from two redirects ago.

    Writes are ignored. Reads of the pending-state key return the state= of the current address;
    reads of a pending-request key return {"state": ...} without any code_verifier.
    """

    durable = False

    def __init__(self, state: str | None):
        self._state = state

    @classmethod
    def from_address(cls, address: str) -> "ReplayStore":
        return cls(CredentialParser(address).parse().get("state"))

    @property
    def state(self) -> str | None:
        return self._state

    def get(self, key: str) -> str | None:
        if not self._state:
            return None  # Pretend we know nothing
        kind = classify_key(key)
        if kind is KeyKind.PENDING_STATE:
            return self._state
        if kind is KeyKind.PENDING_REQUEST:
            return json.dumps({"state": self._state})
        # PKCE data was never stored in this mode, so nobody should be asking
        logger.error("ReplayStore cannot answer get(%r)", key)
        return UNKNOWN_KEY_PLACEHOLDER

    def set(self, key: str, value: str) -> None:
        pass

    def remove(self, key: str) -> None:
        pass

    def clear(self) -> None:
        pass
