"""Tests for the durable stores, ReplayStore and pending authorization requests."""
import json
import logging
import time

import pytest

from oidc_client.errors import AuthorizationError
from oidc_client.flow_store import FLOW_TTL, PendingRequests
from oidc_client.storage import (
    CURRENT_REQUEST_KEY,
    UNKNOWN_KEY_PLACEHOLDER,
    JsonFileStore,
    KeyKind,
    MemoryStore,
    ReplayStore,
    classify_key,
    is_durable,
    request_key,
)


def test_memory_store_round_trip():
    store = MemoryStore()
    store.set("k", "v")
    assert store.get("k") == "v"
    store.remove("k")
    assert store.get("k") is None
    store.set("a", "1")
    store.clear()
    assert len(store) == 0


def test_json_file_store_persists_across_instances(tmp_path):
    path = tmp_path / "sub" / "store.json"
    JsonFileStore(path).set("k", "v")
    other = JsonFileStore(path)
    assert other.get("k") == "v"
    other.remove("k")
    assert JsonFileStore(path).get("k") is None
    assert not list(path.parent.glob("*.tmp"))


def test_json_file_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.get("k") is None
    store.set("k", "v")
    assert json.loads(path.read_text("utf-8")) == {"k": "v"}


def test_classify_key():
    assert classify_key(CURRENT_REQUEST_KEY) is KeyKind.PENDING_STATE
    assert classify_key(request_key("abc")) is KeyKind.PENDING_REQUEST
    assert classify_key("something_else") is KeyKind.OTHER


def test_replay_store_answers_from_address_state():
    store = ReplayStore.from_address("https://app.example/?code=c&state=xyz")
    assert store.state == "xyz"
    assert store.get(CURRENT_REQUEST_KEY) == "xyz"
    assert json.loads(store.get(request_key("xyz"))) == {"state": "xyz"}
    assert not is_durable(store)


def test_replay_store_ignores_writes():
    store = ReplayStore("xyz")
    store.set(CURRENT_REQUEST_KEY, "other")
    store.remove(CURRENT_REQUEST_KEY)
    store.clear()
    assert store.get(CURRENT_REQUEST_KEY) == "xyz"


def test_replay_store_without_state_knows_nothing():
    store = ReplayStore.from_address("https://app.example/")
    assert store.get(CURRENT_REQUEST_KEY) is None
    assert store.get(request_key("x")) is None


def test_replay_store_unknown_key_logs_and_returns_placeholder(caplog):
    store = ReplayStore("xyz")
    with caplog.at_level(logging.ERROR, logger="oidc_client.storage"):
        assert store.get("code_verifier") == UNKNOWN_KEY_PLACEHOLDER
    assert "code_verifier" in caplog.text


def test_pending_request_round_trip_in_durable_store():
    store = MemoryStore()
    PendingRequests(store).save("xyz", "v1")
    flow = PendingRequests(store).complete("xyz")
    assert flow.state == "xyz"
    assert flow.code_verifier == "v1"
    # Consumed: nothing left behind
    assert len(store) == 0


def test_pending_request_state_mismatch():
    store = MemoryStore()
    PendingRequests(store).save("xyz", "v1")
    with pytest.raises(AuthorizationError) as exc:
        PendingRequests(store).complete("forged")
    assert exc.value.error == "state_mismatch"
    assert len(store) == 0


def test_pending_request_missing_state():
    with pytest.raises(AuthorizationError):
        PendingRequests(MemoryStore()).complete(None)


def test_pending_request_expired():
    store = MemoryStore()
    pending = PendingRequests(store)
    pending.save("xyz", "v1")
    record = json.loads(store.get(request_key("xyz")))
    record["created_at"] = time.time() - FLOW_TTL - 1
    store.set(request_key("xyz"), json.dumps(record))
    with pytest.raises(AuthorizationError):
        pending.complete("xyz")


def test_pending_request_through_replay_store_has_no_verifier():
    flow = PendingRequests(ReplayStore("xyz")).complete("xyz")
    assert flow.state == "xyz"
    assert flow.code_verifier is None
