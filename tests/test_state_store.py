from __future__ import annotations

import threading
from types import MappingProxyType

import pytest

from pylayers.delta import TOMBSTONE
from pylayers.exceptions import SetupError, StoreAlreadyInitializedError
from pylayers.state.store import StateStore


def _store(initial: dict | None = None) -> StateStore:
    store = StateStore()
    store.initialize(initial if initial is not None else {})
    return store


def test_tombstone_and_nested_merge() -> None:
    store = _store({"x": {"a": 1, "b": 2}})

    store.commit([{"x": {"a": TOMBSTONE, "c": 3}}])

    assert store.dump() == {"x": {"b": 2, "c": 3}}


@pytest.mark.parametrize("previous", [1, "text", [1, 2], {"nested": {"deep": True}}, None])
def test_tombstone_deletes_any_value_type(previous: object) -> None:
    store = _store({"k": previous, "other": 1})

    store.commit([{"k": TOMBSTONE}])

    assert "k" not in store.dump()
    assert store.dump() == {"other": 1}


def test_tombstone_for_missing_key_is_noop() -> None:
    store = _store({"a": 1})

    store.commit([{"missing": TOMBSTONE}])

    assert store.dump() == {"a": 1}


def test_lists_are_replaced_not_merged() -> None:
    store = _store({"tags": [1, 2, 3]})

    store.commit([{"tags": [9]}])

    assert store.dump() == {"tags": [9]}


def test_mapping_replaces_scalar_of_different_type() -> None:
    store = _store({"pos": 5})

    store.commit([{"pos": {"x": 1}}])

    assert store.dump() == {"pos": {"x": 1}}


def test_disjoint_deltas_commute() -> None:
    initial = {"p": {"score": 1}, "q": {"score": 2}, "r": [1]}
    d1 = {"p": {"score": 10, "ready": True}, "r": TOMBSTONE}
    d2 = {"q": {"score": TOMBSTONE, "name": "bob"}, "s": [4, 5]}

    forward = _store(initial)
    forward.commit([d1, d2])
    backward = _store(initial)
    backward.commit([d2, d1])

    assert forward.dump() == backward.dump()


def test_same_path_later_delta_wins() -> None:
    store = _store({})

    store.commit([{"item": {"owner": "first"}}, {"item": {"owner": "second"}}])

    assert store.dump() == {"item": {"owner": "second"}}


@pytest.mark.parametrize("batch", [[], [{}]])
def test_empty_commit_leaves_state_unchanged(batch: list) -> None:
    initial = {"a": {"b": [1, 2]}, "c": "x"}
    store = _store(initial)

    applied = store.commit(batch)

    assert store.dump() == initial
    assert applied == len(batch)


def test_malformed_delta_is_skipped_rest_applies(caplog: pytest.LogCaptureFixture) -> None:
    store = _store({"a": 1})

    applied = store.commit([{"b": 2}, ["not", "a", "mapping"], "nope", {"c": 3}])

    assert applied == 2
    assert store.dump() == {"a": 1, "b": 2, "c": 3}
    assert "Skipping malformed delta" in caplog.text


def test_snapshot_is_independent_and_read_only() -> None:
    store = _store({"x": {"a": 1}, "items": [1, 2]})

    snapshot = store.snapshot()
    store.commit([{"x": {"a": 2}}])

    assert snapshot["x"]["a"] == 1
    assert snapshot["items"] == (1, 2)
    assert isinstance(snapshot, MappingProxyType)
    with pytest.raises(TypeError):
        snapshot["x"]["a"] = 5  # type: ignore[index]


def test_commit_does_not_alias_caller_objects() -> None:
    store = _store({})
    payload = {"tags": ["a"]}

    store.commit([{"entry": payload}])
    payload["tags"].append("b")

    assert store.dump() == {"entry": {"tags": ["a"]}}


def test_dump_is_a_copy() -> None:
    store = _store({"a": {"b": 1}})

    dumped = store.dump()
    dumped["a"]["b"] = 99

    assert store.dump() == {"a": {"b": 1}}


def test_initialize_twice_raises() -> None:
    store = _store({"a": 1})

    with pytest.raises(StoreAlreadyInitializedError):
        store.initialize({"a": 2})
    assert store.dump() == {"a": 1}


def test_initialize_rejects_non_mapping() -> None:
    store = StateStore()

    with pytest.raises(SetupError):
        store.initialize([1, 2])  # type: ignore[arg-type]
    assert not store.initialized


def test_initialize_copies_initial_state() -> None:
    initial = {"a": {"b": 1}}
    store = _store(initial)

    initial["a"]["b"] = 2

    assert store.dump() == {"a": {"b": 1}}


def test_commit_accepts_frozen_snapshot_values() -> None:
    store = _store({"src": {"list": [1, 2], "nested": {"k": "v"}}})
    snapshot = store.snapshot()

    store.commit([{"dst": snapshot["src"]}])

    assert store.dump()["dst"] == {"list": [1, 2], "nested": {"k": "v"}}


def test_uncopyable_delta_is_skipped_whole(caplog: pytest.LogCaptureFixture) -> None:
    store = _store({})

    applied = store.commit([{"a": 1, "b": threading.Lock()}, {"c": 3}])

    assert applied == 1
    assert store.dump() == {"c": 3}
    assert "cannot be copied" in caplog.text


def test_snapshot_sets_are_frozen() -> None:
    store = _store({"tags": {"red", "blue"}})

    snapshot = store.snapshot()

    assert snapshot["tags"] == frozenset({"red", "blue"})
    assert isinstance(snapshot["tags"], frozenset)
    assert store.dump()["tags"] == {"red", "blue"}
