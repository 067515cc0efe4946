from __future__ import annotations

import threading
from typing import Any

import pytest

from pylayers.delta import TOMBSTONE, freeze
from pylayers.layer import BaseLayer, Layer
from pylayers.layers import ClaimLayer, RegistryLayer


def _snapshot(resources: dict[str, Any] | None = None, actors: dict[str, Any] | None = None) -> Any:
    return freeze({"resources": resources or {}, "actors": actors or {}})


class _Recorder(BaseLayer):
    name = "recorder"

    def __init__(self) -> None:
        super().__init__()
        self.batches: list[list[Any]] = []

    def step(self, snapshot: Any, cycle_id: int) -> None:
        self.batches.append(self.drain_actions())
        return None


def test_base_layer_satisfies_protocol() -> None:
    assert isinstance(_Recorder(), Layer)
    assert isinstance(ClaimLayer(), Layer)


def test_layer_name_defaults() -> None:
    assert ClaimLayer().name == "claims"
    assert ClaimLayer("items").name == "items"
    assert RegistryLayer().name == "registry"


def test_drain_is_fifo_and_clears_queue() -> None:
    layer = _Recorder()
    layer.queue_action({"type": "a"})
    layer.queue_action({"type": "b"})

    layer.step(_snapshot(), 1)
    layer.step(_snapshot(), 2)

    assert layer.batches == [[{"type": "a"}, {"type": "b"}], []]
    assert layer.pending_count == 0


def test_queue_action_rejects_non_mapping() -> None:
    with pytest.raises(TypeError):
        _Recorder().queue_action(["claim"])  # type: ignore[arg-type]


def test_concurrent_producers_lose_nothing() -> None:
    layer = _Recorder()

    def produce(offset: int) -> None:
        for i in range(500):
            layer.queue_action({"type": "n", "value": offset + i})

    threads = [threading.Thread(target=produce, args=(n * 1000,)) for n in range(4)]
    for thread in threads:
        thread.start()
    drained: list[Any] = []
    while any(thread.is_alive() for thread in threads):
        drained.extend(layer.drain_actions())
    for thread in threads:
        thread.join()
    drained.extend(layer.drain_actions())

    values = [action["value"] for action in drained]
    assert len(values) == 2000
    assert len(set(values)) == 2000


def test_claim_first_in_queue_wins() -> None:
    layer = ClaimLayer()
    snapshot = _snapshot({"item_0": {"claimed": False}})
    layer.queue_action({"type": "claim", "actor": "alice", "resource": "item_0"})
    layer.queue_action({"type": "claim", "actor": "bob", "resource": "item_0"})

    delta = layer.step(snapshot, 1)

    assert delta == {
        "resources": {"item_0": {"claimed": True, "claimed_by": "alice"}},
        "actors": {"alice": {"score": 1, "claims": 1}},
    }
    assert "bob" not in delta["actors"]


def test_claim_resolution_is_reproducible() -> None:
    results = []
    for _ in range(5):
        layer = ClaimLayer()
        for actor in ("p2", "p1", "p3"):
            layer.queue_action({"type": "claim", "actor": actor, "resource": "r"})
        results.append(layer.step(_snapshot({"r": {"claimed": False}}), 1))

    assert all(result == results[0] for result in results)
    assert results[0]["resources"]["r"]["claimed_by"] == "p2"


def test_claim_already_claimed_in_snapshot_is_noop() -> None:
    layer = ClaimLayer()
    layer.queue_action({"type": "claim", "actor": "bob", "resource": "r"})

    assert layer.step(_snapshot({"r": {"claimed": True, "claimed_by": "alice"}}), 3) is None


def test_claim_missing_resource_is_noop() -> None:
    layer = ClaimLayer()
    layer.queue_action({"type": "claim", "actor": "bob", "resource": "ghost"})

    assert layer.step(_snapshot(), 1) is None


def test_claim_credits_accumulate_within_one_step() -> None:
    layer = ClaimLayer()
    snapshot = _snapshot(
        {"a": {"claimed": False, "points": 1}, "b": {"claimed": False, "points": -1}, "c": {"points": 5}},
        {"alice": {"score": 10, "claims": 2, "name": "Alice"}},
    )
    for resource in ("a", "b", "c"):
        layer.queue_action({"type": "claim", "actor": "alice", "resource": resource})

    delta = layer.step(snapshot, 1)

    assert delta["actors"]["alice"] == {"score": 15, "claims": 5}


def test_claim_ignores_other_and_malformed_actions() -> None:
    layer = ClaimLayer()
    layer.queue_action({"type": "collect", "actor": "bob", "resource": "r"})
    layer.queue_action({"type": "claim", "actor": None, "resource": "r"})

    assert layer.step(_snapshot({"r": {}}), 1) is None


def test_claim_with_custom_keys() -> None:
    layer = ClaimLayer(resources_key="items", credit_key="players")
    layer.queue_action({"type": "claim", "actor": "p1", "resource": "item_0"})

    delta = layer.step(freeze({"items": {"item_0": {"claimed": False}}}), 1)

    assert delta == {
        "items": {"item_0": {"claimed": True, "claimed_by": "p1"}},
        "players": {"p1": {"score": 1, "claims": 1}},
    }


def test_registry_add_update_remove() -> None:
    layer = RegistryLayer(key="players", defaults={"score": 0, "ready": False})
    layer.queue_action({"type": "add", "id": "p1", "fields": {"name": "Alice"}})
    layer.queue_action({"type": "update", "id": "p1", "fields": {"ready": True}})
    layer.queue_action({"type": "remove", "id": "p2"})

    delta = layer.step(freeze({"players": {"p2": {"id": "p2"}}}), 1)

    assert delta == {
        "players": {
            "p1": {"score": 0, "ready": True, "name": "Alice", "id": "p1"},
            "p2": TOMBSTONE,
        }
    }


def test_registry_add_existing_entry_is_ignored() -> None:
    layer = RegistryLayer(key="players")
    layer.queue_action({"type": "add", "id": "p1", "fields": {"name": "Impostor"}})

    assert layer.step(freeze({"players": {"p1": {"id": "p1", "name": "Alice"}}}), 1) is None


def test_registry_update_after_remove_is_dropped() -> None:
    layer = RegistryLayer(key="players")
    layer.queue_action({"type": "remove", "id": "p1"})
    layer.queue_action({"type": "update", "id": "p1", "fields": {"ready": True}})

    delta = layer.step(freeze({"players": {"p1": {"id": "p1"}}}), 1)

    assert delta == {"players": {"p1": TOMBSTONE}}


def test_registry_drops_actions_without_id_or_with_bad_fields() -> None:
    layer = RegistryLayer()
    layer.queue_action({"type": "add"})
    layer.queue_action({"type": "add", "id": "e1", "fields": "oops"})
    layer.queue_action({"type": ["weird"], "id": "e1"})

    assert layer.step(freeze({}), 1) is None


class _Requeuing(BaseLayer):
    """Queues a follow-up action from inside its own step."""

    name = "requeuing"

    def __init__(self) -> None:
        super().__init__()
        self.batches: list[list[Any]] = []

    def step(self, snapshot: Any, cycle_id: int) -> None:
        batch = self.drain_actions()
        self.batches.append(batch)
        for action in batch:
            if action["type"] == "first":
                self.queue_action({"type": "follow_up"})
        return None


def test_action_queued_during_step_waits_for_next_step() -> None:
    layer = _Requeuing()
    layer.queue_action({"type": "first"})

    layer.step(_snapshot(), 1)

    assert layer.batches == [[{"type": "first"}]]
    assert layer.pending_count == 1

    layer.step(_snapshot(), 2)

    assert layer.batches[1] == [{"type": "follow_up"}]
    assert layer.pending_count == 0
