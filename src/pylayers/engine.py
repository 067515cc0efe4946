"""Cycle engine.

Each cycle:

1. takes one frozen snapshot of the store and drains the deltas proposed
   from outside since the previous cycle,
2. calls every layer's ``step`` with that snapshot, in registration order,
3. appends the drained proposals, in arrival order, after the layer deltas,
4. commits the combined, ordered list in a single ``commit``,
5. records the cycle in history when something was committed,
6. notifies ``"cycle"`` subscribers.

Cycles run on one thread of control, one at a time. Layer order is the
conflict-resolution rule, so layers are never stepped in parallel.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from pylayers._summary import summarize_for_log
from pylayers.config import EngineConfig, EngineMode
from pylayers.delta import Delta, Snapshot, ValueKind, classify, is_empty_delta, thaw
from pylayers.exceptions import DuplicateLayerError, LayerStepFailure, SetupError
from pylayers.history import HistoryRecorder
from pylayers.layer import Layer
from pylayers.state.events import CycleCompleted, SourcedDelta
from pylayers.state.store import StateStore

_logger = logging.getLogger(__name__)

CycleHandler = Callable[[CycleCompleted], None]

_EVENTS = frozenset({"cycle"})


class Engine:
    """Drives cycles over one :class:`StateStore`.

    Usage::

        engine = Engine(EngineConfig(interval_ms=50))
        engine.store.initialize({"players": {}})
        engine.register_layer(players)
        engine.subscribe("cycle", on_cycle)

        async with engine:
            ...

    In ``on_demand`` mode there is no timer; call :meth:`trigger` once per
    inbound event instead.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        store: StateStore | None = None,
        history: HistoryRecorder | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._store = store or StateStore()
        self._history = history or HistoryRecorder(
            self._config.history_size,
            enabled=self._config.history_enabled,
        )
        self._layers: list[Layer] = []
        self._handlers: dict[str, list[CycleHandler]] = {event: [] for event in _EVENTS}
        self._proposals: list[tuple[str, Any]] = []
        self._proposals_lock = threading.Lock()
        # Single-flight guard: a cycle never overlaps another one.
        self._cycle_lock = threading.Lock()
        self._cycle_id = 0
        self._running = False
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def mode(self) -> EngineMode:
        return self._config.mode

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def history(self) -> HistoryRecorder:
        return self._history

    @property
    def layers(self) -> tuple[Layer, ...]:
        return tuple(self._layers)

    @property
    def cycle_id(self) -> int:
        """Id of the most recently started cycle (``0`` before the first)."""
        return self._cycle_id

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def register_layer(self, layer: Layer) -> None:
        """Append *layer*; registration order is the order layers step in."""
        if not isinstance(layer, Layer):
            raise SetupError(f"{layer!r} does not implement the layer contract (name, queue_action, step)")
        name = layer.name
        if not isinstance(name, str) or not name.strip():
            raise SetupError(f"layer {layer!r} must have a non-empty name")
        for existing in self._layers:
            if existing is layer:
                raise DuplicateLayerError(f"layer {name!r} is already registered", layer_name=name)
            if existing.name == name:
                raise DuplicateLayerError(f"a layer named {name!r} is already registered", layer_name=name)
        if self._running:
            _logger.warning("Layer %r registered while the engine is running", name)
        self._layers.append(layer)
        _logger.debug("Registered layer %r at position %s", name, len(self._layers) - 1)

    def get_layer(self, name: str) -> Layer | None:
        for layer in self._layers:
            if layer.name == name:
                return layer
        return None

    def subscribe(self, event: str, handler: CycleHandler) -> None:
        if event not in self._handlers:
            raise SetupError(f"unknown engine event {event!r}; expected one of {sorted(_EVENTS)}")
        self._handlers[event].append(handler)

    def unsubscribe(self, handler: CycleHandler) -> None:
        for handlers in self._handlers.values():
            with contextlib.suppress(ValueError):
                handlers.remove(handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the engine; a no-op when already running.

        Periodic mode schedules cycles on the running asyncio loop.
        """
        if self._running:
            return
        if self._config.mode is EngineMode.PERIODIC:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError as exc:
                raise SetupError("periodic mode must be started from a running event loop") from exc
            self._running = True
            self._task = loop.create_task(self._run_periodic(), name="pylayers-engine")
        else:
            self._running = True
        _logger.debug(
            "Engine started mode=%s interval_ms=%s layers=%s",
            self._config.mode,
            self._config.interval_ms,
            [layer.name for layer in self._layers],
        )

    def stop(self) -> None:
        """Stop scheduling cycles; a no-op when already stopped.

        A cycle in progress always runs to completion.
        """
        if not self._running:
            return
        self._running = False
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
        _logger.debug("Engine stopped after cycle %s", self._cycle_id)

    async def aclose(self) -> None:
        """Stop and wait for the periodic task to finish."""
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def __aenter__(self) -> Engine:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _run_periodic(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._config.interval_seconds
        next_at = loop.time() + interval
        while self._running:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            if not self._running:
                break
            try:
                self.run_cycle()
            except Exception:
                _logger.exception("Cycle %s failed, keeping the cadence", self._cycle_id)
            next_at += interval
            now = loop.time()
            if next_at < now:
                # Keep the cadence instead of bursting to catch up.
                skipped = int((now - next_at) // interval) + 1
                _logger.debug("Cycle %s overran the interval, skipping %s tick(s)", self._cycle_id, skipped)
                next_at += skipped * interval

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def propose_delta(self, source: str, delta: Delta) -> None:
        """Buffer *delta* for the next cycle's drain.

        Never applied to a cycle whose drain already happened. The delta is
        copied, so the caller may reuse its object afterwards.
        """
        if not isinstance(source, str) or not source.strip():
            raise ValueError("source must be a non-empty string")
        copied = thaw(delta)
        with self._proposals_lock:
            self._proposals.append((source, copied))

    def _drain_proposals(self) -> list[tuple[str, Any]]:
        with self._proposals_lock:
            proposals, self._proposals = self._proposals, []
        return [(source, delta) for source, delta in proposals if not is_empty_delta(delta)]

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def trigger(self) -> CycleCompleted | None:
        """Run exactly one cycle for an external event.

        Returns ``None`` when the engine is stopped or a cycle is already in
        progress.
        """
        if not self._running:
            _logger.debug("Trigger ignored, engine is stopped")
            return None
        return self.run_cycle()

    def run_cycle(self) -> CycleCompleted | None:
        """Run one cycle regardless of mode; ``None`` if one is already running."""
        if not self._cycle_lock.acquire(blocking=False):
            _logger.warning("Cycle %s still in progress, skipping overlapping run", self._cycle_id)
            return None
        try:
            return self._run_cycle_locked()
        finally:
            self._cycle_lock.release()

    def _run_cycle_locked(self) -> CycleCompleted:
        self._cycle_id += 1
        cycle_id = self._cycle_id
        snapshot = self._store.snapshot()
        # Drained together with the snapshot: anything proposed once this cycle
        # has started belongs to the next one.
        proposals = self._drain_proposals()

        ordered: list[tuple[str, Any]] = []
        failed: list[str] = []
        for layer in tuple(self._layers):
            try:
                delta = self._step_layer(layer, snapshot, cycle_id)
            except LayerStepFailure as failure:
                _logger.error("%s", failure, exc_info=failure)
                failed.append(layer.name)
                continue
            if is_empty_delta(delta):
                continue
            try:
                delta = thaw(delta)
            except Exception:
                _logger.warning(
                    "Skipping delta from layer %r in cycle %s, it cannot be copied",
                    layer.name,
                    cycle_id,
                    exc_info=True,
                )
                continue
            ordered.append((layer.name, delta))

        ordered.extend(proposals)

        if ordered:
            applied = self._store.commit([delta for _, delta in ordered])
            if _logger.isEnabledFor(logging.DEBUG):
                _logger.debug(
                    "Cycle %s committed %s/%s deltas: %s",
                    cycle_id,
                    applied,
                    len(ordered),
                    [(source, summarize_for_log(delta)) for source, delta in ordered],
                )
            if applied and self._history.enabled:
                self._record_history(cycle_id, ordered)

        event = CycleCompleted(cycle_id=cycle_id, delta_count=len(ordered), failed_layers=tuple(failed))
        self._emit("cycle", event)
        return event

    def _record_history(self, cycle_id: int, ordered: list[tuple[str, Any]]) -> None:
        try:
            deltas = [
                SourcedDelta(source=source, delta=thaw(delta))
                for source, delta in ordered
                if classify(delta) is ValueKind.MAPPING
            ]
            self._history.record(cycle_id, deltas, self._store.dump())
        except ValidationError:
            _logger.warning("Cycle %s committed but could not be recorded in history", cycle_id, exc_info=True)

    @staticmethod
    def _step_layer(layer: Layer, snapshot: Snapshot, cycle_id: int) -> Delta | None:
        try:
            return layer.step(snapshot, cycle_id)
        except Exception as exc:
            raise LayerStepFailure(
                f"layer {layer.name!r} failed in cycle {cycle_id}: {exc!r}",
                layer_name=layer.name,
                cycle_id=cycle_id,
            ) from exc

    def _emit(self, event: str, payload: CycleCompleted) -> None:
        for handler in tuple(self._handlers.get(event, ())):
            try:
                handler(payload)
            except Exception:
                _logger.exception("Subscriber %r for %r failed in cycle %s", handler, event, payload.cycle_id)

    def __repr__(self) -> str:
        return (
            f"Engine(mode={self._config.mode.value!r}, running={self._running}, "
            f"cycle_id={self._cycle_id}, layers={[layer.name for layer in self._layers]!r})"
        )

