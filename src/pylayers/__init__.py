"""pylayers - deterministic, cycle-based state reconciliation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pylayers")
except PackageNotFoundError:
    __version__ = "0+local"
from pylayers.config import EngineConfig, EngineMode
from pylayers.delta import TOMBSTONE, Delta, Snapshot, State, ValueKind, classify
from pylayers.engine import Engine
from pylayers.exceptions import (
    ConfigError,
    DuplicateLayerError,
    LayersError,
    LayerStepFailure,
    MalformedDeltaError,
    SetupError,
    StoreAlreadyInitializedError,
)
from pylayers.history import HistoryEntry, HistoryRecorder, HistoryStats
from pylayers.layer import BaseLayer, DeltaBuilder, Layer
from pylayers.state.events import CycleCompleted, SourcedDelta
from pylayers.state.store import StateStore

__all__ = [
    "__version__",
    "TOMBSTONE",
    "BaseLayer",
    "ConfigError",
    "CycleCompleted",
    "Delta",
    "DeltaBuilder",
    "DuplicateLayerError",
    "Engine",
    "EngineConfig",
    "EngineMode",
    "HistoryEntry",
    "HistoryRecorder",
    "HistoryStats",
    "Layer",
    "LayerStepFailure",
    "LayersError",
    "MalformedDeltaError",
    "SetupError",
    "Snapshot",
    "State",
    "StateStore",
    "SourcedDelta",
    "StoreAlreadyInitializedError",
    "ValueKind",
    "classify",
]
