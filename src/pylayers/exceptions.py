"""Custom exception hierarchy for pylayers."""

from __future__ import annotations


class LayersError(Exception):
    """Base exception for all pylayers errors."""


class SetupError(LayersError):
    """Misconfiguration detected while wiring the engine.

    Setup errors are raised to the caller immediately and are never deferred
    into a running cycle.
    """


class ConfigError(SetupError):
    """Invalid engine configuration."""


class DuplicateLayerError(SetupError):
    """A layer (or a layer with the same name) is already registered."""

    def __init__(self, message: str, *, layer_name: str = "") -> None:
        self.layer_name = layer_name
        super().__init__(message)


class StoreAlreadyInitializedError(SetupError):
    """``StateStore.initialize`` was called more than once."""


class MalformedDeltaError(LayersError):
    """A delta whose top level is not a mapping.

    Raised while validating a commit batch; the store logs it and skips the
    offending delta, the rest of the batch still applies.
    """

    def __init__(self, message: str, *, source: str = "") -> None:
        self.source = source
        super().__init__(message)


class LayerStepFailure(LayersError):
    """A layer's ``step`` raised.

    The engine contains the failure: it is logged and the layer contributes
    nothing to the cycle. The original exception is chained as ``__cause__``.
    """

    def __init__(self, message: str, *, layer_name: str, cycle_id: int) -> None:
        self.layer_name = layer_name
        self.cycle_id = cycle_id
        super().__init__(message)
