"""Engine configuration for pylayers."""

from __future__ import annotations

import dataclasses
import enum
import os
from typing import Any

from pylayers.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


class EngineMode(enum.StrEnum):
    PERIODIC = "periodic"
    ON_DEMAND = "on_demand"


@dataclasses.dataclass(frozen=True)
class EngineConfig:
    """Engine configuration.

    Parameters
    ----------
    mode : EngineMode
        ``periodic`` runs cycles on a timer until stopped; ``on_demand`` runs
        exactly one cycle per :meth:`pylayers.engine.Engine.trigger` call.
    interval_ms : float
        Cycle interval in periodic mode. Defaults to 16 ms (~60 cycles/s).
    history_size : int
        Capacity of the history ring buffer. Only cycles that changed state
        are recorded, so 600 entries cover ~10 s of continuous change at the
        default interval.
    history_enabled : bool
        Record history at all.
    """

    mode: EngineMode = EngineMode.PERIODIC
    interval_ms: float = 16.0
    history_size: int = 600
    history_enabled: bool = True

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "mode", EngineMode(self.mode))
        except ValueError as exc:
            raise ConfigError(f"unknown engine mode: {self.mode!r}") from exc
        if self.interval_ms <= 0:
            raise ConfigError(f"interval_ms must be positive, got {self.interval_ms}")
        if self.history_size <= 0:
            raise ConfigError(f"history_size must be positive, got {self.history_size}")

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @classmethod
    def from_env(cls, **overrides: Any) -> EngineConfig:
        """Create configuration from ``PYLAYERS_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        mode_env = env.get("PYLAYERS_MODE")
        if mode_env is not None and "mode" not in overrides:
            config_kwargs["mode"] = mode_env.strip().lower()

        interval_env = env.get("PYLAYERS_INTERVAL_MS")
        if interval_env is not None and "interval_ms" not in overrides:
            try:
                config_kwargs["interval_ms"] = float(interval_env)
            except ValueError as exc:
                raise ConfigError(f"PYLAYERS_INTERVAL_MS is not a number: {interval_env!r}") from exc

        size_env = env.get("PYLAYERS_HISTORY_SIZE")
        if size_env is not None and "history_size" not in overrides:
            try:
                config_kwargs["history_size"] = int(size_env)
            except ValueError as exc:
                raise ConfigError(f"PYLAYERS_HISTORY_SIZE is not an integer: {size_env!r}") from exc

        if "history_enabled" not in overrides:
            config_kwargs["history_enabled"] = _env_bool(env.get("PYLAYERS_HISTORY_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
