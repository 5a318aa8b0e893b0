"""Static sampler configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields

from hostpulse.cpu import MAX_PROCESS_CPU_PERCENT, MIN_INTERVAL_SECONDS
from hostpulse.gpu import MAX_ENGINE_INSTANCES
from hostpulse.sensors import REFRESH_INTERVAL_SECONDS, SANE_RANGE

ENV_PREFIX = "HOSTPULSE_"
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    """Raised for an invalid sampler setting."""


@dataclass(slots=True, frozen=True)
class SamplerConfig:
    """Every knob of the sampling engine; fixed for the scheduler's lifetime."""

    tick_seconds: float = 1.0
    latency_window: int = 10
    top_n: int = 5
    per_process_gpu: bool = True
    sensor_refresh_seconds: float = REFRESH_INTERVAL_SECONDS
    sensor_min_c: float = SANE_RANGE[0]
    sensor_max_c: float = SANE_RANGE[1]
    max_gpu_instances: int = MAX_ENGINE_INSTANCES
    ping_target: str = "8.8.8.8"
    ping_timeout_ms: float = 2000.0
    gpu_every: int = 2
    top_every: int = 3
    temperature_every: int = 4
    min_cpu_interval: float = MIN_INTERVAL_SECONDS
    max_process_cpu_percent: float = MAX_PROCESS_CPU_PERCENT

    def __post_init__(self) -> None:
        if self.tick_seconds <= 0:
            raise ConfigError(f"tick_seconds must be positive, got {self.tick_seconds}")
        for name in ("latency_window", "top_n", "gpu_every", "top_every", "temperature_every"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1, got {getattr(self, name)}")
        if self.sensor_min_c >= self.sensor_max_c:
            raise ConfigError(
                f"sensor range is empty: ({self.sensor_min_c}, {self.sensor_max_c})"
            )
        if self.ping_timeout_ms <= 0:
            raise ConfigError(f"ping_timeout_ms must be positive, got {self.ping_timeout_ms}")
        if self.max_gpu_instances < 0:
            raise ConfigError(f"max_gpu_instances must not be negative, got {self.max_gpu_instances}")
        if not self.ping_target:
            raise ConfigError("ping_target must not be empty")

    @property
    def sensor_range(self) -> tuple[float, float]:
        return (self.sensor_min_c, self.sensor_max_c)

    @property
    def ping_timeout_seconds(self) -> float:
        return self.ping_timeout_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SamplerConfig:
        """
        Build a config from ``HOSTPULSE_<FIELD>`` environment variables.

        Unset variables keep their defaults; e.g. ``HOSTPULSE_TOP_N=10``.
        """
        environ = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            overrides[f.name] = _convert(f.name, raw, type(getattr(_DEFAULTS, f.name)))
        return cls(**overrides)


def _convert(name: str, raw: str, kind: type) -> object:
    value = raw.strip()
    if kind is bool:
        if value.lower() in _TRUE:
            return True
        if value.lower() in _FALSE:
            return False
        raise ConfigError(f"{name}: expected a boolean, got {raw!r}")
    try:
        return kind(value)
    except ValueError as exc:
        raise ConfigError(f"{name}: cannot parse {raw!r} as {kind.__name__}") from exc


_DEFAULTS = SamplerConfig()
