"""Data models for hostpulse."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Reading(Generic[T]):
    """
    Outcome of a single OS query.

    Adapters never raise for measurement failures; they return a failed
    Reading and the consumer decides which neutral value to publish.
    """

    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """True when the query produced a value."""
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Reading[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> Reading[T]:
        return cls(error=error or "unknown error")

    def value_or(self, default: T) -> T:
        """Return the value, or ``default`` for a failed reading."""
        if self.error is not None or self.value is None:
            return default
        return self.value


@dataclass(slots=True, frozen=True)
class ProcessInfo:
    """The handful of process attributes the ranker needs."""

    pid: int
    name: str
    cpu_time: float  # Cumulative user + system seconds
    memory_bytes: int  # Working set / RSS


@dataclass(slots=True, frozen=True)
class MemoryStatus:
    """Physical memory totals in bytes."""

    total: int
    available: int

    @property
    def used(self) -> int:
        return max(0, self.total - self.available)

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used / self.total * 100.0


@dataclass(slots=True, frozen=True)
class LatencySample:
    """One echo probe result; timed-out probes carry the deadline."""

    milliseconds: float
    timed_out: bool = False


@dataclass(slots=True, frozen=True)
class ProcessRow:
    """Immutable row of the top-process table."""

    name: str
    pid: int
    cpu_percent: float  # 0.0 - 1000.0
    memory_mb: float
    gpu_percent: float


@dataclass(slots=True, frozen=True)
class Snapshot:
    """
    Published metric values.

    A new Snapshot replaces the previous one after every completed tick;
    ``changed`` names the fields that tick refreshed.
    """

    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    memory_used_gb: float = 0.0
    memory_total_gb: float = 0.0
    gpu_percent: float | None = None  # None: no GPU instrumentation
    ping_average_ms: float | None = None  # None: no samples yet
    ping_timed_out: bool = False
    cpu_temperature_c: float | None = None
    gpu_temperature_c: float | None = None
    top_processes: tuple[ProcessRow, ...] = ()
    tick: int = 0
    changed: frozenset[str] = field(default_factory=frozenset)
