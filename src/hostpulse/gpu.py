"""GPU 3D-engine utilization aggregation."""

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from hostpulse.models import Reading

logger = logging.getLogger(__name__)

ENGINE_3D_MARKER = "engtype_3D"
MAX_ENGINE_INSTANCES = 200
PID_PATTERN = re.compile(r"pid_(\d+)")


class EngineCounter(Protocol):
    """An open utilization counter for one engine instance."""

    def sample(self) -> Reading[float]: ...

    def close(self) -> None: ...


class EngineCounterSource(Protocol):
    """Enumerates GPU engine instances and opens counters on them."""

    def instances(self) -> Reading[list[str]]: ...

    def open(self, instance: str) -> Reading[EngineCounter]: ...


def extract_pid(instance: str) -> int | None:
    """Process id encoded in an engine instance name, e.g. ``pid_1234_luid_...``."""
    match = PID_PATTERN.search(instance)
    if match is None:
        return None
    return int(match.group(1))


@dataclass(slots=True)
class EngineHandle:
    """A retained 3D-engine counter tagged with its owning pid."""

    instance: str
    pid: int | None
    counter: EngineCounter

    def read(self) -> float:
        # A failed read counts as idle for this call; the handle stays retained
        reading = self.counter.sample()
        if not reading.ok:
            logger.debug("Engine counter %s unreadable: %s", self.instance, reading.error)
            return 0.0
        return reading.value_or(0.0)


class GpuEngineAggregator:
    """
    Sums 3D-engine utilization counters, in total and per process.

    Counters are enumerated once, on first use. Rate counters report zero on
    their first sample, so each new counter gets one discarded warm-up read.
    """

    def __init__(
        self,
        source: EngineCounterSource,
        engine_marker: str = ENGINE_3D_MARKER,
        max_instances: int = MAX_ENGINE_INSTANCES,
    ) -> None:
        self._source = source
        self._engine_marker = engine_marker
        self._max_instances = max_instances
        self._handles: list[EngineHandle] = []
        self._initialized = False

    @property
    def available(self) -> bool:
        self.ensure_initialized()
        return bool(self._handles)

    @property
    def instance_count(self) -> int:
        self.ensure_initialized()
        return len(self._handles)

    def ensure_initialized(self) -> None:
        """Enumerate and open the 3D-engine counters once."""
        if self._initialized:
            return
        self._initialized = True

        listing = self._source.instances()
        if not listing.ok:
            logger.warning("GPU engine instrumentation unavailable: %s", listing.error)
            return

        names = [name for name in listing.value_or([]) if self._engine_marker in name]
        if len(names) > self._max_instances:
            logger.warning(
                "Found %d GPU 3D-engine instances (limit %d); GPU metrics disabled",
                len(names),
                self._max_instances,
            )
            return

        for name in names:
            opened = self._source.open(name)
            if not opened.ok or opened.value is None:
                logger.debug("Could not open engine counter %s: %s", name, opened.error)
                continue
            counter = opened.value
            counter.sample()
            self._handles.append(EngineHandle(instance=name, pid=extract_pid(name), counter=counter))

        logger.debug("Tracking %d GPU 3D-engine counters", len(self._handles))

    def aggregate_total(self) -> float | None:
        """Overall 3D utilization in [0, 100], or None without instrumentation."""
        self.ensure_initialized()
        if not self._handles:
            return None
        total = sum(handle.read() for handle in self._handles)
        # Several engines can sum past 100%
        return max(0.0, min(100.0, total))

    def aggregate_per_pid(self) -> dict[int, float]:
        """3D utilization summed per owning pid; untagged instances are ignored."""
        self.ensure_initialized()
        by_pid: dict[int, float] = {}
        for handle in self._handles:
            if handle.pid is None:
                continue
            by_pid[handle.pid] = by_pid.get(handle.pid, 0.0) + handle.read()
        return by_pid

    def close(self) -> None:
        """Release every open counter."""
        for handle in self._handles:
            handle.counter.close()
        self._handles = []
