"""CPU percentage derivation from cumulative CPU-time counters."""

import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 0.2
MAX_PROCESS_CPU_PERCENT = 1000.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ProcessCpuTracker:
    """
    Per-process CPU percentage from successive cumulative CPU-time readings.

    Keeps the previous (cpu_time, timestamp) pair for every observed pid.
    Percentages are normalized to the whole machine, so one fully busy
    logical processor on a 4-way host reads 25%.
    """

    def __init__(
        self,
        logical_processors: int,
        min_interval: float = MIN_INTERVAL_SECONDS,
        max_percent: float = MAX_PROCESS_CPU_PERCENT,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            logical_processors: Number of logical CPUs on the host.
            min_interval: Deltas spanning this many seconds or fewer read as 0.
            max_percent: Upper clamp for a single process.
        """
        self._cpus = max(1, logical_processors)
        self._min_interval = min_interval
        self._max_percent = max_percent
        self._previous: dict[int, tuple[float, float]] = {}

    def update(self, pid: int, cpu_time: float, now: float) -> float:
        """Record a reading for ``pid`` and return its CPU percentage."""
        previous = self._previous.get(pid)
        self._previous[pid] = (cpu_time, now)
        if previous is None:
            return 0.0

        prior_cpu, prior_ts = previous
        elapsed = now - prior_ts
        if elapsed <= self._min_interval:
            return 0.0

        percent = (cpu_time - prior_cpu) / elapsed * 100.0 / self._cpus
        return _clamp(percent, 0.0, self._max_percent)

    def purge(self, live_pids: Iterable[int]) -> int:
        """Forget every pid not in ``live_pids``; returns how many were dropped."""
        live = set(live_pids)
        dead = [pid for pid in self._previous if pid not in live]
        for pid in dead:
            del self._previous[pid]
        if dead:
            logger.debug("Purged %d exited processes from CPU tracker", len(dead))
        return len(dead)

    def last_seen(self, pid: int) -> tuple[float, float] | None:
        """The stored (cpu_time, timestamp) for ``pid``, if tracked."""
        return self._previous.get(pid)

    def __contains__(self, pid: object) -> bool:
        return pid in self._previous

    def __len__(self) -> int:
        return len(self._previous)


class SystemCpuMeter:
    """Host-wide CPU percentage from the cumulative busy time of all CPUs."""

    def __init__(self, logical_processors: int, min_interval: float = MIN_INTERVAL_SECONDS) -> None:
        self._cpus = max(1, logical_processors)
        self._min_interval = min_interval
        self._previous: tuple[float, float] | None = None
        self._last_percent = 0.0

    def update(self, busy_time: float, now: float) -> float:
        previous = self._previous
        if previous is not None and now - previous[1] <= self._min_interval:
            # Too short to measure; keep the older baseline and last result
            return self._last_percent

        self._previous = (busy_time, now)
        if previous is None:
            return 0.0

        elapsed = now - previous[1]
        percent = (busy_time - previous[0]) / elapsed * 100.0 / self._cpus
        self._last_percent = _clamp(percent, 0.0, 100.0)
        return self._last_percent
