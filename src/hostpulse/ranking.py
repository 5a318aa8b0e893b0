"""Top-process ranking."""

import logging
import time
from collections.abc import Callable
from typing import Protocol

from hostpulse.cpu import ProcessCpuTracker
from hostpulse.gpu import GpuEngineAggregator
from hostpulse.models import ProcessInfo, ProcessRow, Reading

logger = logging.getLogger(__name__)

UNKNOWN_PROCESS_NAME = "(unknown)"
BYTES_PER_MB = 1024 * 1024


class ProcessSource(Protocol):
    """Process enumeration as seen by the ranker."""

    def pids(self) -> list[int]: ...

    def process_info(self, pid: int) -> Reading[ProcessInfo]: ...


def _sort_key_with_gpu(row: ProcessRow) -> tuple[float, float, float]:
    return (row.cpu_percent, row.gpu_percent, row.memory_mb)


def _sort_key_without_gpu(row: ProcessRow) -> tuple[float, float]:
    return (row.cpu_percent, row.memory_mb)


class TopProcessRanker:
    """
    Joins process CPU, memory and GPU usage and keeps the heaviest rows.

    Per-process GPU attribution is fixed at construction: pass ``gpu=None``
    to skip the engine counters entirely.
    """

    def __init__(
        self,
        source: ProcessSource,
        cpu_tracker: ProcessCpuTracker,
        gpu: GpuEngineAggregator | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._cpu_tracker = cpu_tracker
        self._gpu = gpu
        self._clock = clock

    @property
    def gpu_attribution(self) -> bool:
        return self._gpu is not None

    def rank(self, n: int) -> list[ProcessRow]:
        """Return at most ``n`` rows, heaviest first."""
        gpu_by_pid = self._gpu.aggregate_per_pid() if self._gpu is not None else {}

        now = self._clock()
        live = set(self._source.pids())
        rows: list[ProcessRow] = []

        for pid in live:
            reading = self._source.process_info(pid)
            if not reading.ok or reading.value is None:
                # Exited or access denied
                continue
            info = reading.value
            rows.append(
                ProcessRow(
                    name=info.name or UNKNOWN_PROCESS_NAME,
                    pid=info.pid,
                    cpu_percent=self._cpu_tracker.update(info.pid, info.cpu_time, now),
                    memory_mb=info.memory_bytes / BYTES_PER_MB,
                    gpu_percent=gpu_by_pid.get(info.pid, 0.0),
                )
            )

        key = _sort_key_with_gpu if self._gpu is not None else _sort_key_without_gpu
        rows.sort(key=key, reverse=True)

        self._cpu_tracker.purge(live)
        logger.debug("Ranked %d of %d processes", len(rows), len(live))
        return rows[: max(0, n)]
