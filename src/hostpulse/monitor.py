"""Sampling engine for hostpulse."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Protocol

from hostpulse import adapters
from hostpulse.config import SamplerConfig
from hostpulse.cpu import ProcessCpuTracker, SystemCpuMeter
from hostpulse.gpu import EngineCounterSource, GpuEngineAggregator
from hostpulse.models import LatencySample, MemoryStatus, Reading, Snapshot
from hostpulse.ranking import ProcessSource, TopProcessRanker
from hostpulse.sensors import SensorTree, TemperatureSensorSelector
from hostpulse.window import RollingWindow

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024**3

SnapshotObserver = Callable[[Snapshot], None]


class SystemSource(ProcessSource, Protocol):
    """Host-level queries on top of process enumeration."""

    @property
    def logical_processors(self) -> int: ...

    def cpu_busy_time(self) -> Reading[float]: ...

    def memory(self) -> Reading[MemoryStatus]: ...


class LatencyProbe(Protocol):
    async def probe(self) -> Reading[LatencySample]: ...


class SampleScheduler:
    """
    Drives every sub-metric from one fixed-period tick.

    Cheap metrics (CPU, memory, latency) run on every tick; GPU, the process
    ranking and temperatures run on every Nth completed tick. A non-blocking
    gate guards the tick body: a tick that arrives while the previous one is
    still running is dropped and does not advance the cadence.

    After each completed tick the Snapshot is replaced as a whole and handed
    to the observer, from whatever thread the scheduler runs on.
    """

    def __init__(
        self,
        observer: SnapshotObserver,
        config: SamplerConfig | None = None,
        *,
        system: SystemSource | None = None,
        engine_source: EngineCounterSource | None = None,
        sensor_tree: SensorTree | None = None,
        probe: LatencyProbe | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the SampleScheduler.

        Args:
            observer: Called with every new Snapshot.
            config: Static settings. Defaults to ``SamplerConfig()``.
            system: Process/CPU/memory source. Defaults to psutil.
            engine_source: GPU engine counters. Defaults to Windows PDH.
            sensor_tree: Temperature sensors. Defaults to psutil.
            probe: Latency probe. Defaults to the system ping.
            clock: Monotonic seconds, injectable for tests.
        """
        self._observer = observer
        self._config = config or SamplerConfig()
        self._clock = clock

        system = system or adapters.PsutilSystem()
        engine_source = engine_source or adapters.PdhEngineSource()
        sensor_tree = sensor_tree or adapters.PsutilSensorTree()
        probe = probe or adapters.PingProbe(self._config.ping_target, self._config.ping_timeout_ms)

        cfg = self._config
        self._system = system
        self._probe = probe
        self._cpu_meter = SystemCpuMeter(system.logical_processors, cfg.min_cpu_interval)
        self._latency = RollingWindow(cfg.latency_window)
        # Total and per-process GPU readings keep separate counters so each
        # sees its own sampling interval.
        self._gpu_total = GpuEngineAggregator(engine_source, max_instances=cfg.max_gpu_instances)
        self._gpu_per_pid = (
            GpuEngineAggregator(engine_source, max_instances=cfg.max_gpu_instances)
            if cfg.per_process_gpu
            else None
        )
        self._ranker = TopProcessRanker(
            system,
            ProcessCpuTracker(
                system.logical_processors,
                min_interval=cfg.min_cpu_interval,
                max_percent=cfg.max_process_cpu_percent,
            ),
            gpu=self._gpu_per_pid,
            clock=clock,
        )
        self._sensors = TemperatureSensorSelector(
            sensor_tree,
            sane_range=cfg.sensor_range,
            refresh_interval=cfg.sensor_refresh_seconds,
            clock=clock,
        )

        self._snapshot = Snapshot()
        self._gate = threading.Lock()
        self._completed = 0
        self._skipped = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._inflight: set[asyncio.Task[Any]] = set()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="SampleWorker")
        self._worker: Future[Any] | None = None

        # Baseline so the first tick can already report a delta
        self._sample_cpu()

    @property
    def config(self) -> SamplerConfig:
        return self._config

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def completed_ticks(self) -> int:
        return self._completed

    @property
    def skipped_ticks(self) -> int:
        return self._skipped

    @property
    def is_running(self) -> bool:
        """Check if the scheduler thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run the tick loop on a daemon thread with its own event loop."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="SampleScheduler",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop firing ticks.

        In-flight ticks are cancelled; a cancelled tick never publishes, so
        the last Snapshot stays intact. If the thread outlives ``timeout`` it
        is kept, and start() stays a no-op until it has exited.

        Args:
            timeout: How long to wait for the thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler thread still busy after %.1fs", timeout or 0.0)
            else:
                self._thread = None

    def _run_loop(self) -> None:
        asyncio.run(self.run())

    async def run(self) -> None:
        """Fire a tick every period until stop() is called."""
        period = self._config.tick_seconds
        try:
            while not self._stop_event.is_set():
                task = asyncio.create_task(self._guarded_tick())
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                await asyncio.sleep(period)
        finally:
            pending = list(self._inflight)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("Unexpected error in sampling tick")

    async def tick(self) -> bool:
        """
        Run one tick body unless another is still in flight.

        Returns:
            True if the body ran to completion, False if the tick was skipped.
        """
        if not self._gate.acquire(blocking=False):
            self._skipped += 1
            logger.debug("Tick skipped, previous tick still running")
            return False

        try:
            number = self._completed + 1
            cfg = self._config
            changes: dict[str, Any] = {}

            changes.update(self._sample_cpu())
            changes.update(self._sample_memory())
            changes.update(await self._sample_latency())

            if number % cfg.gpu_every == 0:
                changes["gpu_percent"] = await self._offload(self._gpu_total.aggregate_total)
            if number % cfg.top_every == 0:
                rows = await self._offload(self._ranker.rank, cfg.top_n)
                changes["top_processes"] = tuple(rows)
            if number % cfg.temperature_every == 0:
                cpu_temp, gpu_temp = await self._offload(self._sensors.sample)
                changes["cpu_temperature_c"] = cpu_temp
                changes["gpu_temperature_c"] = gpu_temp

            self._completed = number
            self._publish(number, changes)
            return True
        finally:
            worker, self._worker = self._worker, None
            if worker is None:
                self._gate.release()
            else:
                # A cancelled tick may leave its worker running; the gate
                # stays held until that worker returns.
                worker.add_done_callback(lambda _: self._gate.release())

    async def _offload(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run blocking sampling work on the scheduler's worker thread."""
        self._worker = self._executor.submit(func, *args)
        return await asyncio.wrap_future(self._worker)

    def _publish(self, number: int, changes: dict[str, Any]) -> None:
        self._snapshot = dataclasses.replace(
            self._snapshot,
            tick=number,
            changed=frozenset(changes),
            **changes,
        )
        self._observer(self._snapshot)

    def _sample_cpu(self) -> dict[str, Any]:
        reading = self._system.cpu_busy_time()
        if not reading.ok:
            logger.debug("CPU time unavailable: %s", reading.error)
            return {"cpu_percent": 0.0}
        return {"cpu_percent": self._cpu_meter.update(reading.value_or(0.0), self._clock())}

    def _sample_memory(self) -> dict[str, Any]:
        reading = self._system.memory()
        if not reading.ok or reading.value is None:
            logger.debug("Memory status unavailable: %s", reading.error)
            return {"memory_percent": 0.0, "memory_used_gb": 0.0, "memory_total_gb": 0.0}
        mem = reading.value
        return {
            "memory_percent": mem.percent,
            "memory_used_gb": mem.used / BYTES_PER_GB,
            "memory_total_gb": mem.total / BYTES_PER_GB,
        }

    async def _sample_latency(self) -> dict[str, Any]:
        reading = await self._probe.probe()
        if not reading.ok or reading.value is None:
            logger.debug("Latency probe failed: %s", reading.error)
            return {"ping_timed_out": True}
        sample = reading.value
        self._latency.push(sample.milliseconds)
        return {
            "ping_average_ms": self._latency.average(),
            "ping_timed_out": sample.timed_out,
        }

    def close(self) -> None:
        """Stop the scheduler and release GPU counters."""
        self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._gpu_total.close()
        if self._gpu_per_pid is not None:
            self._gpu_per_pid.close()
