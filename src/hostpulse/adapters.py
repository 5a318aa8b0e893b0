"""
Platform adapters behind the narrow OS interfaces the core depends on.

psutil covers processes, memory, CPU time and temperature sensors. GPU engine
counters come from the Windows "GPU Engine" performance object via win32pdh.
Latency is measured by the system ``ping`` binary.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import platform
import re
from collections import Counter

import psutil

from hostpulse.models import LatencySample, MemoryStatus, ProcessInfo, Reading
from hostpulse.sensors import HardwareKind, HardwareNode, Sensor

try:
    import pywintypes
    import win32pdh
except ImportError:  # Not on Windows
    pywintypes = None
    win32pdh = None

logger = logging.getLogger(__name__)

_PROCESS_ERRORS = (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess)


class PsutilSystem:
    """Processes, memory and host CPU time through psutil."""

    def __init__(self) -> None:
        self._logical_processors = psutil.cpu_count(logical=True) or 1

    @property
    def logical_processors(self) -> int:
        return self._logical_processors

    def cpu_busy_time(self) -> Reading[float]:
        """Cumulative non-idle CPU seconds summed over all logical CPUs."""
        try:
            times = psutil.cpu_times()
        except (OSError, RuntimeError) as exc:
            return Reading.failure(f"cpu_times failed: {exc}")
        # guest time is already included in user time on Linux
        excluded = sum(getattr(times, name, 0.0) for name in ("idle", "iowait", "guest", "guest_nice"))
        return Reading.success(max(0.0, sum(times) - excluded))

    def memory(self) -> Reading[MemoryStatus]:
        try:
            mem = psutil.virtual_memory()
        except (OSError, RuntimeError) as exc:
            return Reading.failure(f"virtual_memory failed: {exc}")
        return Reading.success(MemoryStatus(total=mem.total, available=mem.available))

    def pids(self) -> list[int]:
        return psutil.pids()

    def process_info(self, pid: int) -> Reading[ProcessInfo]:
        """
        Read one process with a single oneshot() pass.

        Processes that exit mid-read, deny access or are zombies come back as
        failed readings.
        """
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                name = proc.name()
                cpu = proc.cpu_times()
                mem = proc.memory_info()
        except _PROCESS_ERRORS as exc:
            return Reading.failure(f"pid {pid}: {type(exc).__name__}")
        return Reading.success(
            ProcessInfo(
                pid=pid,
                name=name or "",
                cpu_time=cpu.user + cpu.system,
                memory_bytes=mem.rss,
            )
        )


class PdhEngineCounter:
    """One "GPU Engine\\Utilization Percentage" counter in its own PDH query."""

    def __init__(self, instance: str, query, counter) -> None:
        self.instance = instance
        self._query = query
        self._counter = counter

    def sample(self) -> Reading[float]:
        try:
            win32pdh.CollectQueryData(self._query)
            _, value = win32pdh.GetFormattedCounterValue(self._counter, win32pdh.PDH_FMT_DOUBLE)
        except pywintypes.error as exc:
            return Reading.failure(str(exc))
        return Reading.success(float(value))

    def close(self) -> None:
        try:
            win32pdh.CloseQuery(self._query)
        except pywintypes.error:
            logger.debug("CloseQuery failed for %s", self.instance)


class PdhEngineSource:
    """GPU engine instances from Windows performance counters."""

    OBJECT = "GPU Engine"
    COUNTER = "Utilization Percentage"

    def instances(self) -> Reading[list[str]]:
        if win32pdh is None:
            return Reading.failure("win32pdh is not available on this platform")
        try:
            _, instances = win32pdh.EnumObjectItems(
                None, None, self.OBJECT, win32pdh.PERF_DETAIL_WIZARD
            )
        except pywintypes.error as exc:
            return Reading.failure(f"cannot enumerate {self.OBJECT}: {exc}")
        return Reading.success(list(instances))

    def open(self, instance: str) -> Reading[PdhEngineCounter]:
        if win32pdh is None:
            return Reading.failure("win32pdh is not available on this platform")
        path = win32pdh.MakeCounterPath((None, self.OBJECT, instance, None, -1, self.COUNTER))
        try:
            query = win32pdh.OpenQuery()
            counter = win32pdh.AddCounter(query, path)
        except pywintypes.error as exc:
            return Reading.failure(f"cannot open {path}: {exc}")
        return Reading.success(PdhEngineCounter(instance, query, counter))


# psutil chip names, matched as prefixes
_CHIP_KINDS: tuple[tuple[str, HardwareKind], ...] = (
    ("coretemp", HardwareKind.CPU),
    ("k10temp", HardwareKind.CPU),
    ("k8temp", HardwareKind.CPU),
    ("zenpower", HardwareKind.CPU),
    ("cpu_thermal", HardwareKind.CPU),
    ("cpu-thermal", HardwareKind.CPU),
    ("amdgpu", HardwareKind.GPU),
    ("radeon", HardwareKind.GPU),
    ("nouveau", HardwareKind.GPU),
    ("nvidia", HardwareKind.GPU),
    ("gpu_thermal", HardwareKind.GPU),
    ("acpitz", HardwareKind.MOTHERBOARD),
    ("nct", HardwareKind.MOTHERBOARD),
    ("it87", HardwareKind.MOTHERBOARD),
    ("it86", HardwareKind.MOTHERBOARD),
    ("w83", HardwareKind.MOTHERBOARD),
    ("f71", HardwareKind.MOTHERBOARD),
    ("pch_", HardwareKind.MOTHERBOARD),
    ("asus", HardwareKind.EMBEDDED_CONTROLLER),
    ("thinkpad", HardwareKind.EMBEDDED_CONTROLLER),
    ("dell_smm", HardwareKind.EMBEDDED_CONTROLLER),
    ("hp_", HardwareKind.EMBEDDED_CONTROLLER),
    ("nvme", HardwareKind.STORAGE),
    ("drivetemp", HardwareKind.STORAGE),
)


def classify_chip(chip: str) -> HardwareKind:
    """Map a psutil sensor chip name onto a hardware kind."""
    lowered = chip.lower()
    for prefix, kind in _CHIP_KINDS:
        if lowered.startswith(prefix):
            return kind
    return HardwareKind.OTHER


def _unique(names: list[str]) -> list[str]:
    # Repeated labels ("", "Core 0" on dual-socket boxes) get a numeric suffix
    totals = Counter(names)
    seen: Counter[str] = Counter()
    result = []
    for name in names:
        if totals[name] > 1:
            seen[name] += 1
            name = f"{name} #{seen[name]}"
        result.append(name)
    return result


class PsutilSensorTree:
    """Temperature sensors from psutil, one hardware node per chip."""

    def snapshot(self) -> Reading[list[HardwareNode]]:
        if not hasattr(psutil, "sensors_temperatures"):
            return Reading.failure("temperature sensors are not supported on this platform")
        try:
            chips = psutil.sensors_temperatures()
        except (OSError, RuntimeError) as exc:
            return Reading.failure(f"sensors_temperatures failed: {exc}")

        nodes: list[HardwareNode] = []
        for node_name, entries in chips.items():
            labels = _unique([entry.label or node_name for entry in entries])
            sensors = tuple(
                Sensor(name=label, value=entry.current)
                for label, entry in zip(labels, entries)
            )
            nodes.append(HardwareNode(name=node_name, kind=classify_chip(node_name), sensors=sensors))
        return Reading.success(nodes)


# Windows ping localizes the "time" keyword (Zeit=, temps=, tiempo=).
_LATENCY_PATTERN = re.compile(r"[=<]\s*([\d.,]+)\s*ms\b", re.IGNORECASE)


def parse_ping_output(output: str) -> float | None:
    """Round-trip milliseconds from ``ping`` output, e.g. ``time=12.3 ms`` or ``Zeit=14ms``."""
    match = _LATENCY_PATTERN.search(output)
    if match is None:
        return None
    return float(match.group(1).replace(",", "."))


def ping_command(target: str, timeout_ms: float) -> list[str]:
    if platform.system() == "Windows":
        return ["ping", "-n", "1", "-w", str(int(timeout_ms)), target]
    return ["ping", "-c", "1", target]


class PingProbe:
    """ICMP echo to a fixed target with a hard deadline."""

    def __init__(self, target: str = "8.8.8.8", timeout_ms: float = 2000.0) -> None:
        self.target = target
        self.timeout_ms = timeout_ms

    async def probe(self) -> Reading[LatencySample]:
        """
        Ping once.

        A missed deadline or an unanswered echo yields a timed-out sample
        carrying the deadline; only a probe that cannot run at all fails.
        """
        timed_out = LatencySample(milliseconds=self.timeout_ms, timed_out=True)
        try:
            proc = await asyncio.create_subprocess_exec(
                *ping_command(self.target, self.timeout_ms),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            return Reading.failure(f"cannot run ping: {exc}")

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), self.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            return Reading.success(timed_out)
        finally:
            # Also reached when the caller is cancelled mid-echo
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await asyncio.shield(proc.wait())

        milliseconds = parse_ping_output(stdout.decode(errors="replace"))
        if proc.returncode != 0 or milliseconds is None:
            return Reading.success(timed_out)
        return Reading.success(LatencySample(milliseconds=milliseconds))
