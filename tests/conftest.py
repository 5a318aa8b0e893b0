"""Fake OS adapters shared by the test suite."""

import asyncio

import pytest

from hostpulse.models import LatencySample, MemoryStatus, ProcessInfo, Reading
from hostpulse.sensors import HardwareKind, HardwareNode, Sensor

GB = 1024**3


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSystem:
    """In-memory process table, CPU busy time and memory status."""

    def __init__(self, logical_processors: int = 4) -> None:
        self.logical_processors = logical_processors
        self.busy_time = 0.0
        self.memory_status: MemoryStatus | None = MemoryStatus(total=16 * GB, available=8 * GB)
        self.processes: dict[int, ProcessInfo] = {}
        self.denied: set[int] = set()

    def add(self, pid: int, name: str = "proc", cpu_time: float = 0.0, memory_mb: float = 10.0) -> None:
        self.processes[pid] = ProcessInfo(
            pid=pid, name=name, cpu_time=cpu_time, memory_bytes=int(memory_mb * 1024 * 1024)
        )

    def cpu_busy_time(self) -> Reading[float]:
        return Reading.success(self.busy_time)

    def memory(self) -> Reading[MemoryStatus]:
        if self.memory_status is None:
            return Reading.failure("memory query failed")
        return Reading.success(self.memory_status)

    def pids(self) -> list[int]:
        return list(self.processes) + sorted(self.denied)

    def process_info(self, pid: int) -> Reading[ProcessInfo]:
        if pid in self.denied:
            return Reading.failure(f"pid {pid}: AccessDenied")
        info = self.processes.get(pid)
        if info is None:
            return Reading.failure(f"pid {pid}: NoSuchProcess")
        return Reading.success(info)


class FakeCounter:
    def __init__(self, source: "FakeEngineSource", instance: str) -> None:
        self.source = source
        self.instance = instance
        self.samples = 0
        self.closed = False

    def sample(self) -> Reading[float]:
        self.samples += 1
        if self.instance in self.source.failing:
            return Reading.failure("driver busy")
        return Reading.success(self.source.values.get(self.instance, 0.0))

    def close(self) -> None:
        self.closed = True


class FakeEngineSource:
    """GPU engine instances with settable per-instance utilization."""

    def __init__(self, values: dict[str, float] | None = None, available: bool = True) -> None:
        self.values = dict(values or {})
        self.available = available
        self.failing: set[str] = set()
        self.enumerations = 0
        self.counters: dict[str, FakeCounter] = {}

    def instances(self) -> Reading[list[str]]:
        self.enumerations += 1
        if not self.available:
            return Reading.failure("no GPU Engine category")
        return Reading.success(list(self.values))

    def open(self, instance: str) -> Reading[FakeCounter]:
        counter = FakeCounter(self, instance)
        self.counters[instance] = counter
        return Reading.success(counter)


class FakeSensorTree:
    """Sensor tree returning whatever nodes the test installs."""

    def __init__(self, nodes: list[HardwareNode] | None = None) -> None:
        self.nodes = list(nodes or [])
        self.available = True
        self.snapshots = 0

    def snapshot(self) -> Reading[list[HardwareNode]]:
        self.snapshots += 1
        if not self.available:
            return Reading.failure("no sensors")
        return Reading.success(list(self.nodes))


class FakeProbe:
    """Latency probe returning a fixed sample, optionally blocking until released."""

    def __init__(self, sample: LatencySample | None = None) -> None:
        self.sample = sample or LatencySample(milliseconds=20.0)
        self.error: str | None = None
        self.gate: asyncio.Event | None = None
        self.calls = 0

    async def probe(self) -> Reading[LatencySample]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            return Reading.failure(self.error)
        return Reading.success(self.sample)


def engine(pid: int | None, index: int = 0, kind: str = "3D") -> str:
    """Windows-style GPU engine instance name."""
    prefix = f"pid_{pid}_" if pid is not None else ""
    return f"{prefix}luid_0x00000000_0x0000D1B8_phys_0_eng_{index}_engtype_{kind}"


def cpu_node(*sensors: tuple[str, float | None], name: str = "coretemp") -> HardwareNode:
    return HardwareNode(
        name=name,
        kind=HardwareKind.CPU,
        sensors=tuple(Sensor(label, value) for label, value in sensors),
    )


def gpu_node(*sensors: tuple[str, float | None], name: str = "amdgpu") -> HardwareNode:
    return HardwareNode(
        name=name,
        kind=HardwareKind.GPU,
        sensors=tuple(Sensor(label, value) for label, value in sensors),
    )


def board_node(*sensors: tuple[str, float | None], name: str = "nct6798") -> HardwareNode:
    return HardwareNode(
        name=name,
        kind=HardwareKind.MOTHERBOARD,
        sensors=tuple(Sensor(label, value) for label, value in sensors),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=100.0)


@pytest.fixture
def system() -> FakeSystem:
    return FakeSystem(logical_processors=4)


@pytest.fixture
def engine_source() -> FakeEngineSource:
    return FakeEngineSource()


@pytest.fixture
def sensor_tree() -> FakeSensorTree:
    return FakeSensorTree([cpu_node(("Package id 0", 55.0)), gpu_node(("edge", 48.0))])


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()
