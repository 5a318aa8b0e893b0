"""Temperature sensor discovery and selection."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from hostpulse.models import Reading

logger = logging.getLogger(__name__)

SANE_RANGE = (5.0, 110.0)
REFRESH_INTERVAL_SECONDS = 30.0

# Ordered: earlier keywords win over later ones
CPU_SENSOR_PREFERENCE = (
    "Package",
    "Tdie",
    "Tctl",
    "Core Average",
    "Core Max",
    "CPU",
    "Core",
)
GPU_SENSOR_PREFERENCE = (
    "GPU Core",
    "edge",
    "Hot Spot",
    "junction",
    "GPU",
)
# Motherboard / EC sensor names that denote the CPU die or package
BOARD_CPU_KEYWORDS = ("CPU", "Package", "Tdie", "Tctl", "PECI")


class HardwareKind(Enum):
    """Coarse hardware classification used for candidate gathering."""

    CPU = "cpu"
    GPU = "gpu"
    MOTHERBOARD = "motherboard"
    EMBEDDED_CONTROLLER = "ec"
    STORAGE = "storage"
    OTHER = "other"


class SensorType(Enum):
    TEMPERATURE = "temperature"
    LOAD = "load"
    FAN = "fan"
    OTHER = "other"


BOARD_KINDS = (HardwareKind.MOTHERBOARD, HardwareKind.EMBEDDED_CONTROLLER)


@dataclass(slots=True, frozen=True)
class Sensor:
    name: str
    value: float | None
    type: SensorType = SensorType.TEMPERATURE


@dataclass(slots=True, frozen=True)
class HardwareNode:
    """A device in the sensor tree; sub-devices hang off ``children``."""

    name: str
    kind: HardwareKind
    sensors: tuple[Sensor, ...] = ()
    children: tuple[HardwareNode, ...] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class SensorRef:
    """Stable address of a sensor: owning hardware name plus sensor name."""

    hardware: str
    sensor: str

    def __str__(self) -> str:
        return f"{self.hardware}/{self.sensor}"


@dataclass(slots=True, frozen=True)
class Candidate:
    ref: SensorRef
    value: float

    @property
    def name(self) -> str:
        return self.ref.sensor


class SensorTree(Protocol):
    """Hardware sensor tree; every snapshot re-reads the hardware."""

    def snapshot(self) -> Reading[list[HardwareNode]]: ...


def in_range(value: float | None, sane_range: tuple[float, float] = SANE_RANGE) -> bool:
    """True when ``value`` lies strictly inside the plausible band."""
    if value is None:
        return False
    low, high = sane_range
    return low < value < high


def pick_best(
    candidates: Sequence[Candidate],
    preferences: Iterable[str],
    sane_range: tuple[float, float] = SANE_RANGE,
) -> Candidate | None:
    """
    Choose a representative sensor.

    Walks the preference keywords in order and returns the first in-range
    candidate whose name contains the keyword (case-insensitive). With no
    keyword hit, falls back to the hottest in-range candidate.
    """
    for keyword in preferences:
        needle = keyword.lower()
        for candidate in candidates:
            if needle in candidate.name.lower() and in_range(candidate.value, sane_range):
                return candidate

    plausible = [c for c in candidates if in_range(c.value, sane_range)]
    if not plausible:
        return None
    return max(plausible, key=lambda c: c.value)


def walk(nodes: Iterable[HardwareNode]) -> Iterator[HardwareNode]:
    """Depth-first iteration over nodes and all their sub-devices."""
    for node in nodes:
        yield node
        yield from walk(node.children)


def temperatures(node: HardwareNode) -> Iterator[Candidate]:
    """Temperature sensors directly on ``node`` that currently report a value."""
    for sensor in node.sensors:
        if sensor.type is SensorType.TEMPERATURE and sensor.value is not None:
            yield Candidate(SensorRef(node.name, sensor.name), float(sensor.value))


def find_value(nodes: Iterable[HardwareNode], ref: SensorRef) -> float | None:
    for node in walk(nodes):
        if node.name != ref.hardware:
            continue
        for sensor in node.sensors:
            if sensor.name == ref.sensor:
                return sensor.value
    return None


class TemperatureSensorSelector:
    """
    Keeps one representative CPU sensor and one GPU sensor.

    Selections are re-derived every ``refresh_interval`` seconds and right
    after a CPU read comes back empty, which covers sleep/resume, GPU
    switching and hot-plugged devices.
    """

    def __init__(
        self,
        tree: SensorTree,
        cpu_preference: Sequence[str] = CPU_SENSOR_PREFERENCE,
        gpu_preference: Sequence[str] = GPU_SENSOR_PREFERENCE,
        board_cpu_keywords: Sequence[str] = BOARD_CPU_KEYWORDS,
        sane_range: tuple[float, float] = SANE_RANGE,
        refresh_interval: float = REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tree = tree
        self._cpu_preference = tuple(cpu_preference)
        self._gpu_preference = tuple(gpu_preference)
        self._board_cpu_keywords = tuple(k.lower() for k in board_cpu_keywords)
        self._sane_range = sane_range
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._cpu_sensor: SensorRef | None = None
        self._gpu_sensor: SensorRef | None = None
        self._last_refresh = clock()
        self.refresh()

    @property
    def cpu_sensor(self) -> SensorRef | None:
        return self._cpu_sensor

    @property
    def gpu_sensor(self) -> SensorRef | None:
        return self._gpu_sensor

    def refresh(self) -> None:
        """Re-scan the hardware tree and re-select both sensors."""
        self._last_refresh = self._clock()
        reading = self._tree.snapshot()
        if not reading.ok:
            logger.debug("Sensor tree unavailable: %s", reading.error)
            self._set_selection(None, None)
            return

        nodes = list(walk(reading.value_or([])))
        cpu = pick_best(self._cpu_candidates(nodes), self._cpu_preference, self._sane_range)
        if cpu is None:
            cpu = self._hottest_board_sensor(nodes)
        gpu = pick_best(self._gpu_candidates(nodes), self._gpu_preference, self._sane_range)
        self._set_selection(cpu.ref if cpu else None, gpu.ref if gpu else None)

    def read_cpu(self) -> float | None:
        return self._read(self._cpu_sensor)

    def read_gpu(self) -> float | None:
        return self._read(self._gpu_sensor)

    def sample(self) -> tuple[float | None, float | None]:
        """Current (cpu, gpu) temperatures, refreshing selections as needed."""
        refreshed = self._clock() - self._last_refresh > self._refresh_interval
        if refreshed:
            self.refresh()

        cpu = self.read_cpu()
        if cpu is None and not refreshed:
            self.refresh()
            cpu = self.read_cpu()
        return cpu, self.read_gpu()

    def _read(self, ref: SensorRef | None) -> float | None:
        if ref is None:
            return None
        reading = self._tree.snapshot()
        if not reading.ok:
            return None
        value = find_value(reading.value_or([]), ref)
        if not in_range(value, self._sane_range):
            return None
        return value

    def _cpu_candidates(self, nodes: list[HardwareNode]) -> list[Candidate]:
        candidates: list[Candidate] = []
        for node in nodes:
            if node.kind is HardwareKind.CPU:
                candidates.extend(temperatures(node))
            elif node.kind in BOARD_KINDS:
                candidates.extend(
                    c for c in temperatures(node)
                    if any(k in c.name.lower() for k in self._board_cpu_keywords)
                )
        return candidates

    def _gpu_candidates(self, nodes: list[HardwareNode]) -> list[Candidate]:
        candidates: list[Candidate] = []
        for node in nodes:
            if node.kind is HardwareKind.GPU:
                candidates.extend(temperatures(node))
        return candidates

    def _hottest_board_sensor(self, nodes: list[HardwareNode]) -> Candidate | None:
        board = [
            c
            for node in nodes
            if node.kind in BOARD_KINDS
            for c in temperatures(node)
            if in_range(c.value, self._sane_range)
        ]
        if not board:
            return None
        return max(board, key=lambda c: c.value)

    def _set_selection(self, cpu: SensorRef | None, gpu: SensorRef | None) -> None:
        if cpu != self._cpu_sensor or gpu != self._gpu_sensor:
            logger.info("Temperature sensors selected: cpu=%s gpu=%s", cpu, gpu)
        self._cpu_sensor = cpu
        self._gpu_sensor = gpu
