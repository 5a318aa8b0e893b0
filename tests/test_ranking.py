"""Tests for TopProcessRanker."""

import pytest
from conftest import FakeEngineSource, FakeSystem, engine

from hostpulse.cpu import ProcessCpuTracker
from hostpulse.gpu import GpuEngineAggregator
from hostpulse.ranking import UNKNOWN_PROCESS_NAME, TopProcessRanker


def make_ranker(system, clock, gpu_values=None, gpu=True):
    tracker = ProcessCpuTracker(system.logical_processors)
    aggregator = GpuEngineAggregator(FakeEngineSource(gpu_values or {})) if gpu else None
    return TopProcessRanker(system, tracker, gpu=aggregator, clock=clock), tracker


def advance(system, clock, cpu_deltas, seconds=1.0):
    """Grow each process's CPU time and move the clock forward."""
    clock.advance(seconds)
    for pid, delta in cpu_deltas.items():
        info = system.processes[pid]
        system.add(pid, info.name, info.cpu_time + delta, info.memory_bytes / (1024 * 1024))


class TestRank:
    def test_returns_at_most_n_sorted_unique(self, system, clock):
        for pid in range(1, 9):
            system.add(pid, f"p{pid}")
        ranker, _ = make_ranker(system, clock)
        ranker.rank(5)
        advance(system, clock, {pid: pid * 0.1 for pid in range(1, 9)})

        rows = ranker.rank(5)

        assert len(rows) == 5
        assert len({row.pid for row in rows}) == 5
        assert [row.pid for row in rows] == [8, 7, 6, 5, 4]
        cpu = [row.cpu_percent for row in rows]
        assert cpu == sorted(cpu, reverse=True)

    def test_fewer_processes_than_n(self, system, clock):
        system.add(1)
        system.add(2)
        ranker, _ = make_ranker(system, clock)
        assert len(ranker.rank(5)) == 2

    def test_cpu_percent_from_deltas(self, system, clock):
        system.add(1, "worker")
        ranker, _ = make_ranker(system, clock)
        assert ranker.rank(5)[0].cpu_percent == 0.0

        advance(system, clock, {1: 2.0})
        row = ranker.rank(5)[0]

        assert row.cpu_percent == pytest.approx(50.0)

    def test_ties_broken_by_gpu_then_memory(self, system, clock):
        system.add(1, "a", memory_mb=100.0)
        system.add(2, "b", memory_mb=500.0)
        system.add(3, "c", memory_mb=300.0)
        ranker, _ = make_ranker(system, clock, {engine(1): 40.0})

        rows = ranker.rank(5)

        assert [row.pid for row in rows] == [1, 2, 3]
        assert rows[0].gpu_percent == pytest.approx(40.0)
        assert rows[1].gpu_percent == 0.0

    def test_gpu_free_path_ignores_gpu(self, system, clock):
        system.add(1, "a", memory_mb=100.0)
        system.add(2, "b", memory_mb=500.0)
        ranker, _ = make_ranker(system, clock, gpu=False)

        rows = ranker.rank(5)

        assert not ranker.gpu_attribution
        assert [row.pid for row in rows] == [2, 1]
        assert all(row.gpu_percent == 0.0 for row in rows)

    def test_memory_in_megabytes(self, system, clock):
        system.add(1, "big", memory_mb=1536.0)
        ranker, _ = make_ranker(system, clock)
        assert ranker.rank(1)[0].memory_mb == pytest.approx(1536.0)

    def test_unreadable_processes_are_skipped(self, system, clock):
        system.add(1, "visible")
        system.denied.add(4)
        ranker, tracker = make_ranker(system, clock)

        rows = ranker.rank(5)

        assert [row.pid for row in rows] == [1]
        assert 4 not in tracker

    def test_empty_name_gets_placeholder(self, system, clock):
        system.add(1, "")
        ranker, _ = make_ranker(system, clock)
        assert ranker.rank(1)[0].name == UNKNOWN_PROCESS_NAME

    def test_exited_processes_are_purged(self, system, clock):
        system.add(1)
        system.add(2)
        ranker, tracker = make_ranker(system, clock)
        ranker.rank(5)
        assert len(tracker) == 2

        del system.processes[2]
        ranker.rank(5)

        assert 2 not in tracker
        assert len(tracker) == 1

    def test_zero_rows(self, system, clock):
        system.add(1)
        ranker, _ = make_ranker(system, clock)
        assert ranker.rank(0) == []


def test_empty_process_table(clock):
    ranker, _ = make_ranker(FakeSystem(), clock)
    assert ranker.rank(5) == []
