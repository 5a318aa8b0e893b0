"""Tests for GPU engine aggregation."""

import pytest
from conftest import FakeEngineSource, engine

from hostpulse.gpu import GpuEngineAggregator, extract_pid


def test_extract_pid():
    assert extract_pid(engine(4242)) == 4242
    assert extract_pid(engine(None)) is None


class TestInitialization:
    def test_lazy_and_idempotent(self):
        source = FakeEngineSource({engine(1): 10.0})
        aggregator = GpuEngineAggregator(source)
        assert source.enumerations == 0

        aggregator.aggregate_total()
        aggregator.aggregate_total()
        aggregator.aggregate_per_pid()

        assert source.enumerations == 1

    def test_only_3d_engines_are_retained(self):
        source = FakeEngineSource(
            {
                engine(1, kind="3D"): 10.0,
                engine(1, 1, kind="VideoDecode"): 50.0,
                engine(2, kind="Copy"): 30.0,
            }
        )
        aggregator = GpuEngineAggregator(source)

        assert aggregator.instance_count == 1
        assert aggregator.aggregate_total() == pytest.approx(10.0)

    def test_warm_up_read_on_open(self):
        source = FakeEngineSource({engine(1): 10.0})
        aggregator = GpuEngineAggregator(source)
        aggregator.ensure_initialized()

        assert source.counters[engine(1)].samples == 1

    def test_missing_instrumentation_is_permanent(self):
        source = FakeEngineSource(available=False)
        aggregator = GpuEngineAggregator(source)

        assert aggregator.aggregate_total() is None
        assert aggregator.aggregate_per_pid() == {}
        assert not aggregator.available
        assert source.enumerations == 1

    def test_instance_cutoff_disables_feature(self):
        values = {engine(pid): 1.0 for pid in range(201)}
        source = FakeEngineSource(values)
        aggregator = GpuEngineAggregator(source, max_instances=200)

        assert aggregator.aggregate_total() is None
        assert aggregator.aggregate_per_pid() == {}
        assert source.counters == {}

    def test_at_cutoff_is_still_allowed(self):
        values = {engine(pid): 0.1 for pid in range(200)}
        aggregator = GpuEngineAggregator(FakeEngineSource(values), max_instances=200)
        assert aggregator.instance_count == 200


class TestAggregateTotal:
    def test_sums_instances(self):
        source = FakeEngineSource({engine(1): 10.0, engine(2): 15.5})
        assert GpuEngineAggregator(source).aggregate_total() == pytest.approx(25.5)

    @pytest.mark.parametrize("readings", [[150.0], [60.0, 70.0], [99.0, 99.0, 99.0], [-5.0]])
    def test_always_within_bounds(self, readings):
        source = FakeEngineSource({engine(i, i): value for i, value in enumerate(readings)})
        total = GpuEngineAggregator(source).aggregate_total()
        assert 0.0 <= total <= 100.0

    def test_failed_read_counts_as_zero_and_is_kept(self):
        source = FakeEngineSource({engine(1): 10.0, engine(2): 20.0})
        aggregator = GpuEngineAggregator(source)
        aggregator.ensure_initialized()

        source.failing.add(engine(2))
        assert aggregator.aggregate_total() == pytest.approx(10.0)

        source.failing.clear()
        assert aggregator.aggregate_total() == pytest.approx(30.0)
        assert aggregator.instance_count == 2


class TestAggregatePerPid:
    def test_sums_same_pid_and_skips_untagged(self):
        source = FakeEngineSource(
            {
                engine(7, 0): 12.0,
                engine(7, 1): 30.0,
                engine(8, 0): 5.0,
                engine(None, 2): 40.0,
            }
        )
        by_pid = GpuEngineAggregator(source).aggregate_per_pid()

        assert by_pid == {7: pytest.approx(42.0), 8: pytest.approx(5.0)}

    def test_no_per_pid_clamp(self):
        source = FakeEngineSource({engine(3, 0): 80.0, engine(3, 1): 70.0})
        assert GpuEngineAggregator(source).aggregate_per_pid()[3] == pytest.approx(150.0)


def test_close_releases_counters():
    source = FakeEngineSource({engine(1): 1.0})
    aggregator = GpuEngineAggregator(source)
    aggregator.ensure_initialized()
    aggregator.close()

    assert source.counters[engine(1)].closed
