"""Tests for sampling_controller.py module."""

import sqlite3

import pytest

from config import ControllerConfig
from sampling_controller import ControllerStatus, SamplingController
from store_client import MeasurementError, PersistenceError
from target_rotation import TargetRotation

from conftest import DAY_ONE, DAY_SECONDS


TARGET_BYTES = 314572800
WINDOW_SECONDS = 300


class FakeMeasurementSource:
    """Returns queued sizes; an Exception instance in the queue is raised."""

    def __init__(self, sizes=None):
        self._sizes = list(sizes or [])
        self.requested = []

    def size(self, target_id):
        self.requested.append(target_id)
        value = self._sizes.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


class FakePercentageStore:
    """Records upserts; optionally fails every write."""

    def __init__(self, fail=False):
        self.fail = fail
        self.documents = []

    def upsert(self, document_id, document):
        if self.fail:
            raise PersistenceError("store unavailable")
        self.documents.append((document_id, document))


class FakeMetricsSink:

    def __init__(self):
        self.targets = []
        self.failures = []
        self.cycles = []

    def report_target(self, target_id):
        self.targets.append(target_id)

    def report_failure(self, consecutive_failures):
        self.failures.append(consecutive_failures)

    def report_cycle(self, result, retrieval_error_count):
        self.cycles.append((result, retrieval_error_count))


class FakeAuditLog:

    def __init__(self):
        self.rows = []

    def record(self, result, recorded_at_ms):
        self.rows.append((result, recorded_at_ms))


def make_controller(
    sizes=None,
    store=None,
    metrics_sink=None,
    audit_log=None,
    minimum_percent=5,
    initial_percent_kept=50,
):
    config = ControllerConfig(
        target_rate=1,
        initial_percent_kept=initial_percent_kept,
        minimum_percent=minimum_percent,
        window_ms=300000,
    )
    source = FakeMeasurementSource(sizes)
    store = store or FakePercentageStore()
    controller = SamplingController(
        config,
        "events-rate",
        source,
        store,
        TargetRotation("events", "."),
        metrics_sink=metrics_sink,
        audit_log=audit_log,
        clock=lambda: DAY_ONE,
    )
    return controller, source, store


def cycle_times(count, start=DAY_ONE):
    return [start + WINDOW_SECONDS * (i + 1) for i in range(count)]


class TestSeed:

    def test_seed_measures_baseline_and_persists_initial_percent(self):
        controller, source, store = make_controller([1_000_000_000])

        controller.seed()

        assert controller.state.previous_measured_bytes == 1_000_000_000
        assert controller.state.previous_target_id == "events-2024.03.09"
        assert controller.state.current_percentage == 0.5
        assert source.requested == ["events-2024.03.09"]
        document_id, document = store.documents[0]
        assert document_id == "events-rate"
        assert document.percent == 50
        assert document.target == "events-2024.03.09"
        assert document.updated_at_epoch_ms == int(DAY_ONE * 1000)
        assert controller.status is ControllerStatus.IDLE

    def test_seed_failure_leaves_zero_baseline(self):
        controller, _, store = make_controller([MeasurementError("down")])

        controller.seed()

        assert controller.state.previous_measured_bytes == 0
        assert controller.state.consecutive_measurement_failures == 0
        assert len(store.documents) == 1


class TestCycle:

    def test_growth_above_target_lowers_percentage(self):
        controller, _, store = make_controller([1_000_000_000, 1_400_000_000])
        controller.seed()

        result = controller.run_cycle(DAY_ONE + WINDOW_SECONDS)

        expected_error = (400_000_000 - TARGET_BYTES) / TARGET_BYTES
        assert result.raw_delta == 400_000_000
        assert result.windows == 1
        assert result.smoothed_delta == 400_000_000
        assert result.error == pytest.approx(expected_error)
        assert result.error == pytest.approx(0.2716, abs=1e-4)
        assert result.adjustment == pytest.approx(0.21 * expected_error)
        assert result.percentage == pytest.approx(0.5 - 0.21 * expected_error)
        assert result.percentage < 0.5
        assert controller.pid.integral == pytest.approx(expected_error)

        document = store.documents[-1][1]
        assert document.percent == pytest.approx(result.percentage * 100)
        assert document.target == "events-2024.03.09"
        assert document.updated_at_epoch_ms == int((DAY_ONE + WINDOW_SECONDS) * 1000)

    def test_growth_below_target_raises_percentage(self):
        controller, _, _ = make_controller([0, 100_000_000])
        controller.seed()

        result = controller.run_cycle(DAY_ONE + WINDOW_SECONDS)

        assert result.error < 0
        assert result.adjustment < 0
        assert result.percentage > 0.5
        assert controller.state.current_percentage == result.percentage

    def test_on_target_growth_keeps_percentage(self):
        controller, _, _ = make_controller([0, TARGET_BYTES])
        controller.seed()

        result = controller.run_cycle(DAY_ONE + WINDOW_SECONDS)

        assert result.error == 0
        assert result.percentage == 0.5

    def test_smoothing_applies_from_second_cycle(self):
        controller, _, _ = make_controller([0, 100_000, 300_000])
        controller.seed()

        first = controller.run_cycle(DAY_ONE + WINDOW_SECONDS)
        second = controller.run_cycle(DAY_ONE + 2 * WINDOW_SECONDS)

        assert first.smoothed_delta == 100_000
        # 0.2 * 200_000 + 0.8 * 100_000
        assert second.smoothed_delta == 120_000
        assert controller.state.smoothed_delta_bytes == 120_000

    def test_average_rate_uses_cycles_since_rotation(self):
        controller, _, _ = make_controller([0, 1024 * 1024 * 300, 1024 * 1024 * 600])
        controller.seed()

        first = controller.run_cycle(DAY_ONE + WINDOW_SECONDS)
        second = controller.run_cycle(DAY_ONE + 2 * WINDOW_SECONDS)

        assert first.average_rate_mb_per_sec == pytest.approx(1.0)
        assert second.average_rate_mb_per_sec == pytest.approx(1.0)
        assert controller.state.cycles_since_rotation == 2


class TestMeasurementFailures:

    def test_failure_skips_correction(self):
        controller, _, store = make_controller([0, MeasurementError("timeout")])
        controller.seed()

        result = controller.run_cycle(DAY_ONE + WINDOW_SECONDS)

        assert result is None
        assert controller.state.consecutive_measurement_failures == 1
        assert controller.state.current_percentage == 0.5
        assert controller.state.smoothed_delta_bytes is None
        assert controller.pid.integral == 0.0
        assert controller.pid.last_error == 0.0
        assert len(store.documents) == 1
        assert controller.status is ControllerStatus.IDLE

    def test_missed_windows_are_averaged(self):
        controller, _, store = make_controller([
            0,
            MeasurementError("timeout"),
            MeasurementError("timeout"),
            900_000,
        ])
        controller.seed()
        times = cycle_times(3)

        assert controller.run_cycle(times[0]) is None
        assert controller.run_cycle(times[1]) is None
        assert controller.state.consecutive_measurement_failures == 2
        result = controller.run_cycle(times[2])

        assert result.raw_delta == 900_000
        assert result.windows == 3
        assert result.averaged_delta == 300_000
        assert result.smoothed_delta == 300_000
        assert controller.state.consecutive_measurement_failures == 0
        assert len(store.documents) == 2

    def test_failures_reported_to_metrics(self):
        sink = FakeMetricsSink()
        controller, _, _ = make_controller(
            [0, MeasurementError("a"), MeasurementError("b"), 1000],
            metrics_sink=sink,
        )
        controller.seed()

        for now in cycle_times(3):
            controller.run_cycle(now)

        assert sink.failures == [1, 2]
        assert len(sink.cycles) == 1
        assert sink.cycles[0][1] == 2


class TestRotation:

    def test_rotation_resets_counters_before_measuring(self):
        controller, _, _ = make_controller([5_000_000_000, 6_000_000_000])
        controller.seed()
        controller.run_cycle(DAY_ONE + WINDOW_SECONDS)
        assert controller.state.previous_measured_bytes == 6_000_000_000
        assert controller.state.cycles_since_rotation == 1

        target_id = controller._resolve_target(DAY_ONE + DAY_SECONDS)

        assert target_id == "events-2024.03.10"
        assert controller.state.previous_target_id == "events-2024.03.10"
        assert controller.state.previous_measured_bytes == 0
        assert controller.state.cycles_since_rotation == 0

    def test_cycle_after_rotation_measures_new_index_from_zero(self):
        sink = FakeMetricsSink()
        controller, source, _ = make_controller(
            [5_000_000_000, 50_000_000], metrics_sink=sink
        )
        controller.seed()

        result = controller.run_cycle(DAY_ONE + DAY_SECONDS)

        assert source.requested[-1] == "events-2024.03.10"
        assert result.target_id == "events-2024.03.10"
        assert result.raw_delta == 50_000_000
        assert controller.state.cycles_since_rotation == 1
        assert sink.targets == ["events-2024.03.09", "events-2024.03.10"]

    def test_no_reset_within_same_day(self):
        controller, _, _ = make_controller([1000, 2000])
        controller.seed()

        controller._resolve_target(DAY_ONE + 3600)

        assert controller.state.previous_measured_bytes == 1000


class TestBounds:

    def test_percentage_floors_at_minimum(self):
        sizes = [0] + [TARGET_BYTES * 10 * (i + 1) for i in range(30)]
        controller, _, store = make_controller(sizes, minimum_percent=5)
        controller.seed()

        for now in cycle_times(30):
            controller.run_cycle(now)

        assert controller.state.current_percentage == 0.05
        for _, document in store.documents:
            assert 0.05 - 1e-9 <= document.percent / 100 <= 1.0 + 1e-9

    def test_percentage_caps_at_one(self):
        sizes = [0] * 31
        controller, _, store = make_controller(sizes, initial_percent_kept=90)
        controller.seed()

        for now in cycle_times(30):
            controller.run_cycle(now)

        assert controller.state.current_percentage == 1.0
        for _, document in store.documents:
            assert 0.05 - 1e-9 <= document.percent / 100 <= 1.0 + 1e-9


class TestCollaborators:

    def test_persistence_failure_does_not_abort(self):
        store = FakePercentageStore(fail=True)
        controller, _, _ = make_controller([0, 100_000_000, 200_000_000], store=store)
        controller.seed()

        first = controller.run_cycle(DAY_ONE + WINDOW_SECONDS)
        second = controller.run_cycle(DAY_ONE + 2 * WINDOW_SECONDS)

        assert first is not None and second is not None
        assert controller.state.current_percentage == second.percentage
        assert controller.state.consecutive_measurement_failures == 0

    def test_cycle_reported_to_metrics_and_audit(self):
        sink = FakeMetricsSink()
        audit = FakeAuditLog()
        controller, _, _ = make_controller(
            [0, 1000], metrics_sink=sink, audit_log=audit
        )
        controller.seed()

        result = controller.run_cycle(DAY_ONE + WINDOW_SECONDS)

        assert sink.cycles == [(result, 0)]
        assert audit.rows == [(result, int((DAY_ONE + WINDOW_SECONDS) * 1000))]
        assert result.pid_terms == controller.pid.last_terms

    def test_stopped_controller_does_not_cycle(self):
        controller, source, _ = make_controller([0])
        controller.seed()
        controller.stop()

        assert controller.run_cycle(DAY_ONE + WINDOW_SECONDS) is None
        assert controller.status is ControllerStatus.STOPPED
        assert len(source.requested) == 1

    def test_snapshot_is_a_copy(self):
        controller, _, _ = make_controller([0])
        controller.seed()

        snapshot = controller.snapshot()
        snapshot.previous_measured_bytes = 123

        assert controller.state.previous_measured_bytes == 0


class FailingAuditLog:

    def record(self, result, recorded_at_ms):
        raise sqlite3.OperationalError("unable to open database file")


class FailingMetricsSink(FakeMetricsSink):

    def report_failure(self, consecutive_failures):
        raise RuntimeError("registry unavailable")

    def report_cycle(self, result, retrieval_error_count):
        raise RuntimeError("registry unavailable")


class TestReportingFailures:

    def test_audit_failure_keeps_state_consistent_with_store(self):
        controller, _, store = make_controller(
            [0, MeasurementError("timeout"), 400_000_000],
            audit_log=FailingAuditLog(),
        )
        controller.seed()
        controller.run_cycle(DAY_ONE + WINDOW_SECONDS)

        result = controller.run_cycle(DAY_ONE + 2 * WINDOW_SECONDS)

        assert result is not None
        assert controller.state.consecutive_measurement_failures == 0
        assert controller.state.current_percentage == result.percentage
        persisted = store.documents[-1][1].percent
        assert persisted == pytest.approx(controller.state.current_percentage * 100)
        assert controller.status is ControllerStatus.IDLE

    def test_metrics_failures_do_not_abort_cycles(self):
        controller, _, _ = make_controller(
            [0, MeasurementError("timeout"), 1000],
            metrics_sink=FailingMetricsSink(),
        )
        controller.seed()

        assert controller.run_cycle(DAY_ONE + WINDOW_SECONDS) is None
        assert controller.state.consecutive_measurement_failures == 1
        result = controller.run_cycle(DAY_ONE + 2 * WINDOW_SECONDS)

        assert result is not None
        assert controller.state.consecutive_measurement_failures == 0
