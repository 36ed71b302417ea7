"""Sampling controller module.

Owns the cross-cycle state of the control loop and performs one
measure-and-correct cycle per scheduler tick.

Each cycle:
    1. Resolve the daily index; on rotation reset the byte baseline.
    2. Measure the index size. On failure count the missed window and stop.
    3. Average the delta over the windows missed since the last success.
    4. Smooth the averaged delta.
    5-6. Normalize its distance from the per-window target.
    7. Feed the error to the PID controller.
    8. Subtract the correction from the kept fraction and clamp it.
    9. Clear the failure count and adopt the new fraction.
    10. Persist, publish metrics and append an audit row. Failures here are
        logged and never undo the new state.

A positive error means the index grows faster than the target, which lowers
the kept fraction.
"""

import dataclasses
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from config import ControllerConfig
from pid_controller import PIDController, PIDTerms
from smoothing import DeltaSmoother
from store_client import MeasurementError, PercentDocument, PersistenceError
from target_rotation import TargetRotation


logger = logging.getLogger(__name__)

PERCENT_MAX = 1.0


class ControllerStatus(enum.Enum):
    IDLE = "IDLE"
    IN_CYCLE = "IN_CYCLE"
    STOPPED = "STOPPED"


@dataclass
class CycleState:
    """Mutable state carried from one cycle to the next."""
    previous_target_id: Optional[str] = None
    previous_measured_bytes: int = 0
    cycles_since_rotation: int = 0
    consecutive_measurement_failures: int = 0
    smoothed_delta_bytes: Optional[float] = None
    current_percentage: float = PERCENT_MAX


@dataclass(frozen=True)
class CycleResult:
    """Values computed by one successful cycle."""
    target_id: str
    measured_bytes: int
    raw_delta: int
    windows: int
    averaged_delta: float
    smoothed_delta: float
    error: float
    adjustment: float
    percentage: float
    average_rate_mb_per_sec: float
    pid_terms: PIDTerms


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


class SamplingController:
    """Adaptive sampling percentage controller.

    Not thread-safe: cycles must be serialized by the caller, which the
    CycleScheduler guarantees by running them on a single thread.
    """

    def __init__(
        self,
        config: ControllerConfig,
        document_id: str,
        measurement_source: Any,
        percentage_store: Any,
        rotation: TargetRotation,
        metrics_sink: Any = None,
        audit_log: Any = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the controller.

        Args:
            config: Control loop configuration
            document_id: ID of the document holding the percentage
            measurement_source: Object with size(target_id) -> int
            percentage_store: Object with upsert(document_id, PercentDocument)
            rotation: Daily index resolver
            metrics_sink: Optional object receiving per-cycle values
            audit_log: Optional object recording per-cycle values
            clock: Wall-clock time source in seconds
        """
        self._config = config
        self._document_id = document_id
        self._measurement_source = measurement_source
        self._percentage_store = percentage_store
        self._rotation = rotation
        self._metrics_sink = metrics_sink
        self._audit_log = audit_log
        self._clock = clock

        self._minimum_fraction = config.minimum_percent / 100
        self._target_bytes_per_window = config.target_bytes_per_window

        pid = config.pid_constants
        self._pid = PIDController(
            pid.proportional,
            pid.integral,
            pid.derivative,
            config.adjustment_min,
            config.adjustment_max,
        )
        self._smoother = DeltaSmoother()
        self._state = CycleState(
            current_percentage=config.initial_percent_kept / 100,
        )
        self._status = ControllerStatus.IDLE

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def pid(self) -> PIDController:
        return self._pid

    @property
    def status(self) -> ControllerStatus:
        return self._status

    @property
    def target_bytes_per_window(self) -> float:
        return self._target_bytes_per_window

    def snapshot(self) -> CycleState:
        """Return a copy of the cycle state."""
        return dataclasses.replace(self._state)

    def seed(self) -> None:
        """Take the initial measurement and publish the initial percentage.

        A failed measurement leaves the byte baseline at zero.
        """
        now = self._clock()
        target_id = self._rotation.current_target_id(now)
        self._state.previous_target_id = target_id
        self._report_target(target_id)

        try:
            self._state.previous_measured_bytes = self._measurement_source.size(target_id)
            logger.info(
                f"Initial size of {target_id}: {self._state.previous_measured_bytes} bytes"
            )
        except MeasurementError as e:
            logger.warning(f"Error retrieving initial index size: {e}")

        self._persist(self._config.initial_percent_kept, target_id, now)
        logger.info(
            f"Seeded {self._document_id} with {self._config.initial_percent_kept} percent, "
            f"target {round(self._target_bytes_per_window)} bytes per window"
        )

    def stop(self) -> None:
        self._status = ControllerStatus.STOPPED

    def run_cycle(self, now: Optional[float] = None) -> Optional[CycleResult]:
        """Perform one measure-and-correct cycle.

        Args:
            now: Unix timestamp in seconds; defaults to the controller clock

        Returns:
            CycleResult, or None if the measurement failed or the controller
            is stopped
        """
        if self._status is ControllerStatus.STOPPED:
            return None
        if now is None:
            now = self._clock()

        self._status = ControllerStatus.IN_CYCLE
        try:
            return self._run_cycle(now)
        finally:
            if self._status is ControllerStatus.IN_CYCLE:
                self._status = ControllerStatus.IDLE

    def _resolve_target(self, now: float) -> str:
        state = self._state
        target_id = self._rotation.current_target_id(now)
        if state.previous_target_id is not None and target_id != state.previous_target_id:
            logger.info(
                f"Sample index rotated from {state.previous_target_id} to {target_id}"
            )
            state.previous_measured_bytes = 0
            state.cycles_since_rotation = 0
        state.previous_target_id = target_id
        self._report_target(target_id)
        return target_id

    def _run_cycle(self, now: float) -> Optional[CycleResult]:
        state = self._state

        # Step 1: target resolution
        target_id = self._resolve_target(now)
        state.cycles_since_rotation += 1
        logger.debug(
            f"Cycle start: index={target_id}, "
            f"previous_bytes={state.previous_measured_bytes}, "
            f"cycles_since_rotation={state.cycles_since_rotation}"
        )

        # Step 2: measurement
        try:
            measured_bytes = self._measurement_source.size(target_id)
        except MeasurementError as e:
            state.consecutive_measurement_failures += 1
            logger.warning(
                f"Unable to retrieve index size ({e}), skipping percentage update "
                f"this window. Consecutive failures: "
                f"{state.consecutive_measurement_failures}"
            )
            self._report_failure(state.consecutive_measurement_failures)
            return None

        raw_delta = measured_bytes - state.previous_measured_bytes
        state.previous_measured_bytes = measured_bytes
        logger.debug(f"Index size {measured_bytes} bytes, delta {raw_delta} bytes")

        # Steps 3-4: missed-window averaging and smoothing
        windows = state.consecutive_measurement_failures + 1
        averaged_delta = raw_delta / windows
        smoothed_delta = self._smoother.apply(averaged_delta)
        state.smoothed_delta_bytes = smoothed_delta

        # Steps 5-7: normalized error and PID correction
        target = self._target_bytes_per_window
        error = (smoothed_delta - target) / target
        adjustment = self._pid.update(error)

        # Step 8: clamp
        previous_percentage = state.current_percentage
        percentage = clamp(
            previous_percentage - adjustment, self._minimum_fraction, PERCENT_MAX
        )

        index_mb = measured_bytes / (1024 * 1024)
        elapsed_seconds = state.cycles_since_rotation * self._config.window_ms / 1000
        average_rate = index_mb / elapsed_seconds

        logger.debug(
            f"windows={windows}, averaged_delta={averaged_delta}, "
            f"smoothed_delta={smoothed_delta}, error={error:.6f}, "
            f"adjustment={adjustment:.6f}, previous={previous_percentage:.6f}, "
            f"new={percentage:.6f}, average_rate={average_rate:.4f}MB/s"
        )

        # Step 9: state is committed before persistence and reporting
        retrieval_error_count = state.consecutive_measurement_failures
        state.consecutive_measurement_failures = 0
        state.current_percentage = percentage

        # Step 10: persist and report
        self._persist(percentage * 100, target_id, now)

        result = CycleResult(
            target_id=target_id,
            measured_bytes=measured_bytes,
            raw_delta=raw_delta,
            windows=windows,
            averaged_delta=averaged_delta,
            smoothed_delta=smoothed_delta,
            error=error,
            adjustment=adjustment,
            percentage=percentage,
            average_rate_mb_per_sec=average_rate,
            pid_terms=self._pid.last_terms,
        )
        self._report_cycle(result, retrieval_error_count, now)

        logger.info(
            f"Target: {round(target)} bytes, Actual: {raw_delta} bytes, "
            f"Delta: {smoothed_delta} bytes, Sample Rate: {percentage * 100:.3f} percent"
        )
        return result

    def _persist(self, percent: float, target_id: str, now: float) -> None:
        document = PercentDocument(
            percent=percent,
            target=target_id,
            updated_at_epoch_ms=int(now * 1000),
        )
        try:
            self._percentage_store.upsert(self._document_id, document)
        except PersistenceError as e:
            logger.warning(f"Percentage not persisted: {e}")

    def _report_target(self, target_id: str) -> None:
        if self._metrics_sink is None:
            return
        try:
            self._metrics_sink.report_target(target_id)
        except Exception:
            logger.exception("Failed to publish sample index metric")

    def _report_failure(self, consecutive_failures: int) -> None:
        if self._metrics_sink is None:
            return
        try:
            self._metrics_sink.report_failure(consecutive_failures)
        except Exception:
            logger.exception("Failed to publish retrieval error metric")

    def _report_cycle(
        self, result: CycleResult, retrieval_error_count: int, now: float
    ) -> None:
        if self._metrics_sink is not None:
            try:
                self._metrics_sink.report_cycle(result, retrieval_error_count)
            except Exception:
                logger.exception("Failed to publish cycle metrics")
        if self._audit_log is not None:
            try:
                self._audit_log.record(result, int(now * 1000))
            except Exception:
                logger.exception("Failed to record audit row")
