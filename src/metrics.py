"""Prometheus metrics module.

All prometheus_client usage is isolated here. Each sink owns its registry so
that tests and multiple controllers never collide on metric names.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Gauge, start_http_server

from config import Config

logger = logging.getLogger(__name__)

METRIC_PREFIX = "sampling_controller_"


class PrometheusMetricsSink:
    """Publishes per-cycle controller values as gauges."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()

        def gauge(name: str, documentation: str, labels=()) -> Gauge:
            return Gauge(
                METRIC_PREFIX + name,
                documentation,
                list(labels),
                registry=self.registry,
            )

        self._controller_info = gauge(
            "controller_info",
            "Information about the sampling controller configuration",
            [
                "target_rate",
                "window_ms",
                "target_bytes_per_window",
                "pid_constants",
                "daily_index_prefix",
                "date_delimiter",
                "cluster",
            ],
        )
        self._sample_index = gauge(
            "sample_index",
            "The current daily index being tracked for index size",
            ["sample_index"],
        )
        self._proportional = gauge("proportional", "Proportional term of the last PID update")
        self._integral = gauge("integral", "Integral term of the last PID update")
        self._derivative = gauge("derivative", "Derivative term of the last PID update")
        self._unclamped_output = gauge(
            "unclamped_output", "PID output before clamping to the adjustment limits"
        )
        self._index_size_mb = gauge(
            "index_size_MB", "The most current measurement of the sample index size (in MB)"
        )
        self._bytes_per_window = gauge(
            "bytes_per_window", "The change in index size between windows (in bytes)"
        )
        self._retrieval_error_count = gauge(
            "retrieval_error_count",
            "Number of consecutive failed attempts to retrieve the sample index size",
        )
        self._percent = gauge("percent", "Current percent of records to sample")
        self._average_rate = gauge("average_rate", "Average rate of index growth (MB/sec)")
        self._delta_bytes = gauge(
            "delta_bytes", "The exponential moving average of bytes_per_window"
        )
        self._pid_adjustment = gauge(
            "pid_adjustment", "Adjustment to the percent calculated by the PID controller"
        )
        self._current_index: Optional[str] = None

    def set_info(self, config: Config) -> None:
        """Publish the static configuration gauge."""
        controller = config.controller
        pid = controller.pid_constants
        self._controller_info.labels(
            target_rate=str(controller.target_rate),
            window_ms=str(controller.window_ms),
            target_bytes_per_window=str(controller.target_bytes_per_window),
            pid_constants=f"{pid.proportional},{pid.integral},{pid.derivative}",
            daily_index_prefix=config.connections.sample.daily_index_prefix,
            date_delimiter=config.connections.sample.date_delimiter,
            cluster=config.metrics.cluster,
        ).set(1)

    def report_target(self, target_id: str) -> None:
        """Mark target_id as the tracked index, dropping the previous label."""
        if target_id != self._current_index:
            self._sample_index.clear()
            self._current_index = target_id
        self._sample_index.labels(sample_index=target_id).set(1)

    def report_failure(self, consecutive_failures: int) -> None:
        self._retrieval_error_count.set(consecutive_failures)

    def report_cycle(self, result, retrieval_error_count: int) -> None:
        """Publish the values computed during one successful cycle.

        Args:
            result: CycleResult of the cycle
            retrieval_error_count: Failures preceding this cycle
        """
        self._proportional.set(result.pid_terms.proportional)
        self._integral.set(result.pid_terms.integral)
        self._derivative.set(result.pid_terms.derivative)
        self._unclamped_output.set(result.pid_terms.unclamped_output)
        self._index_size_mb.set(result.measured_bytes / (1024 * 1024))
        self._bytes_per_window.set(result.raw_delta)
        self._retrieval_error_count.set(retrieval_error_count)
        self._percent.set(result.percentage * 100)
        self._average_rate.set(result.average_rate_mb_per_sec)
        self._delta_bytes.set(result.smoothed_delta)
        self._pid_adjustment.set(result.adjustment)


def start_exporter(port: int, sink: PrometheusMetricsSink) -> None:
    """Serve the sink's registry over HTTP on a background thread."""
    start_http_server(port, registry=sink.registry)
    logger.info(f"Prometheus metrics exporter listening on port {port}")
