"""Main entry point module.

Handles CLI arguments, thread lifecycle, signal handling, and clean shutdown.
"""

import argparse
import logging
import os
import signal
import sqlite3
import sys
import threading
import time
from typing import Any

import audit_log
import config as config_module
import database
import housekeeping
import metrics
import service
import store_client


logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def verify_store_connectivity(
    measurement_source: Any,
    timeout_seconds: int = 120,
    retry_interval: int = 10,
) -> None:
    """Verify the sample cluster is reachable at startup.

    Args:
        measurement_source: ElasticsearchMeasurementSource to ping
        timeout_seconds: Maximum time to wait for connectivity
        retry_interval: Seconds between retries

    Raises:
        RuntimeError: If connection cannot be established within timeout
    """
    start_time = time.time()
    last_error = None

    while time.time() - start_time < timeout_seconds:
        try:
            info = measurement_source.ping()
            version = info.get("version", {}).get("number", "unknown")
            logger.info(f"Sample cluster connectivity verified: version {version}")
            return
        except Exception as e:
            last_error = e
            logger.warning(
                f"Sample cluster connectivity check failed: {e}. Retrying in {retry_interval}s..."
            )
            time.sleep(retry_interval)

    raise RuntimeError(
        f"Failed to connect to sample cluster after {timeout_seconds}s: {last_error}"
    )


def run_with_restart(
    target_func: Any, shutdown_event: threading.Event, thread_name: str, *args: Any
) -> None:
    """Run a function with automatic restart on exception.

    Catches any unhandled exception, logs it, waits 30 seconds (checking
    shutdown_event during wait), then restarts the function.

    Args:
        target_func: The function to run
        shutdown_event: Event to signal shutdown
        thread_name: Name of the thread for logging
        *args: Arguments to pass to the function
    """
    while not shutdown_event.is_set():
        try:
            target_func(*args)
        except Exception:
            logger.exception(
                f"Unhandled exception in {thread_name}, waiting to restart..."
            )

            if shutdown_event.wait(timeout=30):
                break

            logger.info(f"Restarting {thread_name}...")


def log_heartbeat(handle: service.ServiceHandle) -> None:
    """Log the controller's liveness and last known state."""
    controller_last = handle.state_manager.get_thread_last_run("controller")
    result = handle.state_manager.get_last_cycle_result()
    cycle_state = handle.state_manager.get_cycle_state()
    percent = f"{result.percentage * 100:.3f}" if result is not None else "n/a"
    failures = (
        cycle_state.consecutive_measurement_failures
        if cycle_state is not None
        else 0
    )
    logger.debug(
        f"Heartbeat: controller={controller_last}, "
        f"in_cycle={handle.scheduler.in_cycle}, percent={percent}, "
        f"consecutive_failures={failures}"
    )
    if failures:
        logger.warning(
            f"Sample index size unavailable for {failures} consecutive window(s)"
        )


def export_audit(cfg: config_module.Config, output_path: str) -> int:
    """Export the audit log to CSV.

    Args:
        cfg: Loaded configuration
        output_path: Destination CSV file

    Returns:
        Exit code (0 on success)
    """
    audit_path = cfg.audit.database_path
    if audit_path is None:
        logger.error("audit.database_path is not configured, nothing to export")
        return 1
    if not os.path.isfile(audit_path):
        logger.error(f"Audit database does not exist: {audit_path!r}")
        return 1

    try:
        database.init_db(audit_path).close()
        log = audit_log.AuditLog(audit_path)
        try:
            count = log.export_csv(output_path)
        finally:
            log.close()
    except (sqlite3.Error, OSError) as e:
        logger.error(f"Failed to export audit log: {e}")
        return 1

    logger.info(f"Exported {count} audit rows to {output_path}")
    return 0


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for clean shutdown)
    """
    parser = argparse.ArgumentParser(description="Adaptive Sampling Rate Controller")
    parser.add_argument(
        "--config", required=True, help="Path to configuration YAML file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--export-audit",
        metavar="PATH",
        help="Write the audit log to a CSV file and exit",
    )
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    setup_logging(log_level)

    try:
        cfg = config_module.load_config(args.config)
        logger.info(f"Configuration loaded from {args.config}")
    except config_module.ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    if args.export_audit:
        return export_audit(cfg, args.export_audit)

    # Initialize audit database (creates tables, then we close this connection)
    audit_path = cfg.audit.database_path
    if audit_path is not None:
        audit_dir = os.path.dirname(os.path.abspath(audit_path)) or "."
        if not os.path.isdir(audit_dir):
            logger.error(
                f"Audit directory does not exist: {audit_dir!r} "
                f"(from audit.database_path: {audit_path!r})"
            )
            return 1
        try:
            init_conn = database.init_db(audit_path)
            init_conn.close()
            logger.info(f"Audit database initialized at {audit_path}")
        except Exception as e:
            logger.error(f"Failed to initialize audit database: {e}")
            return 1

    measurement_source = store_client.build_measurement_source(cfg)
    try:
        verify_store_connectivity(measurement_source)
    except RuntimeError as e:
        logger.error(str(e))
        return 1

    metrics_sink = None
    if cfg.metrics.enabled:
        metrics_sink = metrics.PrometheusMetricsSink()
        try:
            metrics.start_exporter(cfg.metrics.port, metrics_sink)
        except OSError as e:
            logger.error(f"Failed to start metrics exporter: {e}")
            return 1

    collaborators = service.Collaborators(
        measurement_source=measurement_source,
        percentage_store=store_client.build_percentage_store(cfg),
        metrics_sink=metrics_sink,
        audit_log=audit_log.AuditLog(audit_path) if audit_path is not None else None,
    )

    shutdown_event = threading.Event()

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    handle = service.start(cfg, collaborators, cancel_event=shutdown_event)

    housekeeping_thread = None
    if audit_path is not None:
        housekeeping_instance = housekeeping.Housekeeping(cfg, audit_path)
        housekeeping_thread = threading.Thread(
            target=run_with_restart,
            args=(
                housekeeping_instance.run,
                shutdown_event,
                "housekeeping",
                shutdown_event,
            ),
            name="housekeeping",
            daemon=True,
        )
        housekeeping_thread.start()
        logger.info(f"Started {housekeeping_thread.name} thread")

    # Main thread heartbeat
    try:
        while not shutdown_event.wait(timeout=30):
            log_heartbeat(handle)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        shutdown_event.set()

    logger.info("Shutting down...")

    deadline = time.time() + 10
    service.stop(handle, timeout=max(0, deadline - time.time()))
    if housekeeping_thread is not None:
        housekeeping_thread.join(timeout=max(0, deadline - time.time()))
        if housekeeping_thread.is_alive():
            logger.warning(f"Thread {housekeeping_thread.name} did not stop within timeout")

    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
