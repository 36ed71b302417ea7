"""Service lifecycle module.

Wires the controller to its collaborators and the scheduler. Independent of
how the process is launched; main.py is one host.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from config import Config
from sampling_controller import SamplingController
from scheduler import CycleScheduler
from state_manager import StateManager
from target_rotation import TargetRotation


logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """External effects used by the controller."""
    measurement_source: Any
    percentage_store: Any
    metrics_sink: Any = None
    audit_log: Any = None


@dataclass
class ServiceHandle:
    """Everything start() created, needed by stop()."""
    controller: SamplingController
    scheduler: CycleScheduler
    state_manager: StateManager
    collaborators: Collaborators


def start(
    config: Config,
    collaborators: Collaborators,
    cancel_event: Optional[threading.Event] = None,
    state_manager: Optional[StateManager] = None,
) -> ServiceHandle:
    """Seed the controller and start ticking every window.

    Args:
        config: Validated configuration
        collaborators: Measurement, persistence, metrics and audit effects
        cancel_event: Shutdown token; setting it stops the scheduler
        state_manager: Shared state for heartbeats; created if omitted

    Returns:
        ServiceHandle to pass to stop()
    """
    state_mgr = state_manager or StateManager()

    rotation = TargetRotation(
        config.connections.sample.daily_index_prefix,
        config.connections.sample.date_delimiter,
    )
    controller = SamplingController(
        config.controller,
        config.connections.store.document_id,
        collaborators.measurement_source,
        collaborators.percentage_store,
        rotation,
        metrics_sink=collaborators.metrics_sink,
        audit_log=collaborators.audit_log,
    )

    logger.info(f"Sampling controller config: {config.controller}")
    logger.info(f"Target bytes per window: {controller.target_bytes_per_window}")

    if collaborators.metrics_sink is not None:
        collaborators.metrics_sink.set_info(config)

    controller.seed()
    state_mgr.record_cycle(None, controller.snapshot())

    def tick() -> None:
        result = controller.run_cycle()
        state_mgr.record_cycle(result, controller.snapshot())
        state_mgr.update_thread_last_run("controller", int(time.time()))

    scheduler = CycleScheduler(
        config.controller.window_ms / 1000,
        tick,
        cancel_event=cancel_event,
        name="controller",
    )
    scheduler.start()

    return ServiceHandle(
        controller=controller,
        scheduler=scheduler,
        state_manager=state_mgr,
        collaborators=collaborators,
    )


def stop(handle: ServiceHandle, timeout: Optional[float] = 10) -> bool:
    """Stop the scheduler, letting an in-flight cycle finish.

    Args:
        handle: Handle returned by start()
        timeout: Maximum seconds to wait for the in-flight cycle

    Returns:
        True if the scheduler thread exited within the timeout
    """
    stopped = handle.scheduler.stop(timeout=timeout)
    handle.controller.stop()
    if stopped and handle.collaborators.audit_log is not None:
        handle.collaborators.audit_log.close()
    logger.info("Sampling controller stopped")
    return stopped
