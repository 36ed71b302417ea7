"""State manager module for thread-safe shared state.

Provides controlled access to in-memory state across threads with proper
synchronization. The scheduler thread writes here after each cycle; the main
thread reads for its heartbeat.
"""

import copy
import threading
from typing import Any, Dict, Optional


class StateManager:
    """Thread-safe manager for shared in-memory state.

    All access to shared state is protected by an RLock. Values are copied on
    the way in and out so readers never observe a cycle in progress.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._state: Dict[str, Any] = {
            "last_cycle_result": None,
            "cycle_state": None,
            "thread_last_run": {"controller": 0},
        }

    def record_cycle(self, result: Optional[Any], cycle_state: Any) -> None:
        """Store the outcome of a cycle.

        Args:
            result: CycleResult, or None when the cycle's measurement failed;
                a failed cycle keeps the previous result
            cycle_state: CycleState after the cycle
        """
        with self._lock:
            if result is not None:
                self._state["last_cycle_result"] = result
            self._state["cycle_state"] = copy.deepcopy(cycle_state)

    def get_last_cycle_result(self) -> Optional[Any]:
        """Get the most recent successful CycleResult, or None."""
        with self._lock:
            return self._state["last_cycle_result"]

    def get_cycle_state(self) -> Optional[Any]:
        """Get a copy of the CycleState recorded after the last cycle."""
        with self._lock:
            return copy.deepcopy(self._state["cycle_state"])

    def update_thread_last_run(self, thread_name: str, timestamp: int) -> None:
        """Update the last run timestamp for a thread.

        Args:
            thread_name: Name of the thread (e.g. controller)
            timestamp: Unix timestamp
        """
        with self._lock:
            self._state["thread_last_run"][thread_name] = timestamp

    def get_thread_last_run(self, thread_name: str) -> int:
        """Get the last run timestamp for a thread.

        Args:
            thread_name: Name of the thread (e.g. controller)

        Returns:
            Unix timestamp, or 0 if thread has never run
        """
        with self._lock:
            return self._state["thread_last_run"].get(thread_name, 0)
