"""Stage timing and run counters for the load estimation pipeline."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("elc-perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that logs the wall time of a synchronous pipeline stage at DEBUG.

    Usage::

        @timed
        def build_room_polygons(...):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                f"{func.__qualname__} took {duration_ms} ms",
                extra={"stage": func.__qualname__, "duration_ms": duration_ms},
            )
    return wrapper


def timed_async(func: Callable) -> Callable:
    """Async counterpart of :func:`timed`."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                f"{func.__qualname__} took {duration_ms} ms",
                extra={"stage": func.__qualname__, "duration_ms": duration_ms},
            )
    return wrapper


class PipelineMetrics:
    """
    Thread-safe in-memory counters for pipeline runs.

    Tracks:
    - Runs completed, failed (fatal geometry errors) and degraded
      (at least one room without a classification)
    - Average run duration
    - Per-node average duration and the slowest node seen
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._runs_completed: int = 0
        self._runs_failed: int = 0
        self._runs_degraded: int = 0
        self._total_run_duration_ms: float = 0.0
        self._node_durations: Dict[str, list] = {}   # node_name -> [duration_ms, ...]
        self._slowest_node: Optional[str] = None
        self._slowest_node_ms: float = 0.0

    def record_run(self, duration_ms: float, success: bool, degraded: bool = False) -> None:
        """Call once per pipeline run, whatever the outcome."""
        with self._lock:
            self._total_run_duration_ms += duration_ms
            if not success:
                self._runs_failed += 1
                return
            self._runs_completed += 1
            if degraded:
                self._runs_degraded += 1

    def record_node_duration(self, node_name: str, duration_ms: float) -> None:
        with self._lock:
            self._node_durations.setdefault(node_name, []).append(duration_ms)
            if duration_ms > self._slowest_node_ms:
                self._slowest_node_ms = duration_ms
                self._slowest_node = node_name

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of all counters; averages are 0 when nothing was recorded."""
        with self._lock:
            total_runs = self._runs_completed + self._runs_failed
            avg = round(self._total_run_duration_ms / total_runs, 2) if total_runs else 0.0
            node_avgs = {
                node: round(sum(durations) / len(durations), 2)
                for node, durations in self._node_durations.items()
                if durations
            }
            return {
                "runs_completed": self._runs_completed,
                "runs_failed": self._runs_failed,
                "runs_degraded": self._runs_degraded,
                "avg_run_duration_ms": avg,
                "slowest_node": self._slowest_node,
                "slowest_node_ms": round(self._slowest_node_ms, 2),
                "node_avg_durations_ms": node_avgs,
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._runs_completed = 0
            self._runs_failed = 0
            self._runs_degraded = 0
            self._total_run_duration_ms = 0.0
            self._node_durations.clear()
            self._slowest_node = None
            self._slowest_node_ms = 0.0


# Module-level singleton shared by the graph and the /health endpoint
metrics = PipelineMetrics()
