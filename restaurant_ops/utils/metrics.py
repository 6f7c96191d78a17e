"""In-process run counters for scheduled sweeps (process-local)."""
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict

from restaurant_ops.utils.time import utc_now


@dataclass
class TaskRunStats:
    runs: int = 0
    failures: int = 0
    skipped_not_master: int = 0
    skipped_overlap: int = 0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_error: str | None = None
    last_duration_ms: float | None = None


class SweepMetrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stats: Dict[str, TaskRunStats] = {}

    def _get(self, task_name: str) -> TaskRunStats:
        return self._stats.setdefault(task_name, TaskRunStats())

    def record_started(self, task_name: str) -> None:
        with self._lock:
            st = self._get(task_name)
            st.runs += 1
            st.last_started_at = utc_now()

    def record_success(self, task_name: str, duration_ms: float) -> None:
        with self._lock:
            st = self._get(task_name)
            st.last_success_at = utc_now()
            st.last_duration_ms = duration_ms

    def record_failure(self, task_name: str, duration_ms: float, error: str) -> None:
        with self._lock:
            st = self._get(task_name)
            st.failures += 1
            st.last_failure_at = utc_now()
            st.last_duration_ms = duration_ms
            st.last_error = error

    def record_skip(self, task_name: str, *, reason: str) -> None:
        with self._lock:
            st = self._get(task_name)
            if reason == "not_master":
                st.skipped_not_master += 1
            elif reason == "overlap":
                st.skipped_overlap += 1

    def get(self, task_name: str) -> TaskRunStats:
        with self._lock:
            st = self._get(task_name)
            return replace(st)

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {
                name: {
                    "runs": st.runs,
                    "failures": st.failures,
                    "skipped_not_master": st.skipped_not_master,
                    "skipped_overlap": st.skipped_overlap,
                    "last_started_at": st.last_started_at.isoformat() if st.last_started_at else None,
                    "last_success_at": st.last_success_at.isoformat() if st.last_success_at else None,
                    "last_failure_at": st.last_failure_at.isoformat() if st.last_failure_at else None,
                    "last_error": st.last_error,
                    "last_duration_ms": st.last_duration_ms,
                }
                for name, st in self._stats.items()
            }


GLOBAL_SWEEP_METRICS = SweepMetrics()

__all__ = ["SweepMetrics", "TaskRunStats", "GLOBAL_SWEEP_METRICS"]
