"""Error taxonomy for the maintenance subsystem."""
from __future__ import annotations


class MaintenanceError(Exception):
    """Base class for maintenance subsystem errors."""


class CoordinationUnavailable(MaintenanceError):
    """The leader-election backend could not be reached.

    Never fatal: the gate treats it as "not master" and keeps retrying.
    """


class ActionFailure(MaintenanceError):
    """A sweep action raised while running under the scheduler."""

    def __init__(self, task_name: str, cause: BaseException):
        super().__init__(f"Sweep '{task_name}' failed: {type(cause).__name__}: {cause}")
        self.task_name = task_name
        self.cause = cause


class ScheduleConfigError(MaintenanceError, ValueError):
    """Invalid cron expression or timezone supplied at registration time."""


__all__ = [
    "MaintenanceError",
    "CoordinationUnavailable",
    "ActionFailure",
    "ScheduleConfigError",
]
