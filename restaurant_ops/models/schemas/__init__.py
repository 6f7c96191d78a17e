from .base import ResponseBase
from .maintenance import LeaderStatus, SweepStatus, MaintenanceStatus, SweepRunResult

__all__ = [
    "ResponseBase",
    "LeaderStatus",
    "SweepStatus",
    "MaintenanceStatus",
    "SweepRunResult",
]
