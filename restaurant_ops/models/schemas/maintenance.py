"""
Maintenance status schemas: leader election state and per-sweep schedule/run stats.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

class LeaderStatus(BaseModel):
    instance_id: str
    is_master: bool
    key: str
    current_holder: Optional[str] = Field(None, description="Instance id holding the lease, if known")
    last_heartbeat: Optional[float] = Field(None, description="Epoch seconds of last successful renewal")
    coordination_available: bool
    consecutive_failures: int = 0
    running: bool

class SweepStatus(BaseModel):
    name: str
    state: str
    expression: str
    timezone: str
    in_flight: bool
    next_fire_time: Optional[datetime] = None
    stats: Dict[str, Any] = Field(default_factory=dict)

class MaintenanceStatus(BaseModel):
    leader: LeaderStatus
    sweeps: List[SweepStatus]

class SweepRunResult(BaseModel):
    name: str
    outcome: str
    result: Optional[Dict[str, Any]] = None
