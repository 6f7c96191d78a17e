"""
Maintenance endpoints: leader/sweep status and manual sweep triggers.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request

from restaurant_ops.api.deps import get_leader_gate, get_sweep_scheduler, require_maintenance_token
from restaurant_ops.jobs.leader_election import LeaderElectionGate
from restaurant_ops.jobs.scheduler import ReconciliationScheduler, TickOutcome
from restaurant_ops.models.schemas.base import ResponseBase
from restaurant_ops.models.schemas.maintenance import LeaderStatus, MaintenanceStatus, SweepStatus, SweepRunResult
from restaurant_ops.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/status",
    response_model=MaintenanceStatus,
    summary="Leader election and sweep schedule status"
)
def get_status(
    gate: LeaderElectionGate = Depends(get_leader_gate),
    scheduler: ReconciliationScheduler = Depends(get_sweep_scheduler),
) -> MaintenanceStatus:
    leader = LeaderStatus(**gate.snapshot(), current_holder=gate.current_holder())
    stats = scheduler.metrics.snapshot()
    sweeps = [
        SweepStatus(**snap, stats=stats.get(snap["name"], {}))
        for snap in scheduler.snapshot()
    ]
    return MaintenanceStatus(leader=leader, sweeps=sweeps)


@router.post(
    "/sweeps/{name}/run",
    response_model=ResponseBase,
    summary="Run a sweep now",
    dependencies=[Depends(require_maintenance_token)],
)
def run_sweep(
    name: str,
    request: Request,
    scheduler: ReconciliationScheduler = Depends(get_sweep_scheduler),
) -> ResponseBase:
    """Run one sweep immediately through the same gated, serialized path as a timer tick.

    Only the master instance runs sweeps; other instances answer 409.
    """
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    task = scheduler.get(name)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown sweep '{name}'")

    logger.info("Manual sweep triggered", task=name, request_id=request_id)
    tick = task.execute()
    outcome = tick.outcome

    if outcome == TickOutcome.SKIPPED_NOT_MASTER:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This instance is not master")
    if outcome == TickOutcome.SKIPPED_OVERLAP:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Sweep '{name}' is already running")
    if outcome == TickOutcome.FAILED:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Sweep '{name}' failed")

    result = tick.result if isinstance(tick.result, dict) else None
    log_business_event("manual_sweep_completed", {"task": name, **(result or {})}, request_id=request_id)
    return ResponseBase(
        message=f"Sweep '{name}' completed",
        data=SweepRunResult(name=name, outcome=outcome.value, result=result).model_dump(),
    )
