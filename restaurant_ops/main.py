"""
FastAPI host process for the maintenance subsystem.

Startup creates tables, starts leader election and arms the daily and frequent
sweeps; shutdown stops the timers and hands the master lease to a peer.
"""
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

import restaurant_ops.database as database
import restaurant_ops.models.db  # noqa: F401  (registers tables on Base.metadata)
from restaurant_ops.api.v1 import api_router
from restaurant_ops.config import SCHEDULER_TIMEZONE, SWEEP_SETTINGS
from restaurant_ops.database import Base, engine
from restaurant_ops.exceptions import ScheduleConfigError
from restaurant_ops.jobs.leader_election import LeaderElectionGate, create_lease_store
from restaurant_ops.jobs.scheduler import ReconciliationScheduler
from restaurant_ops.jobs.sweeps import register_default_sweeps
from restaurant_ops.utils import get_logger, setup_logging

SERVICE_NAME = "restaurant-ops"
SERVICE_VERSION = "1.0.0"

setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)


def start_maintenance(app: FastAPI) -> None:
    """Build the lease store and gate, register both sweeps, start everything.

    Schedules are parsed before any thread starts, so a ScheduleConfigError
    leaves nothing running behind.
    """
    gate = LeaderElectionGate(create_lease_store())
    scheduler = ReconciliationScheduler(gate)
    tasks = register_default_sweeps(scheduler, timezone=SCHEDULER_TIMEZONE)

    gate.start()
    for task in tasks.values():
        task.start()
    scheduler.start()

    app.state.leader_gate = gate  # type: ignore[attr-defined]
    app.state.sweep_scheduler = scheduler  # type: ignore[attr-defined]
    logger.info(
        "Maintenance subsystem started",
        instance_id=gate.instance_id,
        timezone=SCHEDULER_TIMEZONE,
        sweeps=sorted(tasks),
    )


def stop_maintenance(app: FastAPI) -> None:
    scheduler: Optional[ReconciliationScheduler] = getattr(app.state, "sweep_scheduler", None)
    gate: Optional[LeaderElectionGate] = getattr(app.state, "leader_gate", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    if gate is not None:
        gate.stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Database connection established")

    if SWEEP_SETTINGS.get("enabled", True):
        try:
            start_maintenance(app)
        except ScheduleConfigError as e:
            logger.error("Invalid sweep schedule configuration; refusing to start", error=str(e))
            raise
    else:
        logger.warning("Sweep scheduler disabled by ENABLE_SWEEP_SCHEDULER")

    try:
        yield
    finally:
        logger.info("Shutting down maintenance subsystem")
        stop_maintenance(app)


app = FastAPI(
    title="Restaurant Ordering Platform - Maintenance",
    description="""
    Background maintenance for the restaurant ordering platform.

    * **daily** (02:30 local): removes carts never checked out and unverified phone numbers
    * **frequent** (every 15 minutes): releases stock held by unpaid checkouts

    Only the instance currently holding the master lease runs sweeps.
    """,
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)


def _error_response(request: Request, status_code: int, message: Any, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "request_id": getattr(request.state, "request_id", "unknown"),
            **extra,
        },
    )


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag each request with an id and log its outcome and latency."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()

    response = await call_next(request)

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(elapsed_ms)
    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time_ms=elapsed_ms,
        request_id=request_id
    )
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Request validation failed", errors=exc.errors(), path=request.url.path)
    return _error_response(request, 422, "Request validation failed", details=exc.errors())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail, path=request.url.path)
    return _error_response(request, exc.status_code, exc.detail)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        exc_info=True
    )
    return _error_response(request, 500, "Internal server error")


@app.get("/health", tags=["health"], summary="Liveness and mastership")
async def health_check(request: Request):
    gate: Optional[LeaderElectionGate] = getattr(request.app.state, "leader_gate", None)
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "is_master": gate.is_master() if gate is not None else False,
    }


@app.get("/health/detailed", tags=["health"], summary="Database, coordination and schedule checks")
def detailed_health_check(request: Request):
    checks: dict[str, Any] = {}
    degraded = False

    db = database.SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {e}"
        degraded = True
    finally:
        db.close()

    gate: Optional[LeaderElectionGate] = getattr(request.app.state, "leader_gate", None)
    if gate is not None:
        reachable = gate.store.ping()
        checks["coordination"] = "healthy" if reachable else "unavailable"
        checks["leader"] = gate.snapshot()
        degraded = degraded or not reachable

    scheduler: Optional[ReconciliationScheduler] = getattr(request.app.state, "sweep_scheduler", None)
    if scheduler is not None:
        checks["scheduler"] = {"running": scheduler.running, "sweeps": scheduler.snapshot()}

    return {
        "status": "degraded" if degraded else "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "checks": checks,
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": "Restaurant Ordering Platform - Maintenance API",
        "version": SERVICE_VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }


app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "3000"))
    logger.info("Server listening", port=port)
    uvicorn.run("restaurant_ops.main:app", host="0.0.0.0", port=port, log_level="info")
