"""
Dependencies for database sessions, maintenance components and the admin token guard.
"""
import secrets
from typing import Generator, Optional
from fastapi import HTTPException, status, Header, Request
from sqlalchemy.orm import Session
from restaurant_ops.database import SessionLocal
from restaurant_ops.jobs.leader_election import LeaderElectionGate
from restaurant_ops.jobs.scheduler import ReconciliationScheduler
from restaurant_ops.utils import get_logger

logger = get_logger(__name__)

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def get_leader_gate(request: Request) -> LeaderElectionGate:
    gate = getattr(request.app.state, "leader_gate", None)
    if gate is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Leader election not running"
        )
    return gate

def get_sweep_scheduler(request: Request) -> ReconciliationScheduler:
    scheduler = getattr(request.app.state, "sweep_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sweep scheduler not running"
        )
    return scheduler

def require_maintenance_token(
    x_maintenance_token: Optional[str] = Header(None, alias="X-Maintenance-Token")
) -> None:
    """
    Guard for manual maintenance actions.

    The token is compared in constant time against MAINTENANCE_TOKEN. When no token
    is configured the guarded endpoints are disabled entirely.
    """
    from restaurant_ops.config import MAINTENANCE_TOKEN

    if not MAINTENANCE_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Manual maintenance is disabled (MAINTENANCE_TOKEN not configured)"
        )
    if not x_maintenance_token or not secrets.compare_digest(x_maintenance_token, MAINTENANCE_TOKEN):
        logger.warning(
            "Maintenance authentication failed",
            provided_token_prefix=(x_maintenance_token[:4] + "...") if x_maintenance_token else None
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid maintenance token"
        )
