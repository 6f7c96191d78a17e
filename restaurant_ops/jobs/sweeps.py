"""Concrete sweep actions and their default registration.

daily     02:30 local: stale open carts + unverified phone numbers
frequent  every 15 min: unpaid checkouts release their reserved stock

Each action opens its own session from `SessionLocal` (looked up at call time so
tests can rebind it) and closes it when done. Errors propagate to the scheduler,
which reports them and keeps the timer alive.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

import restaurant_ops.database as database
from restaurant_ops.config import SCHEDULER_TIMEZONE, SWEEP_SCHEDULES, SWEEP_SETTINGS
from restaurant_ops.jobs.scheduler import ReconciliationScheduler, ScheduledTask
from restaurant_ops.services.order_sweeps import release_unpaid_checkouts, remove_stale_open_orders
from restaurant_ops.services.phone_numbers import remove_unverified_phone_numbers
from restaurant_ops.utils import get_logger, log_business_event
from restaurant_ops.utils.time import utc_now

logger = get_logger(__name__)

SessionFactory = Callable[[], Session]


def _session(factory: Optional[SessionFactory]) -> Session:
    return (factory or database.SessionLocal)()


def run_daily_sweep(session_factory: Optional[SessionFactory] = None) -> dict:
    """Remove carts that were never checked out and phone numbers never verified."""
    now = utc_now()
    session = _session(session_factory)
    try:
        orders_removed = remove_stale_open_orders(
            session,
            max_age=timedelta(hours=float(SWEEP_SETTINGS["stale_open_order_hours"])),
            now=now,
        )
        phones_removed = remove_unverified_phone_numbers(
            session,
            max_age=timedelta(hours=float(SWEEP_SETTINGS["unverified_phone_hours"])),
            now=now,
        )
    finally:
        session.close()

    result = {"stale_open_orders_removed": orders_removed, "unverified_phone_numbers_removed": phones_removed}
    log_business_event("daily_sweep_completed", result)
    return result


def run_frequent_sweep(session_factory: Optional[SessionFactory] = None) -> dict:
    """Expire unpaid checkouts and put their reserved quantities back on sale."""
    now = utc_now()
    session = _session(session_factory)
    try:
        summary = release_unpaid_checkouts(
            session,
            max_age=timedelta(minutes=float(SWEEP_SETTINGS["unpaid_checkout_minutes"])),
            now=now,
        )
    finally:
        session.close()

    result = summary.as_dict()
    if summary.orders_expired:
        log_business_event("unpaid_checkouts_released", result)
    return result


def register_default_sweeps(
    scheduler: ReconciliationScheduler,
    *,
    timezone: Optional[str] = None,
    schedules: Optional[dict[str, str]] = None,
    session_factory: Optional[SessionFactory] = None,
) -> dict[str, ScheduledTask]:
    """Register the daily and frequent sweeps (stopped). Raises ScheduleConfigError on bad config."""
    tz = timezone or SCHEDULER_TIMEZONE
    crons = {**SWEEP_SCHEDULES, **(schedules or {})}

    def daily() -> dict:
        return run_daily_sweep(session_factory)

    def frequent() -> dict:
        return run_frequent_sweep(session_factory)

    tasks = {
        "daily": scheduler.schedule(crons["daily"], tz, daily, name="daily"),
        "frequent": scheduler.schedule(crons["frequent"], tz, frequent, name="frequent"),
    }
    logger.info("Default sweeps registered", timezone=tz, daily=crons["daily"], frequent=crons["frequent"])
    return tasks


__all__ = ["run_daily_sweep", "run_frequent_sweep", "register_default_sweeps"]
