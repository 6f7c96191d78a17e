"""Maintenance subsystem configuration & tunable rules.

Schedules, retention windows, leader-election lease timing and retry policy are
centralized here so operators can adjust them through environment variables
without touching job or service code. Values are plain module constants
(mutable dicts allowed so tests can monkeypatch individual keys).
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


# ------------------------------- Scheduling ------------------------------- #
# All cron expressions are interpreted in this IANA zone.
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "Europe/Stockholm")

# Six-field cron expressions (seconds first).
SWEEP_SCHEDULES: dict[str, str] = {
	"daily": os.getenv("DAILY_SWEEP_CRON", "00 30 2 * * *"),        # 02:30 every day
	"frequent": os.getenv("FREQUENT_SWEEP_CRON", "0 */15 * * * *"),  # every 15 minutes
}

# --------------------------------- Sweeps --------------------------------- #
SWEEP_SETTINGS: dict[str, float | int | bool] = {
	"enabled": _env_bool("ENABLE_SWEEP_SCHEDULER", True),
	# Carts never checked out are removed after this age.
	"stale_open_order_hours": float(os.getenv("STALE_OPEN_ORDER_HOURS", "24")),
	# Checked-out orders without payment release their stock after this age.
	"unpaid_checkout_minutes": float(os.getenv("UNPAID_CHECKOUT_MINUTES", "15")),
	# Phone numbers that never completed SMS verification.
	"unverified_phone_hours": float(os.getenv("UNVERIFIED_PHONE_HOURS", "24")),
	# A tick later than this (e.g. process paused) is dropped, not replayed.
	"misfire_grace_seconds": 60,
	"max_workers": 4,
}

# ----------------------------- Leader Election ---------------------------- #
LEADER_ELECTION: dict[str, str | float] = {
	# "memory" suits a single instance; multi-instance deployments need "redis".
	"backend": os.getenv("LEADER_ELECTION_BACKEND", "memory"),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"key": os.getenv("LEADER_ELECTION_KEY", "restaurant:maintenance:master"),
	"lease_ttl_seconds": float(os.getenv("LEADER_LEASE_TTL_SECONDS", "15")),
	"renew_interval_seconds": float(os.getenv("LEADER_RENEW_INTERVAL_SECONDS", "5")),
	"socket_timeout": 2.0,
}

# --------------------------------- Backoff -------------------------------- #
# Retry delays while the coordination backend is unreachable.
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 1,
	"factor": 2,          # Exponential factor
	"max_seconds": 30,
	"jitter_pct": 0.10,   # +/-10% jitter
}

# ------------------------------ Maintenance API --------------------------- #
# Shared secret for manual sweep triggers. Unset disables the endpoint.
MAINTENANCE_TOKEN: str | None = os.getenv("MAINTENANCE_TOKEN") or None

__all__ = [
	"SCHEDULER_TIMEZONE",
	"SWEEP_SCHEDULES",
	"SWEEP_SETTINGS",
	"LEADER_ELECTION",
	"BACKOFF_POLICY",
	"MAINTENANCE_TOKEN",
]
