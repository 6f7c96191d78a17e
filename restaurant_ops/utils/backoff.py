"""Retry delays for the leader-election loop while the lease store is unreachable."""
from __future__ import annotations

import random
from typing import Optional

from restaurant_ops.config import BACKOFF_POLICY


def compute_backoff_seconds(
    attempt: int,
    *,
    base: Optional[float] = None,
    factor: Optional[float] = None,
    max_seconds: Optional[float] = None,
    jitter_pct: Optional[float] = None,
) -> float:
    """Delay before retry number ``attempt`` (1-based): exponential, capped, jittered."""
    policy = {
        "base_seconds": base,
        "factor": factor,
        "max_seconds": max_seconds,
        "jitter_pct": jitter_pct,
    }
    resolved = {k: float(v if v is not None else BACKOFF_POLICY[k]) for k, v in policy.items()}

    exponent = max(attempt, 1) - 1
    delay = min(resolved["base_seconds"] * resolved["factor"] ** exponent, resolved["max_seconds"])
    spread = delay * resolved["jitter_pct"]
    if spread > 0:
        delay = random.uniform(delay - spread, delay + spread)
    return max(delay, 0.0)


__all__ = ["compute_backoff_seconds"]
