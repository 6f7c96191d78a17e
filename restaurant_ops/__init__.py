"""Restaurant ordering platform: maintenance subsystem package.

Hosts the leader-gated sweep scheduler that keeps orders, inventory and
phone-number records tidy across a multi-instance deployment.
"""

__all__: list[str] = []
