"""Central Enum definitions for order lifecycle states."""
from __future__ import annotations
import enum


class OrderStatus(str, enum.Enum):
    OPEN = "OPEN"                # cart, nothing reserved yet
    CHECKED_OUT = "CHECKED_OUT"  # product quantities reserved, awaiting payment
    PAID = "PAID"
    EXPIRED = "EXPIRED"          # reservation released by the unpaid-checkout sweep

__all__ = ["OrderStatus"]
