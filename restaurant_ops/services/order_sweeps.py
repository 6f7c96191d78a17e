"""Order reconciliation sweeps.

Two batch operations keep orders and inventory consistent:

* `remove_stale_open_orders` deletes carts (status OPEN) that were never checked
  out. Carts hold no reserved stock, so deleting them needs no inventory work.
* `release_unpaid_checkouts` finds orders that reserved stock at checkout but never
  saw a payment, returns the reserved units to their products and marks the order
  EXPIRED.

Both are safe to run twice, including concurrently from two instances during a
leader-election failover window:

* Deletes are predicate based (status + age), so a second pass finds nothing.
* Stock is only restored after a conditional `CHECKED_OUT -> EXPIRED` update on
  that order affected exactly one row. The update is the claim: whichever
  transaction flips the status owns the restore, every other pass sees zero
  affected rows and skips the order. Claim and restore commit together, one order
  per transaction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from restaurant_ops.models.db import Order, OrderItem, Product, OrderStatus
from restaurant_ops.utils import get_logger
from restaurant_ops.utils.time import utc_now

logger = get_logger(__name__)


@dataclass(slots=True)
class ReleaseSummary:
    orders_expired: int = 0
    units_restored: int = 0
    order_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "orders_expired": self.orders_expired,
            "units_restored": self.units_restored,
            "order_ids": list(self.order_ids),
        }


def remove_stale_open_orders(session: Session, *, max_age: timedelta, now: datetime | None = None) -> int:
    """Delete OPEN orders (and their items) created before ``now - max_age``.

    Returns the number of orders removed.
    """
    now = now or utc_now()
    cutoff = now - max_age

    try:
        # Row locks hold off a concurrent checkout until the deletes commit (no-op on SQLite).
        stale_ids = [
            row_id
            for (row_id,) in session.query(Order.id)
            .filter(Order.status == OrderStatus.OPEN, Order.created_at < cutoff)
            .with_for_update()
            .all()
        ]
        if not stale_ids:
            session.rollback()
            return 0

        # Both deletes re-check the predicate: a cart checked out since the select
        # must keep its row and its line items.
        still_stale = select(Order.id).where(
            Order.id.in_(stale_ids),
            Order.status == OrderStatus.OPEN,
            Order.created_at < cutoff,
        )
        session.query(OrderItem).filter(OrderItem.order_id.in_(still_stale)).delete(synchronize_session=False)
        removed = (
            session.query(Order)
            .filter(
                Order.id.in_(stale_ids),
                Order.status == OrderStatus.OPEN,
                Order.created_at < cutoff,
            )
            .delete(synchronize_session=False)
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Removed stale open orders", removed=removed, cutoff=cutoff.isoformat())
    return int(removed or 0)


def _release_one(session: Session, order_id: int, now: datetime) -> int | None:
    """Claim one unpaid checkout and restore its stock.

    Returns units restored, or None when another pass already claimed the order.
    """
    claimed = (
        session.query(Order)
        .filter(
            Order.id == order_id,
            Order.status == OrderStatus.CHECKED_OUT,
            Order.paid_at.is_(None),
        )
        .update({Order.status: OrderStatus.EXPIRED, Order.expired_at: now}, synchronize_session=False)
    )
    if claimed != 1:
        session.rollback()
        return None

    units = 0
    items = session.query(OrderItem.product_id, OrderItem.quantity).filter(OrderItem.order_id == order_id).all()
    for product_id, quantity in items:
        session.query(Product).filter(Product.id == product_id).update(
            {Product.quantity: Product.quantity + quantity}, synchronize_session=False
        )
        units += int(quantity)
    session.commit()
    return units


def release_unpaid_checkouts(session: Session, *, max_age: timedelta, now: datetime | None = None) -> ReleaseSummary:
    """Expire checked-out orders left unpaid longer than ``max_age`` and put their stock back."""
    now = now or utc_now()
    cutoff = now - max_age
    summary = ReleaseSummary()

    candidate_ids = [
        row_id
        for (row_id,) in session.query(Order.id)
        .filter(
            Order.status == OrderStatus.CHECKED_OUT,
            Order.paid_at.is_(None),
            Order.checked_out_at < cutoff,
        )
        .order_by(Order.id)
        .all()
    ]
    # End the read transaction so each claim starts fresh.
    session.rollback()

    for order_id in candidate_ids:
        try:
            units = _release_one(session, order_id, now)
        except Exception:
            session.rollback()
            logger.error("Failed releasing unpaid checkout", order_id=order_id, exc_info=True)
            raise
        if units is None:
            logger.debug("Unpaid checkout already released elsewhere", order_id=order_id)
            continue
        summary.orders_expired += 1
        summary.units_restored += units
        summary.order_ids.append(order_id)
        logger.info("Released unpaid checkout", order_id=order_id, units_restored=units)

    return summary


__all__ = ["ReleaseSummary", "remove_stale_open_orders", "release_unpaid_checkouts"]
