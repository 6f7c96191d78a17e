"""Sweep actions against the test database: expiry, stock release, idempotence."""
from datetime import timedelta

from sqlalchemy import event

from restaurant_ops.jobs.scheduler import ReconciliationScheduler, TickOutcome
from restaurant_ops.jobs.sweeps import register_default_sweeps, run_daily_sweep, run_frequent_sweep
from restaurant_ops.models.db import Order, OrderItem, OrderStatus, PhoneNumber, Product
from restaurant_ops.services import order_sweeps
from restaurant_ops.services.order_sweeps import release_unpaid_checkouts, remove_stale_open_orders
from restaurant_ops.services.phone_numbers import remove_unverified_phone_numbers
from restaurant_ops.utils.metrics import SweepMetrics
from restaurant_ops.utils.time import ensure_aware, utc_now


def test_unpaid_checkout_releases_stock_after_sixteen_minutes(db_session, unpaid_checkout):
    order, product = unpaid_checkout(minutes_ago=16, quantity=2, remaining=3)
    now = utc_now()

    summary = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15), now=now)

    assert summary.orders_expired == 1
    assert summary.units_restored == 2
    assert summary.order_ids == [order.id]
    db_session.expire_all()
    assert db_session.get(Product, product.id).quantity == 5
    refreshed = db_session.get(Order, order.id)
    assert refreshed.status == OrderStatus.EXPIRED
    assert ensure_aware(refreshed.expired_at) <= now + timedelta(seconds=1)


def test_release_twice_restores_stock_once(db_session, unpaid_checkout):
    order, product = unpaid_checkout(minutes_ago=20, quantity=4, remaining=0)
    first = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15))
    second = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15))

    assert first.units_restored == 4
    assert second.orders_expired == 0
    assert second.units_restored == 0
    db_session.expire_all()
    assert db_session.get(Product, product.id).quantity == 4


def test_release_from_two_sessions_restores_stock_once(db_session, unpaid_checkout):
    """Two instances overlapping during failover each run the sweep."""
    import restaurant_ops.database as database

    order, product = unpaid_checkout(minutes_ago=30, quantity=1, remaining=9)
    other = database.SessionLocal()
    try:
        a = release_unpaid_checkouts(other, max_age=timedelta(minutes=15))
        b = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15))
    finally:
        other.close()
    assert a.orders_expired + b.orders_expired == 1
    db_session.expire_all()
    assert db_session.get(Product, product.id).quantity == 10


def test_recent_checkout_is_left_alone(db_session, unpaid_checkout):
    order, product = unpaid_checkout(minutes_ago=10, quantity=2, remaining=3)
    summary = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15))
    assert summary.orders_expired == 0
    db_session.expire_all()
    assert db_session.get(Order, order.id).status == OrderStatus.CHECKED_OUT
    assert db_session.get(Product, product.id).quantity == 3


def test_paid_order_never_releases_stock(db_session, product_factory, order_factory):
    product = product_factory("Falafel Wrap", quantity=1)
    long_ago = utc_now() - timedelta(hours=2)
    order = order_factory(
        OrderStatus.PAID,
        created_at=long_ago,
        checked_out_at=long_ago,
        paid_at=long_ago + timedelta(minutes=3),
        items=[(product, 2)],
    )
    summary = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15))
    assert summary.orders_expired == 0
    db_session.expire_all()
    assert db_session.get(Order, order.id).status == OrderStatus.PAID
    assert db_session.get(Product, product.id).quantity == 1


def test_release_restores_every_line_item(db_session, product_factory, order_factory):
    burger = product_factory("Burger", quantity=0)
    fries = product_factory("Fries", quantity=5)
    checked_out = utc_now() - timedelta(minutes=45)
    order_factory(OrderStatus.CHECKED_OUT, created_at=checked_out, checked_out_at=checked_out, items=[(burger, 2), (fries, 3)])

    summary = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15))
    assert summary.units_restored == 5
    db_session.expire_all()
    assert db_session.get(Product, burger.id).quantity == 2
    assert db_session.get(Product, fries.id).quantity == 8


def test_stale_open_orders_removed_with_items(db_session, product_factory, order_factory):
    product = product_factory("Soup", quantity=7)
    now = utc_now()
    stale = order_factory(OrderStatus.OPEN, created_at=now - timedelta(hours=25), items=[(product, 1)])
    fresh = order_factory(OrderStatus.OPEN, created_at=now - timedelta(hours=1))
    checked_out = order_factory(
        OrderStatus.CHECKED_OUT,
        created_at=now - timedelta(hours=30),
        checked_out_at=now - timedelta(minutes=5),
        items=[(product, 1)],
    )

    stale_id, fresh_id, checked_out_id = stale.id, fresh.id, checked_out.id

    removed = remove_stale_open_orders(db_session, max_age=timedelta(hours=24), now=now)

    assert removed == 1
    db_session.expire_all()
    assert db_session.get(Order, stale_id) is None
    assert db_session.query(OrderItem).filter_by(order_id=stale_id).count() == 0
    assert db_session.get(Order, fresh_id) is not None
    assert db_session.get(Order, checked_out_id) is not None
    assert db_session.query(OrderItem).filter_by(order_id=checked_out_id).count() == 1
    # carts reserve nothing, so stock is untouched
    assert db_session.get(Product, product.id).quantity == 7

    assert remove_stale_open_orders(db_session, max_age=timedelta(hours=24), now=now) == 0


def test_cart_checked_out_mid_sweep_keeps_items(db_session, product_factory, order_factory):
    """A checkout that commits between the stale select and the deletes keeps its line items."""
    import restaurant_ops.database as database

    product = product_factory("Pad Thai", quantity=4)
    now = utc_now()
    cart = order_factory(OrderStatus.OPEN, created_at=now - timedelta(hours=25), items=[(product, 2)])
    cart_id = cart.id
    flipped = []

    def checkout_from_other_instance(orm_execute_state):
        if not orm_execute_state.is_delete or flipped:
            return
        other = database.SessionLocal()
        try:
            other.query(Order).filter(Order.id == cart_id).update(
                {Order.status: OrderStatus.CHECKED_OUT, Order.checked_out_at: now - timedelta(minutes=20)},
                synchronize_session=False,
            )
            other.commit()
        finally:
            other.close()
        flipped.append(cart_id)

    event.listen(db_session, "do_orm_execute", checkout_from_other_instance)
    try:
        removed = remove_stale_open_orders(db_session, max_age=timedelta(hours=24), now=now)
    finally:
        event.remove(db_session, "do_orm_execute", checkout_from_other_instance)

    assert flipped == [cart_id]
    assert removed == 0
    db_session.expire_all()
    assert db_session.get(Order, cart_id).status == OrderStatus.CHECKED_OUT
    assert db_session.query(OrderItem).filter_by(order_id=cart_id).count() == 1

    # the surviving items are what the unpaid-checkout release gives back
    summary = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15), now=now)
    assert summary.order_ids == [cart_id]
    assert summary.units_restored == 2
    db_session.expire_all()
    assert db_session.get(Product, product.id).quantity == 6


def test_release_skips_order_claimed_by_other_pass(db_session, unpaid_checkout, monkeypatch):
    """Both passes pick the same candidate; only the first claim restores stock."""
    import restaurant_ops.database as database

    order, product = unpaid_checkout(minutes_ago=30, quantity=3, remaining=1)
    original = order_sweeps._release_one
    other_pass = []

    def claimed_elsewhere_first(session, order_id, now):
        if not other_pass:
            other = database.SessionLocal()
            try:
                other_pass.append(original(other, order_id, now))
            finally:
                other.close()
        return original(session, order_id, now)

    monkeypatch.setattr(order_sweeps, "_release_one", claimed_elsewhere_first)

    summary = release_unpaid_checkouts(db_session, max_age=timedelta(minutes=15))

    assert other_pass == [3]
    assert summary.orders_expired == 0
    assert summary.units_restored == 0
    assert summary.order_ids == []
    db_session.expire_all()
    assert db_session.get(Product, product.id).quantity == 4
    assert db_session.get(Order, order.id).status == OrderStatus.EXPIRED


def test_unverified_phone_numbers_removed(db_session, phone_factory):
    now = utc_now()
    old_unverified = phone_factory("+46700000001", created_at=now - timedelta(hours=30))
    old_verified = phone_factory("+46700000002", verified=True, created_at=now - timedelta(hours=30))
    new_unverified = phone_factory("+46700000003", created_at=now - timedelta(hours=2))

    ids = (old_unverified.id, old_verified.id, new_unverified.id)

    removed = remove_unverified_phone_numbers(db_session, max_age=timedelta(hours=24), now=now)

    assert removed == 1
    db_session.expire_all()
    assert db_session.get(PhoneNumber, ids[0]) is None
    assert db_session.get(PhoneNumber, ids[1]) is not None
    assert db_session.get(PhoneNumber, ids[2]) is not None


def test_daily_sweep_combines_both_cleanups(db_session, order_factory, phone_factory):
    long_ago = utc_now() - timedelta(days=3)
    order_factory(OrderStatus.OPEN, created_at=long_ago)
    phone_factory("+46700000009", created_at=long_ago)

    result = run_daily_sweep()

    assert result == {"stale_open_orders_removed": 1, "unverified_phone_numbers_removed": 1}


def test_frequent_sweep_returns_release_summary(db_session, unpaid_checkout):
    order, _ = unpaid_checkout(minutes_ago=16)
    result = run_frequent_sweep()
    assert result["orders_expired"] == 1
    assert result["order_ids"] == [order.id]
    assert run_frequent_sweep()["orders_expired"] == 0


def test_frequent_tick_on_master_releases_checkout(db_session, fake_gate, unpaid_checkout):
    order, product = unpaid_checkout(minutes_ago=16, quantity=2, remaining=3)
    scheduler = ReconciliationScheduler(fake_gate, metrics=SweepMetrics())
    tasks = register_default_sweeps(scheduler, timezone="Europe/Stockholm")

    assert tasks["frequent"].fire() == TickOutcome.COMPLETED
    assert tasks["frequent"].last_result["orders_expired"] == 1
    db_session.expire_all()
    assert db_session.get(Product, product.id).quantity == 5
    assert db_session.get(Order, order.id).status == OrderStatus.EXPIRED


def test_frequent_tick_on_non_master_changes_nothing(db_session, fake_gate, unpaid_checkout):
    fake_gate.master = False
    order, product = unpaid_checkout(minutes_ago=16, quantity=2, remaining=3)
    scheduler = ReconciliationScheduler(fake_gate, metrics=SweepMetrics())
    tasks = register_default_sweeps(scheduler, timezone="Europe/Stockholm")

    assert tasks["frequent"].fire() == TickOutcome.SKIPPED_NOT_MASTER
    db_session.expire_all()
    assert db_session.get(Product, product.id).quantity == 3
    assert db_session.get(Order, order.id).status == OrderStatus.CHECKED_OUT


def test_default_registration_uses_configured_crons(fake_gate):
    scheduler = ReconciliationScheduler(fake_gate, metrics=SweepMetrics())
    tasks = register_default_sweeps(scheduler, timezone="Europe/Stockholm", schedules={"frequent": "0 */5 * * * *"})
    assert set(tasks) == {"daily", "frequent"}
    assert tasks["daily"].schedule.expression == "00 30 2 * * *"
    assert tasks["frequent"].schedule.expression == "0 */5 * * * *"
    assert all(t.schedule.timezone == "Europe/Stockholm" for t in tasks.values())
