from datetime import timedelta

import pytest

from storefront.errors import InsufficientStockError, UpstreamFailure
from storefront.inventory.service import SupabaseInventoryService
from storefront.inventory.worker import ReservationRetryWorker, backoff_delay, schedule_retry


class FakeStock:
    """
    Lignes produit en mémoire; `conflicts` simule des écritures concurrentes.
    `on_read` est appelé une seule fois, à la prochaine lecture, pour intercaler un autre traitement.
    """

    def __init__(self):
        self.rows = {}
        self.conflicts = 0
        self.writes = []
        self.on_read = None

    def put(self, product_id, quantity, reserved=0, kind="product", track=True):
        self.rows[product_id] = {
            "id": product_id, "type": kind, "status": "active", "track_inventory": track,
            "quantity": quantity, "reserved": reserved, "available": quantity - reserved,
        }

    def get_stock(self, product_id):
        if self.on_read:
            hook, self.on_read = self.on_read, None
            hook()
        row = self.rows.get(product_id)
        return dict(row) if row else None

    def compare_and_set(self, product_id, expected_quantity, expected_reserved, fields):
        if self.conflicts:
            self.conflicts -= 1
            return False
        row = self.rows[product_id]
        if row["quantity"] != expected_quantity or row["reserved"] != expected_reserved:
            return False
        row.update(fields)
        self.writes.append((product_id, dict(fields)))
        return True


@pytest.fixture
def stock():
    s = FakeStock()
    s.put("p1", 10)
    s.put("p2", 1)
    return s


@pytest.fixture
def service(orders_repo, stock):
    return SupabaseInventoryService(orders=orders_repo, stock=stock)


def _order(orders_repo, items, **extra):
    row = {
        "id": "o1",
        "status": "pending",
        "items": [{"productId": pid, "quantity": qty} for pid, qty in items],
    }
    row.update(extra)
    return orders_repo.add(row)


def test_reserve_updates_reserved_and_available(service, orders_repo, stock):
    # Arrange
    _order(orders_repo, [("p1", 3)])
    # Act
    service.reserve("o1")
    # Assert
    assert stock.rows["p1"]["reserved"] == 3
    assert stock.rows["p1"]["available"] == 7
    assert orders_repo.rows["o1"]["reservation_status"] == "reserved"


def test_reserve_is_all_or_nothing(service, orders_repo, stock):
    # Arrange: p2 n'a qu'une unité
    _order(orders_repo, [("p1", 3), ("p2", 2)])
    # Act
    with pytest.raises(InsufficientStockError):
        service.reserve("o1")
    # Assert: la réservation de p1 a été rendue
    assert stock.rows["p1"]["reserved"] == 0
    assert stock.rows["p1"]["available"] == 10
    assert orders_repo.rows["o1"]["reservation_status"] == "pending"


def test_reserve_retries_on_conflict(service, orders_repo, stock):
    _order(orders_repo, [("p1", 1)])
    stock.conflicts = 2
    service.reserve("o1")
    assert stock.rows["p1"]["reserved"] == 1


def test_persistent_contention_raises_upstream(orders_repo, stock):
    service = SupabaseInventoryService(orders=orders_repo, stock=stock, max_cas_retries=3)
    _order(orders_repo, [("p1", 1)])
    stock.conflicts = 10
    with pytest.raises(UpstreamFailure) as exc:
        service.reserve("o1")
    assert exc.value.code == "inventory_contention"


def test_untracked_items_are_skipped(service, orders_repo, stock):
    stock.put("svc", 0, kind="service")
    stock.put("p9", 0, track=False)
    _order(orders_repo, [("svc", 1), ("p9", 5)])
    service.reserve("o1")
    assert stock.writes == []


def test_release_is_idempotent(service, orders_repo, stock):
    # Arrange
    _order(orders_repo, [("p1", 4)])
    service.reserve("o1")
    # Act
    service.release("o1")
    service.release("o1")
    # Assert
    assert stock.rows["p1"]["reserved"] == 0
    assert stock.rows["p1"]["available"] == 10
    assert orders_repo.rows["o1"]["reservation_status"] == "released"


def test_adjust_for_paid_order_commits_once(service, orders_repo, stock):
    # Arrange
    _order(orders_repo, [("p2", 1)])
    service.reserve("o1")
    # Act
    service.adjust_for_paid_order("o1")
    service.adjust_for_paid_order("o1")
    # Assert
    assert stock.rows["p2"]["quantity"] == 0
    assert stock.rows["p2"]["reserved"] == 0
    assert stock.rows["p2"]["status"] == "out_of_stock"
    assert orders_repo.rows["o1"]["reservation_status"] == "committed"


def test_adjust_reserves_first_when_reservation_missing(service, orders_repo, stock):
    _order(orders_repo, [("p1", 2)], reservation_status="failed")
    service.adjust_for_paid_order("o1")
    assert stock.rows["p1"]["quantity"] == 8
    assert stock.rows["p1"]["reserved"] == 0
    assert stock.rows["p1"]["available"] == 8


def test_release_after_commit_does_nothing(service, orders_repo, stock):
    _order(orders_repo, [("p1", 2)])
    service.reserve("o1")
    service.adjust_for_paid_order("o1")
    service.release("o1")
    assert stock.rows["p1"]["quantity"] == 8
    assert stock.rows["p1"]["reserved"] == 0


def test_reserve_skips_intent_held_elsewhere(service, orders_repo, stock):
    _order(orders_repo, [("p1", 3)], status="paid", reservation_status="reserving")
    service.reserve("o1")
    service.adjust_for_paid_order("o1")
    assert stock.writes == []
    assert orders_repo.rows["o1"]["reservation_status"] == "reserving"


def test_reserve_on_paid_order_commits_stock(service, orders_repo, stock):
    _order(orders_repo, [("p1", 3)], status="paid")
    service.reserve("o1")
    assert stock.rows["p1"]["quantity"] == 7
    assert stock.rows["p1"]["reserved"] == 0
    assert orders_repo.rows["o1"]["reservation_status"] == "committed"
    assert orders_repo.rows["o1"]["inventory_updated"] is True


def test_release_during_reservation_returns_units(service, orders_repo, stock):
    # Arrange: l'annulation arrive pendant que la réservation lit le stock
    _order(orders_repo, [("p1", 3)])
    stock.on_read = lambda: service.release("o1")
    # Act
    service.reserve("o1")
    # Assert
    assert stock.rows["p1"]["reserved"] == 0
    assert stock.rows["p1"]["available"] == 10
    assert orders_repo.rows["o1"]["reservation_status"] == "released"


def test_failed_reservation_restores_previous_state(service, orders_repo, stock):
    _order(orders_repo, [("p2", 5)], reservation_status="failed", reservation_attempts=1)
    with pytest.raises(InsufficientStockError):
        service.reserve("o1")
    assert orders_repo.rows["o1"]["reservation_status"] == "failed"
    assert stock.rows["p2"]["reserved"] == 0


# --- Worker de reprise ---

def test_backoff_doubles_each_attempt():
    assert backoff_delay(0, 30) == timedelta(seconds=30)
    assert backoff_delay(3, 30) == timedelta(seconds=240)


def test_schedule_retry_records_failure(orders_repo, now):
    _order(orders_repo, [("p1", 1)])
    next_at = schedule_retry("o1", 2, RuntimeError("boom"), orders=orders_repo, base_seconds=10, now=now)
    assert next_at == now + timedelta(seconds=40)
    row = orders_repo.rows["o1"]
    assert row["reservation_status"] == "failed"
    assert row["reservation_attempts"] == 2
    assert row["reservation_last_error"] == "boom"


def test_worker_reserves_due_orders(service, orders_repo, stock, now):
    # Arrange
    _order(orders_repo, [("p1", 2)], reservation_next_attempt_at=now - timedelta(seconds=1))
    worker = ReservationRetryWorker(service, orders=orders_repo, max_attempts=3, base_delay_seconds=10, clock=lambda: now)
    # Act
    reserved = worker.run_once()
    # Assert
    assert reserved == 1
    assert stock.rows["p1"]["reserved"] == 2
    assert worker.run_once() == 0


def test_worker_backs_off_and_gives_up(service, orders_repo, now):
    # Arrange: p2 ne couvre jamais la demande
    _order(orders_repo, [("p2", 5)])
    clock = {"now": now}
    worker = ReservationRetryWorker(service, orders=orders_repo, max_attempts=2, base_delay_seconds=10, clock=lambda: clock["now"])
    # Act
    worker.run_once()
    not_due = worker.run_once()
    clock["now"] = now + timedelta(minutes=5)
    worker.run_once()
    clock["now"] = now + timedelta(hours=1)
    exhausted = worker.run_once()
    # Assert
    assert not_due == 0
    assert exhausted == 0
    assert orders_repo.rows["o1"]["reservation_attempts"] == 2
    assert orders_repo.fetch_reservation_backlog(clock["now"], 2) == []


def test_worker_skips_orders_not_yet_due(service, orders_repo, now):
    _order(orders_repo, [("p1", 1)], reservation_next_attempt_at=now + timedelta(seconds=30))
    worker = ReservationRetryWorker(service, orders=orders_repo, clock=lambda: now)
    assert worker.run_once() == 0


def test_worker_and_paid_order_adjust_commit_stock_once(service, orders_repo, stock, now):
    # Arrange: commande payée dont la réservation du checkout a échoué
    _order(orders_repo, [("p1", 3)], status="paid", reservation_status="failed",
           reservation_attempts=1, reservation_next_attempt_at=now - timedelta(seconds=1))
    worker = ReservationRetryWorker(service, orders=orders_repo, max_attempts=3, base_delay_seconds=10, clock=lambda: now)
    stock.on_read = lambda: service.adjust_for_paid_order("o1")
    # Act
    worker.run_once()
    # Assert
    row = stock.rows["p1"]
    assert (row["quantity"], row["reserved"], row["available"]) == (7, 0, 7)
    assert orders_repo.rows["o1"]["reservation_status"] == "committed"
    assert orders_repo.fetch_reservation_backlog(now, 3) == []


def test_retry_is_not_scheduled_once_intent_has_moved(orders_repo, now):
    _order(orders_repo, [("p1", 1)], reservation_status="released")
    schedule_retry("o1", 1, RuntimeError("boom"), orders=orders_repo, base_seconds=10, now=now)
    assert orders_repo.rows["o1"]["reservation_status"] == "released"
