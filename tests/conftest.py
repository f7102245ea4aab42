import os

os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("INVENTORY_RETRY_INTERVAL_SECONDS", "0")
os.environ.setdefault("PAYMENT_GATEWAY", "fake")

import copy
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from storefront import dependencies
from storefront.app import app as fastapi_app
from storefront.bookings.service import BookingOrchestrator
from storefront.catalog.models import ProductItem, Promotion, ServiceItem
from storefront.delivery.models import DeliveryProvider
from storefront.errors import InsufficientStockError, NotFoundError
from storefront.inventory.service import InventoryReservationService
from storefront.ledger.models import LedgerEntry, LedgerEntryStatus
from storefront.ledger.service import LedgerRecorder
from storefront.notifications.service import Notifier
from storefront.orders.service import CheckoutOrchestrator
from storefront.payments.fake_gateway import FakeGateway
from storefront.payments.models import PaymentSession
from storefront.payments.reconciler import PaymentReconciler
from storefront.settings.repository import PaymentSettings
from storefront.utils.security import require_admin

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
ADMIN = {"id": "admin-1", "email": "admin@example.com", "role": "admin"}


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)
        elif "tests/functional/" in nodeid:
            item.add_marker(pytest.mark.functional)


# --- Doublures en mémoire des dépôts et ports ---

class FakeOrdersRepo:
    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.reservation_states: List[Tuple[str, str, Optional[int]]] = []
        self.addresses: Dict[Tuple[str, str], Any] = {}
        self.fail_insert: Optional[Exception] = None

    def insert_order(self, order, retry_not_before=None):
        if self.fail_insert:
            raise self.fail_insert
        data = order.to_json()
        order_id = f"order-{len(self.rows) + 1}"
        self.rows[order_id] = {
            "id": order_id,
            "order_number": data["orderNumber"],
            "customer_id": data.get("customerId"),
            "customer_email": data["customerEmail"],
            "customer_name": data["customerName"],
            "status": data["status"],
            "items": data["items"],
            "pricing": data["pricing"],
            "delivery": data["delivery"],
            "reservation_status": "pending",
            "reservation_attempts": 0,
            "reservation_next_attempt_at": retry_not_before,
            "inventory_released": False,
            "inventory_updated": False,
        }
        return dict(self.rows[order_id])

    def add(self, row: Dict[str, Any]) -> Dict[str, Any]:
        base = {"reservation_status": "pending", "inventory_released": False, "inventory_updated": False}
        base.update(row)
        self.rows[row["id"]] = base
        return base

    def get_order(self, order_id):
        row = self.rows.get(str(order_id))
        return copy.deepcopy(row) if row else None

    def transition_status(self, order_id, expected, target, extra=None):
        row = self.rows.get(str(order_id))
        if not row or row["status"] != expected:
            return None
        row.update(extra or {})
        row["status"] = target
        return copy.deepcopy(row)

    def claim_flag(self, order_id, flag):
        row = self.rows[str(order_id)]
        if row.get(flag):
            return False
        row[flag] = True
        return True

    def reset_flag(self, order_id, flag):
        self.rows[str(order_id)][flag] = False

    def set_reservation_state(self, order_id, status, attempts=None, next_attempt_at=None, last_error=None,
                              expected=None):
        row = self.rows.get(str(order_id))
        if row is None:
            return False
        if expected is not None and row.get("reservation_status") not in [s.value for s in expected]:
            return False
        row["reservation_status"] = status.value
        row["reservation_next_attempt_at"] = next_attempt_at
        row["reservation_last_error"] = last_error
        if attempts is not None:
            row["reservation_attempts"] = attempts
        self.reservation_states.append((str(order_id), status.value, attempts))
        return True

    def fetch_reservation_backlog(self, now, max_attempts, limit=50):
        out = []
        for row in self.rows.values():
            due = row.get("reservation_next_attempt_at")
            if (
                row.get("reservation_status") in ("pending", "failed")
                and row.get("status") in ("pending", "paid", "processing")
                and int(row.get("reservation_attempts") or 0) < max_attempts
                and (due is None or due <= now)
            ):
                out.append(dict(row))
        return out[:limit]

    def get_customer_address(self, customer_id, address_id):
        return self.addresses.get((customer_id, address_id))


class FakeBookingsRepo:
    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.claims: Dict[Tuple[str, str, int], str] = {}
        self.fail_insert: Optional[Exception] = None

    def insert_booking(self, booking):
        if self.fail_insert:
            raise self.fail_insert
        data = booking.to_json()
        booking_id = f"booking-{len(self.rows) + 1}"
        self.rows[booking_id] = {
            "id": booking_id,
            "booking_number": data["bookingNumber"],
            "service_id": data["serviceId"],
            "customer_id": data.get("customerId"),
            "customer_email": data["customerEmail"],
            "status": data["status"],
            "time_slot": data["timeSlot"],
            "pricing": data["pricing"],
        }
        return dict(self.rows[booking_id])

    def add(self, row: Dict[str, Any]) -> Dict[str, Any]:
        self.rows[row["id"]] = dict(row)
        return self.rows[row["id"]]

    def get_booking(self, booking_id):
        row = self.rows.get(str(booking_id))
        return copy.deepcopy(row) if row else None

    def transition_status(self, booking_id, expected, target, extra=None):
        row = self.rows.get(str(booking_id))
        if not row or row["status"] != expected:
            return None
        row.update(extra or {})
        row["status"] = target
        return copy.deepcopy(row)

    def claim_seat(self, service_id, slot_start, seat, booking_number):
        key = (str(service_id), slot_start.isoformat(), seat)
        if key in self.claims:
            return False
        self.claims[key] = booking_number
        return True

    def release_slot_claims(self, booking_number):
        for key in [k for k, v in self.claims.items() if v == booking_number]:
            del self.claims[key]


class FakeSessionsRepo:
    def __init__(self):
        self.rows: Dict[str, PaymentSession] = {}
        self.updates: List[Tuple[str, Dict[str, Any]]] = []

    def insert_session(self, session: PaymentSession):
        stored = session.model_copy(update={"id": f"ps-{len(self.rows) + 1}"})
        self.rows[session.tx_ref] = stored
        return {"id": stored.id, "tx_ref": stored.tx_ref}

    def add(self, **fields) -> PaymentSession:
        session = PaymentSession(**fields)
        self.rows[session.tx_ref] = session
        return session

    def get_session_by_tx_ref(self, tx_ref):
        session = self.rows.get(tx_ref)
        return session.model_copy() if session else None

    def update_session(self, tx_ref, fields):
        self.updates.append((tx_ref, dict(fields)))
        session = self.rows[tx_ref]
        known = {k: v for k, v in fields.items() if k in PaymentSession.model_fields}
        self.rows[tx_ref] = PaymentSession(**{**session.model_dump(), **known})


class FakeLedger(LedgerRecorder):
    def __init__(self):
        self.entries: Dict[str, LedgerEntry] = {}
        self.fail_next: Optional[Exception] = None

    def record(self, entry):
        if self.fail_next:
            error, self.fail_next = self.fail_next, None
            raise error
        if entry.id in self.entries:
            return entry.id, False
        self.entries[entry.id] = entry
        return entry.id, True

    def get(self, entry_id):
        return self.entries.get(entry_id)

    def reverse(self, entry_id, reason, reversed_by):
        entry = self.entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"Écriture introuvable: {entry_id}")
        reversed_entry = entry.model_copy(update={
            "status": LedgerEntryStatus.REVERSED,
            "reversed_by": reversed_by,
            "reversal_reason": reason,
        })
        self.entries[entry_id] = reversed_entry
        return reversed_entry


class FakeInventory(InventoryReservationService):
    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.fail_reserve = False

    def reserve(self, order_id):
        self.calls.append(("reserve", order_id))
        if self.fail_reserve:
            raise InsufficientStockError("p1", 2, 0)

    def release(self, order_id):
        self.calls.append(("release", order_id))

    def adjust_for_paid_order(self, order_id):
        self.calls.append(("adjust", order_id))


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, Any], Optional[str]]] = []

    def send(self, kind, payload, recipient=None):
        self.sent.append((kind, payload, recipient))

    def kinds(self) -> List[str]:
        return [kind for kind, _, _ in self.sent]


class FakeCatalog:
    def __init__(self):
        self.items: Dict[str, Any] = {}
        self.promotions: List[Promotion] = []

    def fetch_items_by_ids(self, ids):
        return {str(i): self.items[str(i)] for i in ids if str(i) in self.items}

    def get_item(self, item_id):
        return self.items.get(str(item_id))

    def fetch_active_promotions(self, now=None):
        return list(self.promotions)


class FakeDelivery:
    def __init__(self):
        self.providers: Dict[str, DeliveryProvider] = {}

    def get_provider(self, provider_id):
        provider = self.providers.get(str(provider_id))
        return provider if provider and provider.is_active else None


class FakeSettings:
    def __init__(self, tax_rate="0", currency="MWK"):
        self.value = PaymentSettings(tax_rate=Decimal(tax_rate), currency=currency)

    def get_payment_settings(self):
        return self.value


# --- Fixtures ---

@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def orders_repo() -> FakeOrdersRepo:
    return FakeOrdersRepo()


@pytest.fixture
def bookings_repo() -> FakeBookingsRepo:
    return FakeBookingsRepo()


@pytest.fixture
def sessions_repo() -> FakeSessionsRepo:
    return FakeSessionsRepo()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def catalog() -> FakeCatalog:
    cat = FakeCatalog()
    cat.items["p1"] = ProductItem(
        id="p1", name="Chitenje", sku="CH-1", images=["chitenje.jpg"],
        pricing={"base_price": "1000", "currency": "MWK"},
        inventory={"quantity": 10, "reserved": 0, "available": 10},
    )
    cat.items["p2"] = ProductItem(id="p2", name="Panier tressé", pricing={"base_price": "2500", "currency": "MWK"})
    cat.items["s1"] = ServiceItem(
        id="s1", name="Coupe et coiffage", duration=90,
        pricing={"base_price": "5000", "currency": "MWK"},
        booking_fee="1000", total_fee="5000", allow_partial_payment=True, max_concurrent_bookings=1,
    )
    return cat


@pytest.fixture
def delivery() -> FakeDelivery:
    d = FakeDelivery()
    d.providers["prov-1"] = DeliveryProvider(
        id="prov-1",
        name="Speed Courier",
        pricing={
            "general_price": "1000",
            "region_pricing": {"Southern": "2500"},
            "district_pricing": {"Blantyre": "2000"},
        },
    )
    return d


@pytest.fixture
def settings() -> FakeSettings:
    return FakeSettings()


@pytest.fixture
def future_slot_date(now):
    return (now + timedelta(days=3)).date()


@pytest.fixture(scope="session")
def app():
    return fastapi_app


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# Aucun accès réel à Supabase pendant les tests
@pytest.fixture(scope="function", autouse=True)
def mock_supabase(monkeypatch):
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: MagicMock())


@pytest.fixture
def wired(app, client, fake_gateway, inventory, ledger, notifier, catalog, delivery, settings,
          orders_repo, bookings_repo, sessions_repo, now):
    """Branche l'application sur les doublures en mémoire (une seule passerelle partagée)."""
    overrides = app.dependency_overrides
    overrides[dependencies.get_gateway] = lambda: fake_gateway
    overrides[dependencies.get_inventory] = lambda: inventory
    overrides[dependencies.get_ledger] = lambda: ledger
    overrides[dependencies.get_notifier] = lambda: notifier
    overrides[dependencies.get_checkout_orchestrator] = lambda: CheckoutOrchestrator(
        gateway=fake_gateway, inventory=inventory, catalog=catalog, delivery=delivery,
        orders=orders_repo, settings=settings, sessions=sessions_repo, clock=lambda: now,
    )
    overrides[dependencies.get_booking_orchestrator] = lambda: BookingOrchestrator(
        gateway=fake_gateway, catalog=catalog, bookings=bookings_repo, settings=settings,
        sessions=sessions_repo, slot_policy="capacity", clock=lambda: now,
    )
    overrides[dependencies.get_reconciler] = lambda: PaymentReconciler(
        gateway=fake_gateway, inventory=inventory, ledger=ledger, notifier=notifier,
        sessions=sessions_repo, orders=orders_repo, bookings=bookings_repo, clock=lambda: now,
    )
    return client


@pytest.fixture
def as_admin(app):
    app.dependency_overrides[require_admin] = lambda: ADMIN
    return ADMIN
