from decimal import Decimal

import pytest

from storefront.catalog.models import ProductItem, Promotion
from storefront.errors import InvalidTransitionError, UpstreamFailure
from storefront.ledger.models import LedgerEntry, LedgerEntryStatus, LedgerEntryType, payment_entry_id
from storefront.orders.models import Address, CheckoutRequest
from storefront.orders.service import CheckoutOrchestrator, order_totals, update_order_status


def _request(**overrides):
    data = {
        "customer": {"first_name": "Chikondi", "last_name": "Banda", "email": "chikondi@example.com", "phone": "0999123456"},
        "lines": [{"item_id": "p1", "quantity": 2}, {"item_id": "p2", "quantity": 1}],
        "delivery": {
            "method": "delivery",
            "provider_id": "prov-1",
            "address": {"area_or_village": "Chichiri", "district": "Blantyre", "region": "Southern"},
        },
    }
    data.update(overrides)
    return CheckoutRequest(**data)


@pytest.fixture
def orchestrator(fake_gateway, inventory, catalog, delivery, orders_repo, settings, sessions_repo, now):
    return CheckoutOrchestrator(
        gateway=fake_gateway,
        inventory=inventory,
        catalog=catalog,
        delivery=delivery,
        orders=orders_repo,
        settings=settings,
        sessions=sessions_repo,
        clock=lambda: now,
    )


def test_checkout_persists_pending_order_with_consistent_totals(orchestrator, orders_repo, sessions_repo, inventory):
    # Act
    result = orchestrator.checkout(_request(), customer_id="cust-1")
    # Assert
    assert result.ok, result.error
    order = orders_repo.get_order(result.order_id)
    pricing = order["pricing"]
    assert order["status"] == "pending"
    assert pricing["subtotal"] == 4500.0
    assert pricing["shipping"] == 2000.0
    assert pricing["total"] == pricing["subtotal"] + pricing["shipping"] + pricing["tax"] - pricing["discount"]
    assert [i["quantity"] for i in order["items"]] == [2, 1]
    assert inventory.calls == [("reserve", result.order_id)]
    session = sessions_repo.get_session_by_tx_ref(result.tx_ref)
    assert session.order_id == result.order_id
    assert session.amount == Decimal("6500.00")
    assert session.transaction_id == result.tx_ref == result.transaction_id


def test_checkout_snapshots_promotional_price(orchestrator, catalog, orders_repo, now):
    # Arrange
    catalog.promotions.append(Promotion(
        id="promo-1", discount=Decimal("10"), discount_type="percentage", product_ids=["p1"],
        start_date=now.replace(day=1), end_date=now.replace(day=28),
    ))
    # Act
    result = orchestrator.checkout(_request(lines=[{"item_id": "p1", "quantity": 1}]))
    # Assert
    item = orders_repo.get_order(result.order_id)["items"][0]
    assert item["unitPrice"] == 900.0
    assert item["promotionId"] == "promo-1"


def test_checkout_applies_tax_rate(orchestrator, settings, orders_repo):
    settings.value = settings.value.model_copy(update={"tax_rate": Decimal("16")})
    result = orchestrator.checkout(_request(lines=[{"item_id": "p1", "quantity": 1}]))
    pricing = orders_repo.get_order(result.order_id)["pricing"]
    assert pricing["tax"] == 160.0
    assert pricing["total"] == 3160.0


def test_pickup_has_no_shipping(orchestrator, orders_repo):
    result = orchestrator.checkout(_request(delivery={"method": "pickup"}))
    assert result.ok
    assert orders_repo.get_order(result.order_id)["pricing"]["shipping"] == 0.0


def test_duplicate_lines_are_merged(orchestrator, orders_repo):
    result = orchestrator.checkout(_request(lines=[{"item_id": "p1", "quantity": 1}, {"item_id": "p1", "quantity": 2}]))
    items = orders_repo.get_order(result.order_id)["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 3


@pytest.mark.parametrize("selection,field", [
    ({"method": "delivery", "address": {"area_or_village": "X", "district": "Blantyre", "region": "Southern"}}, "providerId"),
    ({"method": "delivery", "provider_id": "prov-1"}, "address"),
    ({"method": "delivery", "provider_id": "prov-1", "address": {"area_or_village": "X", "district": "Blantyre"}}, "region"),
    ({"method": "delivery", "provider_id": "prov-1", "address": {"area_or_village": "X", "district": "Blantyre", "region": "Northern"}}, "district"),
    ({"method": "delivery", "provider_id": "unknown", "address": {"area_or_village": "X", "district": "Blantyre", "region": "Southern"}}, "providerId"),
])
def test_delivery_validation_blocks_checkout(orchestrator, orders_repo, fake_gateway, selection, field):
    result = orchestrator.checkout(_request(delivery=selection))
    assert not result.ok
    assert result.error.to_dict()["field"] == field
    assert orders_repo.rows == {}
    assert fake_gateway.calls == []


def test_saved_address_is_used_for_delivery(orchestrator, orders_repo):
    # Arrange
    orders_repo.addresses[("cust-1", "addr-1")] = Address(
        id="addr-1", area_or_village="P.O. Box 123, Limbe", district="Blantyre", region="Southern",
    )
    selection = {"method": "delivery", "provider_id": "prov-1", "address_id": "addr-1"}
    # Act
    result = orchestrator.checkout(_request(delivery=selection), customer_id="cust-1")
    # Assert
    assert result.ok, result.error
    order = orders_repo.get_order(result.order_id)
    assert order["delivery"]["address"]["areaOrVillage"] == "P.O. Box 123, Limbe"
    assert order["pricing"]["shipping"] == 2000.0


def test_saved_address_needs_signed_in_customer(orchestrator, orders_repo):
    selection = {"method": "delivery", "provider_id": "prov-1", "address_id": "addr-1"}
    result = orchestrator.checkout(_request(delivery=selection))
    assert result.error.to_dict()["field"] == "addressId"
    assert orders_repo.rows == {}


def test_empty_cart_and_unknown_item(orchestrator, orders_repo):
    assert orchestrator.checkout(_request(lines=[])).error.code == "empty_cart"
    assert orchestrator.checkout(_request(lines=[{"item_id": "s1", "quantity": 1}])).error.code == "unknown_item"
    assert orders_repo.rows == {}


def test_mixed_currencies_rejected(orchestrator, catalog):
    catalog.items["p3"] = ProductItem(id="p3", name="Import", pricing={"base_price": "10", "currency": "USD"})
    result = orchestrator.checkout(_request(lines=[{"item_id": "p1", "quantity": 1}, {"item_id": "p3", "quantity": 1}]))
    assert result.error.code == "mixed_currency"


def test_reservation_failure_does_not_block_payment(orchestrator, inventory, orders_repo):
    # Arrange
    inventory.fail_reserve = True
    # Act
    result = orchestrator.checkout(_request())
    # Assert
    assert result.ok
    order = orders_repo.get_order(result.order_id)
    assert order["reservation_status"] == "failed"
    assert order["reservation_attempts"] == 1
    assert order["reservation_next_attempt_at"] is not None


def test_gateway_failure_leaves_order_pending_without_session(orchestrator, fake_gateway, orders_repo, sessions_repo):
    fake_gateway.configure(should_succeed=False)
    result = orchestrator.checkout(_request())
    assert not result.ok
    assert isinstance(result.error, UpstreamFailure)
    assert orders_repo.get_order(result.order_id)["status"] == "pending"
    assert sessions_repo.rows == {}


def test_order_totals_rounding():
    pricing = order_totals([], Decimal("0"), Decimal("16"), "MWK")
    assert pricing.total == Decimal("0.00")


# --- Statuts admin ---

def test_cancel_order_releases_inventory(orders_repo, inventory, notifier, ledger):
    orders_repo.add({"id": "o1", "order_number": "ORD-1", "status": "paid"})
    updated = update_order_status("o1", "canceled", "admin-1", inventory, notifier, ledger, reason="rupture", orders=orders_repo)
    assert updated["status"] == "canceled"
    assert ("release", "o1") in inventory.calls
    assert notifier.kinds() == ["order_status"]


def test_refund_order_reverses_sale(orders_repo, inventory, notifier, ledger):
    entry_id = payment_entry_id("tx-9")
    ledger.record(LedgerEntry(id=entry_id, entry_type=LedgerEntryType.ORDER_SALE, amount=Decimal("6500"),
                              currency="MWK", description="Vente commande ORD-1"))
    orders_repo.add({"id": "o1", "order_number": "ORD-1", "status": "shipped", "payment": {"paymentId": "tx-9"}})

    update_order_status("o1", "refunded", "admin-1", inventory, notifier, ledger, orders=orders_repo)

    assert ledger.get(entry_id).status == LedgerEntryStatus.REVERSED


def test_shipping_a_pending_order_is_forbidden(orders_repo, inventory, notifier, ledger):
    orders_repo.add({"id": "o1", "order_number": "ORD-1", "status": "pending"})
    with pytest.raises(InvalidTransitionError):
        update_order_status("o1", "shipped", "admin-1", inventory, notifier, ledger, orders=orders_repo)
