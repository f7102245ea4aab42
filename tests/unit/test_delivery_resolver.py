from decimal import Decimal

import pytest

from storefront.delivery.models import DeliveryProvider, Destination, FulfillmentMethod, district_in_region
from storefront.delivery.resolver import resolve_delivery_cost


@pytest.fixture
def provider():
    return DeliveryProvider(
        id="prov-1",
        pricing={
            "general_price": "1000",
            "region_pricing": {"Southern": "2500"},
            "district_pricing": {"Blantyre": "2000"},
        },
    )


def test_district_price_wins(provider):
    # Arrange
    destination = Destination(district="Blantyre", region="Southern")
    # Act
    cost = resolve_delivery_cost(provider, destination)
    # Assert
    assert cost == Decimal("2000.00")


def test_region_then_general_fallback(provider):
    assert resolve_delivery_cost(provider, Destination(district="Zomba", region="Southern")) == Decimal("2500.00")
    assert resolve_delivery_cost(provider, Destination(district="Lilongwe", region="Central")) == Decimal("1000.00")


def test_no_general_price_gives_zero():
    bare = DeliveryProvider(id="p", pricing={"district_pricing": {"Blantyre": "2000"}})
    assert resolve_delivery_cost(bare, Destination(district="Mzimba", region="Northern")) == Decimal("0.00")


def test_pickup_never_reads_provider(provider):
    assert resolve_delivery_cost(provider, Destination(district="Blantyre"), FulfillmentMethod.PICKUP) == Decimal("0.00")
    assert resolve_delivery_cost(None, None, FulfillmentMethod.PICKUP) == Decimal("0.00")


def test_missing_provider_or_destination_gives_zero(provider):
    assert resolve_delivery_cost(None, Destination(district="Blantyre", region="Southern")) == Decimal("0.00")
    assert resolve_delivery_cost(provider, None) == Decimal("0.00")
    assert resolve_delivery_cost(provider, Destination()) == Decimal("0.00")


def test_partial_destination_still_looks_up_its_key(provider):
    assert resolve_delivery_cost(provider, Destination(region="Southern")) == Decimal("2500.00")
    assert resolve_delivery_cost(provider, Destination(district="Blantyre")) == Decimal("2000.00")


def test_exact_key_lookup_only(provider):
    # Pas de correspondance partielle ni de casse approximative
    assert resolve_delivery_cost(provider, Destination(district="blantyre", region="southern")) == Decimal("1000.00")


def test_district_in_region():
    assert district_in_region("Blantyre", "Southern")
    assert not district_in_region("Blantyre", "Northern")
    assert not district_in_region("Atlantis", "Central")
