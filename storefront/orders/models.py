"""
Modèles de la feature 'orders': commande persistée et requête de checkout.
Les lignes de commande sont des instantanés: le prix n'est jamais relu dans le catalogue après création.
"""
from typing import List, Optional

from pydantic import Field

from storefront.delivery.models import FulfillmentMethod
from storefront.inventory.models import ReservationStatus
from storefront.lifecycle import OrderStatus
from storefront.models import CamelModel, Money, PaymentInfo


class Address(CamelModel):
    id: Optional[str] = None
    label: Optional[str] = None
    phone: Optional[str] = None
    area_or_village: str = ""
    traditional_authority: Optional[str] = None
    district: str = ""
    nearest_town_or_trading_centre: Optional[str] = None
    region: str = ""
    country: str = "Malawi"
    directions: Optional[str] = None
    is_default: bool = False


class OrderItem(CamelModel):
    product_id: str
    product_name: str
    product_image: Optional[str] = None
    quantity: int
    unit_price: Money
    subtotal: Money
    sku: Optional[str] = None
    promotion_id: Optional[str] = None


class OrderPricing(CamelModel):
    subtotal: Money
    tax: Money
    shipping: Money
    discount: Money
    total: Money
    currency: str
    tax_rate: Money


class OrderDelivery(CamelModel):
    method: FulfillmentMethod
    provider_id: Optional[str] = None
    address: Optional[Address] = None


class Order(CamelModel):
    id: Optional[str] = None
    order_number: str
    customer_id: Optional[str] = None
    customer_email: str
    customer_name: str
    customer_phone: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    items: List[OrderItem]
    pricing: OrderPricing
    delivery: OrderDelivery
    payment: Optional[PaymentInfo] = None
    notes: Optional[str] = None
    reservation_status: ReservationStatus = ReservationStatus.PENDING


# --- Entrées du checkout ---

class CartLine(CamelModel):
    item_id: str
    quantity: int = Field(gt=0)


class CustomerContact(CamelModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class DeliverySelection(CamelModel):
    method: FulfillmentMethod = FulfillmentMethod.DELIVERY
    provider_id: Optional[str] = None
    address: Optional[Address] = None
    address_id: Optional[str] = None


class CheckoutRequest(CamelModel):
    customer: CustomerContact
    lines: List[CartLine]
    delivery: DeliverySelection = Field(default_factory=DeliverySelection)
    notes: Optional[str] = None
