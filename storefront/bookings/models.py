"""
Modèles de la feature 'bookings': réservation persistée et requête de réservation.
"""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import Field

from storefront.lifecycle import BookingStatus
from storefront.models import CamelModel, Money, PaymentInfo
from storefront.orders.models import CustomerContact


class PaymentChoice(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class TimeSlot(CamelModel):
    start_time: datetime
    end_time: datetime
    duration: int


class BookingPricing(CamelModel):
    base_price: Money
    booking_fee: Optional[Money] = None
    total_fee: Optional[Money] = None
    tax: Money
    discount: Money = Decimal("0")
    total: Money
    currency: str
    is_partial_payment: bool = False
    remaining_balance: Money = Decimal("0")
    tax_rate: Money = Decimal("0")


class Booking(CamelModel):
    id: Optional[str] = None
    booking_number: str
    service_id: str
    service_name: str
    service_image: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    status: BookingStatus = BookingStatus.PENDING
    time_slot: TimeSlot
    pricing: BookingPricing
    payment: Optional[PaymentInfo] = None
    notes: Optional[str] = None


class BookingRequest(CamelModel):
    service_id: str
    slot_date: date
    time_slot: str = Field(description="Créneau affiché, ex. '9:00 AM - 12:00 PM'")
    payment_choice: PaymentChoice = PaymentChoice.FULL
    customer: CustomerContact
    notes: Optional[str] = None
