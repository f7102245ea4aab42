from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from storefront.models import Money


class LedgerEntryType(str, Enum):
    ORDER_SALE = "order_sale"
    BOOKING_PAYMENT = "booking_payment"
    REFUND = "refund"
    FEE = "fee"
    ADJUSTMENT = "adjustment"


class LedgerEntryStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERSED = "reversed"


class LedgerEntry(BaseModel):
    """Écriture immuable; seule la contre-passation ajoute reversed_at/reversed_by/reversal_reason."""
    id: str
    entry_type: LedgerEntryType
    status: LedgerEntryStatus = LedgerEntryStatus.CONFIRMED
    amount: Money
    currency: str
    description: str
    order_id: Optional[str] = None
    booking_id: Optional[str] = None
    payment_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversed_by: Optional[str] = None
    reversal_reason: Optional[str] = None


def payment_entry_id(transaction_id: str, booking: bool = False) -> str:
    """Identifiant déterministe de l'écriture d'un paiement: rejouer le même paiement retombe sur la même ligne."""
    return f"payment_{transaction_id}_booking" if booking else f"payment_{transaction_id}"
