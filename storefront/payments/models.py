"""
Modèles de la feature 'payments': session de paiement, retour passerelle, requête de création.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from storefront.models import CamelModel, Money


class PaymentSessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELED = "canceled"


class PaymentMethod(str, Enum):
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"


def map_payment_method(method: Optional[str]) -> PaymentMethod:
    """Canal passerelle -> PaymentMethod (par sous-chaîne, 'card' par défaut)."""
    value = (method or "").lower()
    if "card" in value:
        return PaymentMethod.CARD
    if "mobile" in value or "momo" in value:
        return PaymentMethod.MOBILE_MONEY
    if "bank" in value or "transfer" in value:
        return PaymentMethod.BANK_TRANSFER
    return PaymentMethod.CARD


class PaymentSession(BaseModel):
    """Une tentative de paiement; tx_ref est la clé d'idempotence de la réconciliation."""
    id: Optional[str] = None
    tx_ref: str
    transaction_id: str
    order_id: Optional[str] = None
    booking_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: PaymentSessionStatus = PaymentSessionStatus.PENDING
    checkout_url: Optional[str] = None
    gateway: Optional[str] = None
    gateway_reference: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    failure_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutSession:
    """Réponse de la passerelle à l'ouverture d'un paiement hébergé."""
    checkout_url: str
    gateway_reference: Optional[str] = None


@dataclass(frozen=True)
class GatewayCallback:
    """Résultat de transaction normalisé (webhook ou vérification)."""
    tx_ref: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    reference: Optional[str] = None
    channel: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    failure_reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    @property
    def is_failure(self) -> bool:
        return self.status in ("failed", "expired", "canceled", "cancelled")


class PaymentSessionRequest(CamelModel):
    """Corps de POST /api/v1/payments."""
    order_id: Optional[str] = None
    booking_id: Optional[str] = None
    amount: Money
    currency: str = "MWK"
    customer_email: str
    customer_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _one_target(self):
        if bool(self.order_id) == bool(self.booking_id):
            raise ValueError("orderId ou bookingId requis (exactement un)")
        return self
