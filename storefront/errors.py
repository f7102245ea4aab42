"""
Taxonomie d'erreurs et résultats typés de la boutique.

- ValidationError: saisie client invalide (contact, date/heure, créneau). Rien n'est persisté.
- PricingInconsistencyError: montant/devise reçus != session enregistrée. À remonter à un opérateur.
- UpstreamFailure: passerelle ou service de stock injoignable.
- Les orchestrateurs renvoient CheckoutResult/BookingResult, le réconciliateur ReconcileResult:
  l'appelant garde ainsi le type d'erreur ("réessayer" vs "contacter le support").
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(StorefrontError):
    code = "invalid"

    def __init__(self, message: str, code: str = "invalid", field: Optional[str] = None):
        super().__init__(message, code)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class SlotUnavailableError(ValidationError):
    def __init__(self, message: str = "Créneau complet", field: Optional[str] = "time_slot"):
        super().__init__(message, code="slot_unavailable", field=field)


class NotFoundError(StorefrontError):
    code = "not_found"


class InvalidTransitionError(StorefrontError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Transition interdite: {current} -> {target}")
        self.current = current
        self.target = target


class PricingInconsistencyError(StorefrontError):
    code = "pricing_inconsistency"

    def __init__(
        self,
        tx_ref: str,
        expected_amount: Decimal,
        expected_currency: str,
        received_amount: Optional[Decimal],
        received_currency: Optional[str],
    ):
        super().__init__(
            f"Montant incohérent pour {tx_ref}: attendu {expected_amount} {expected_currency}, "
            f"reçu {received_amount} {received_currency}"
        )
        self.tx_ref = tx_ref
        self.expected_amount = expected_amount
        self.expected_currency = expected_currency
        self.received_amount = received_amount
        self.received_currency = received_currency


class UpstreamFailure(StorefrontError):
    code = "upstream_failure"

    def __init__(self, message: str, service: str = "upstream", code: Optional[str] = None):
        super().__init__(message, code or f"upstream_{service}")
        self.service = service


class InsufficientStockError(UpstreamFailure):
    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(
            f"Stock insuffisant pour {product_id} (demandé={requested}, disponible={available})",
            service="inventory",
            code="insufficient_stock",
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


@dataclass(frozen=True)
class CheckoutResult:
    ok: bool
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    checkout_url: Optional[str] = None
    tx_ref: Optional[str] = None
    transaction_id: Optional[str] = None
    error: Optional[StorefrontError] = None


@dataclass(frozen=True)
class BookingResult:
    ok: bool
    booking_id: Optional[str] = None
    booking_number: Optional[str] = None
    checkout_url: Optional[str] = None
    tx_ref: Optional[str] = None
    transaction_id: Optional[str] = None
    error: Optional[StorefrontError] = None


class ReconcileOutcome(str, Enum):
    PAID = "paid"
    DUPLICATE = "duplicate"
    CANCELED = "canceled"
    LATE_FAILURE_IGNORED = "late_failure_ignored"
    PENDING = "pending"
    AMOUNT_MISMATCH = "amount_mismatch"
    UNKNOWN_TRANSACTION = "unknown_transaction"
    UNVERIFIED = "unverified"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    tx_ref: str
    order_id: Optional[str] = None
    booking_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[StorefrontError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "txRef": self.tx_ref,
            "orderId": self.order_id,
            "bookingId": self.booking_id,
            "status": self.status,
        }
