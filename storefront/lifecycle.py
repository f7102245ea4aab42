"""
Machine à états des commandes et réservations.

Commande:    pending -> paid -> processing -> shipped -> completed
Réservation: pending -> paid -> confirmed -> completed
Sorties: canceled, refunded (et no_show pour les réservations).
États terminaux: completed, canceled, refunded, no_show.
"""
from enum import Enum
from typing import Dict, FrozenSet

from storefront.errors import InvalidTransitionError


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


class BookingStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"
    REFUNDED = "refunded"


_ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"paid", "canceled"}),
    "paid": frozenset({"processing", "canceled", "refunded"}),
    "processing": frozenset({"shipped", "canceled", "refunded"}),
    "shipped": frozenset({"completed", "refunded"}),
    "completed": frozenset(),
    "canceled": frozenset(),
    "refunded": frozenset(),
}

_BOOKING_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"paid", "canceled"}),
    "paid": frozenset({"confirmed", "canceled", "refunded"}),
    "confirmed": frozenset({"completed", "no_show", "canceled", "refunded"}),
    "completed": frozenset(),
    "canceled": frozenset(),
    "no_show": frozenset(),
    "refunded": frozenset(),
}

TERMINAL_STATUSES = frozenset({"completed", "canceled", "refunded", "no_show"})

# Tout ce qui suit un paiement réussi
PAID_OR_LATER = frozenset({"paid", "processing", "confirmed", "shipped", "completed", "refunded", "no_show"})


def _table(kind: str) -> Dict[str, FrozenSet[str]]:
    if kind == "order":
        return _ORDER_TRANSITIONS
    if kind == "booking":
        return _BOOKING_TRANSITIONS
    raise ValueError(f"Type inconnu: {kind}")


def can_transition(kind: str, current: str, target: str) -> bool:
    return target in _table(kind).get(str(current), frozenset())


def assert_can_transition(kind: str, current: str, target: str) -> None:
    """Lève InvalidTransitionError si current -> target n'est pas autorisé pour ce type."""
    if not can_transition(kind, current, target):
        raise InvalidTransitionError(str(current), str(target))


def is_terminal(status: str) -> bool:
    return str(status) in TERMINAL_STATUSES


def is_paid_or_later(status: str) -> bool:
    return str(status) in PAID_OR_LATER
