from enum import Enum


class ReservationStatus(str, Enum):
    """Intention de réservation de stock portée par la commande (outbox)."""
    PENDING = "pending"
    RESERVING = "reserving"
    RESERVED = "reserved"
    FAILED = "failed"
    RELEASED = "released"
    COMMITTED = "committed"
