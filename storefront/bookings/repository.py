"""
Accès aux données pour la feature 'bookings' (tables 'bookings' et 'booking_slot_claims').

Occupation des créneaux: une ligne par place prise, clé unique (service_id, slot_start, seat).
L'insertion est l'opération atomique: une violation d'unicité (23505) veut dire que la place est prise.
"""
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from postgrest.exceptions import APIError

import storefront.infra.supabase_client as supabase_client
from storefront.bookings.models import Booking
from storefront.errors import UpstreamFailure
from storefront.utils.clock import utcnow_iso

logger = logging.getLogger(__name__)

TABLE = "bookings"
CLAIMS_TABLE = "booking_slot_claims"


def _first(res) -> Optional[Dict[str, Any]]:
    rows = res.data or []
    return rows[0] if isinstance(rows, list) and rows else None


def insert_booking(booking: Booking) -> Dict[str, Any]:
    data = booking.to_json()
    row = {
        "booking_number": data["bookingNumber"],
        "service_id": data["serviceId"],
        "service_name": data["serviceName"],
        "service_image": data.get("serviceImage"),
        "customer_id": data.get("customerId"),
        "customer_email": data["customerEmail"],
        "customer_name": data.get("customerName"),
        "customer_phone": data.get("customerPhone"),
        "status": data["status"],
        "time_slot": data["timeSlot"],
        "pricing": data["pricing"],
        "notes": data.get("notes"),
        "created_at": utcnow_iso(),
        "updated_at": utcnow_iso(),
    }
    try:
        res = supabase_client.get_service_supabase().table(TABLE).insert(row).execute()
    except Exception as e:
        logger.exception("bookings.repository.insert_booking failed booking_number=%s", row["booking_number"])
        raise UpstreamFailure("Enregistrement de la réservation impossible", service="bookings") from e
    created = _first(res)
    if not created or not created.get("id"):
        raise UpstreamFailure("Enregistrement de la réservation impossible", service="bookings")
    return created


def get_booking(booking_id: str) -> Optional[Dict[str, Any]]:
    if not booking_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select("*")
            .eq("id", str(booking_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("bookings.repository.get_booking failed booking_id=%s", booking_id)
        raise UpstreamFailure("Lecture de la réservation impossible", service="bookings") from e
    return _first(res)


def transition_status(
    booking_id: str,
    expected: str,
    target: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """Mise à jour conditionnelle du statut; None si le statut courant n'était plus `expected`."""
    fields = dict(extra or {})
    fields.update({"status": target, "updated_at": utcnow_iso()})
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update(fields)
            .eq("id", str(booking_id))
            .eq("status", expected)
            .execute()
        )
    except Exception as e:
        logger.exception("bookings.repository.transition_status failed booking_id=%s %s->%s", booking_id, expected, target)
        raise UpstreamFailure("Mise à jour du statut impossible", service="bookings") from e
    return _first(res)


# --- Occupation des créneaux ---

def claim_seat(service_id: str, slot_start: datetime, seat: int, booking_number: str) -> bool:
    """Prend la place `seat` du créneau. False si elle est déjà prise."""
    row = {
        "service_id": str(service_id),
        "slot_start": slot_start.isoformat(),
        "seat": seat,
        "booking_number": booking_number,
        "created_at": utcnow_iso(),
    }
    try:
        supabase_client.get_service_supabase().table(CLAIMS_TABLE).insert(row).execute()
        return True
    except APIError as e:
        if getattr(e, "code", None) == "23505":
            return False
        logger.exception("bookings.repository.claim_seat failed service_id=%s slot=%s", service_id, row["slot_start"])
        raise UpstreamFailure("Réservation du créneau impossible", service="bookings") from e
    except Exception as e:
        logger.exception("bookings.repository.claim_seat failed service_id=%s slot=%s", service_id, row["slot_start"])
        raise UpstreamFailure("Réservation du créneau impossible", service="bookings") from e


def release_slot_claims(booking_number: str) -> None:
    """Libère les places tenues par une réservation (sans effet si elle n'en tenait pas)."""
    if not booking_number:
        return
    try:
        (
            supabase_client.get_service_supabase()
            .table(CLAIMS_TABLE)
            .delete()
            .eq("booking_number", booking_number)
            .execute()
        )
    except Exception as e:
        logger.exception("bookings.repository.release_slot_claims failed booking_number=%s", booking_number)
        raise UpstreamFailure("Libération du créneau impossible", service="bookings") from e
