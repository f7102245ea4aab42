"""
Accès aux données pour la feature 'orders' (table 'orders', 'customer_addresses').
- Écritures via le client service-role.
- Les changements de statut sont des mises à jour conditionnelles (.eq("status", attendu)):
  une ligne vide en retour signifie qu'un autre traitement est passé avant.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import UpstreamFailure
from storefront.inventory.models import ReservationStatus
from storefront.orders.models import Address, Order
from storefront.utils.clock import utcnow_iso

logger = logging.getLogger(__name__)

TABLE = "orders"


def _first(res) -> Optional[Dict[str, Any]]:
    rows = res.data or []
    return rows[0] if isinstance(rows, list) and rows else None


def insert_order(order: Order, retry_not_before: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Persiste une commande 'pending' et retourne la ligne créée (avec son id).
    - L'intention de réservation est enregistrée avec la commande (reservation_status='pending').
    - retry_not_before: le worker ne reprend pas l'intention avant cette date.
    Lève UpstreamFailure si l'écriture échoue: aucune commande partielle n'est laissée.
    """
    data = order.to_json()
    row = {
        "order_number": data["orderNumber"],
        "customer_id": data.get("customerId"),
        "customer_email": data["customerEmail"],
        "customer_name": data["customerName"],
        "customer_phone": data.get("customerPhone"),
        "status": data["status"],
        "items": data["items"],
        "pricing": data["pricing"],
        "delivery": data["delivery"],
        "notes": data.get("notes"),
        "reservation_status": ReservationStatus.PENDING.value,
        "reservation_attempts": 0,
        "reservation_next_attempt_at": retry_not_before.isoformat() if retry_not_before else None,
        "inventory_released": False,
        "inventory_updated": False,
        "created_at": utcnow_iso(),
        "updated_at": utcnow_iso(),
    }
    try:
        res = supabase_client.get_service_supabase().table(TABLE).insert(row).execute()
    except Exception as e:
        logger.exception("orders.repository.insert_order failed order_number=%s", row["order_number"])
        raise UpstreamFailure("Enregistrement de la commande impossible", service="orders") from e
    created = _first(res)
    if not created or not created.get("id"):
        raise UpstreamFailure("Enregistrement de la commande impossible", service="orders")
    return created


def get_order(order_id: str) -> Optional[Dict[str, Any]]:
    if not order_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select("*")
            .eq("id", str(order_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.get_order failed order_id=%s", order_id)
        raise UpstreamFailure("Lecture de la commande impossible", service="orders") from e
    return _first(res)


def transition_status(
    order_id: str,
    expected: str,
    target: str,
    extra: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Passe la commande de `expected` à `target` en une seule requête conditionnelle.
    Retourne la ligne mise à jour, ou None si le statut courant n'était plus `expected`.
    """
    fields = dict(extra or {})
    fields.update({"status": target, "updated_at": utcnow_iso()})
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update(fields)
            .eq("id", str(order_id))
            .eq("status", expected)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.transition_status failed order_id=%s %s->%s", order_id, expected, target)
        raise UpstreamFailure("Mise à jour du statut impossible", service="orders") from e
    return _first(res)


def claim_flag(order_id: str, flag: str) -> bool:
    """
    Passe un drapeau booléen (inventory_released, inventory_updated) de False à True.
    True seulement pour l'appel qui a effectivement basculé le drapeau.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update({flag: True, "updated_at": utcnow_iso()})
            .eq("id", str(order_id))
            .eq(flag, False)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.claim_flag failed order_id=%s flag=%s", order_id, flag)
        raise UpstreamFailure("Mise à jour de la commande impossible", service="orders") from e
    return _first(res) is not None


def reset_flag(order_id: str, flag: str) -> None:
    try:
        (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update({flag: False, "updated_at": utcnow_iso()})
            .eq("id", str(order_id))
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.reset_flag failed order_id=%s flag=%s", order_id, flag)


def set_reservation_state(
    order_id: str,
    status: ReservationStatus,
    attempts: Optional[int] = None,
    next_attempt_at: Optional[datetime] = None,
    last_error: Optional[str] = None,
    expected: Optional[Iterable[ReservationStatus]] = None,
) -> bool:
    """
    Écrit l'état de l'intention de réservation.
    Avec `expected`, l'écriture n'a lieu que si l'état courant en fait partie (même principe que claim_flag).
    True si la ligne a été modifiée.
    """
    fields: Dict[str, Any] = {
        "reservation_status": status.value,
        "reservation_next_attempt_at": next_attempt_at.isoformat() if next_attempt_at else None,
        "reservation_last_error": last_error,
        "updated_at": utcnow_iso(),
    }
    if attempts is not None:
        fields["reservation_attempts"] = attempts
    try:
        query = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update(fields)
            .eq("id", str(order_id))
        )
        if expected is not None:
            query = query.in_("reservation_status", [s.value for s in expected])
        res = query.execute()
    except Exception as e:
        logger.exception("orders.repository.set_reservation_state failed order_id=%s status=%s", order_id, status.value)
        raise UpstreamFailure("Mise à jour de la réservation impossible", service="orders") from e
    return _first(res) is not None


def fetch_reservation_backlog(now: datetime, max_attempts: int, limit: int = 50) -> List[Dict[str, Any]]:
    """
    Commandes dont la réservation reste à faire: intention 'pending' ou 'failed',
    commande encore active, essais restants et échéance de retry atteinte.
    """
    stamp = now.isoformat()
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select("id, status, reservation_status, reservation_attempts, reservation_next_attempt_at")
            .in_("reservation_status", [ReservationStatus.PENDING.value, ReservationStatus.FAILED.value])
            .in_("status", ["pending", "paid", "processing"])
            .lt("reservation_attempts", max_attempts)
            .or_(f"reservation_next_attempt_at.is.null,reservation_next_attempt_at.lte.{stamp}")
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.fetch_reservation_backlog failed")
        return []


def get_customer_address(customer_id: str, address_id: str) -> Optional[Address]:
    """
    Adresse enregistrée d'un client (table 'customer_addresses').
    Une boîte postale est rendue en 'P.O. Box N, Nom' dans area_or_village.
    """
    if not customer_id or not address_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("customer_addresses")
            .select("*")
            .eq("id", str(address_id))
            .eq("customer_id", str(customer_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("orders.repository.get_customer_address failed customer_id=%s", customer_id)
        raise UpstreamFailure("Adresses indisponibles", service="orders") from e
    row = _first(res)
    if not row:
        return None
    if row.get("address_type") == "post_office_box":
        area = f"P.O. Box {row.get('post_office_box') or ''}"
        if row.get("post_office_name"):
            area += f", {row['post_office_name']}"
    else:
        area = row.get("area_or_village") or ""
    return Address(
        id=str(row.get("id")),
        label=row.get("label"),
        phone=row.get("phone"),
        area_or_village=area,
        traditional_authority=row.get("traditional_authority"),
        district=row.get("district") or "",
        nearest_town_or_trading_centre=row.get("nearest_town_or_trading_centre"),
        region=row.get("region") or "",
        country=row.get("country") or "Malawi",
        directions=row.get("directions"),
        is_default=bool(row.get("is_default")),
    )
