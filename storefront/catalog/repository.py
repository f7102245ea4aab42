"""
Accès aux données du catalogue (tables 'items' et 'promotions').
- Les lignes plates Supabase sont converties en modèles typés (ProductItem/ServiceItem, Promotion).
- Une panne Supabase est remontée en UpstreamFailure: l'appelant ne doit pas la confondre avec "introuvable".
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

import pydantic

import storefront.infra.supabase_client as supabase_client
from storefront.catalog.models import Promotion, PromotionStatus, parse_item
from storefront.errors import UpstreamFailure

logger = logging.getLogger(__name__)

ITEM_COLUMNS = (
    "id, type, name, slug, status, sku, images, base_price, currency, include_transaction_fee, "
    "transaction_fee_rate, quantity, reserved, available, track_inventory, duration, booking_fee, "
    "total_fee, allow_partial_payment, max_concurrent_bookings"
)


def item_from_row(row: Dict[str, Any]):
    """
    Convertit une ligne 'items' en variante typée.
    - Les colonnes de stock ne sont lues que pour les produits, les colonnes de service que pour les services.
    """
    kind = row.get("type")
    data: Dict[str, Any] = {
        "id": str(row.get("id")),
        "type": kind,
        "name": row.get("name") or "",
        "slug": row.get("slug"),
        "status": row.get("status") or "active",
        "images": row.get("images") or [],
        "pricing": {
            "base_price": row.get("base_price") or 0,
            "currency": row.get("currency") or "MWK",
            "include_transaction_fee": bool(row.get("include_transaction_fee")),
            "transaction_fee_rate": row.get("transaction_fee_rate"),
        },
    }
    if kind == "product":
        data["sku"] = row.get("sku")
        if row.get("quantity") is not None or row.get("track_inventory") is not None:
            data["inventory"] = {
                "quantity": int(row.get("quantity") or 0),
                "reserved": int(row.get("reserved") or 0),
                "available": int(row.get("available") or 0),
                "track_inventory": row.get("track_inventory") is not False,
            }
    elif kind == "service":
        data["duration"] = int(row.get("duration") or 60)
        data["booking_fee"] = row.get("booking_fee")
        data["total_fee"] = row.get("total_fee")
        data["allow_partial_payment"] = bool(row.get("allow_partial_payment"))
        data["max_concurrent_bookings"] = row.get("max_concurrent_bookings") or None
    return parse_item(data)


def promotion_from_row(row: Dict[str, Any]) -> Promotion:
    return Promotion(
        id=str(row.get("id")),
        name=row.get("name") or "",
        discount=row.get("discount") or 0,
        discount_type=row.get("discount_type") or "percentage",
        product_ids=row.get("products_ids"),
        service_ids=row.get("services_ids"),
        start_date=row.get("start_date"),
        end_date=row.get("end_date"),
        status=row.get("status") or "inactive",
    )


def fetch_items_by_ids(ids: Iterable[str]) -> Dict[str, Any]:
    """
    Retourne {id: Item} pour les ids demandés (ids absents ignorés).
    Les lignes invalides sont journalisées et écartées.
    """
    wanted = [str(i) for i in ids if i]
    if not wanted:
        return {}
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("items")
            .select(ITEM_COLUMNS)
            .in_("id", wanted)
            .execute()
        )
    except Exception as e:
        logger.exception("catalog.repository.fetch_items_by_ids failed ids=%s", wanted)
        raise UpstreamFailure("Catalogue indisponible", service="catalog") from e

    items: Dict[str, Any] = {}
    for row in res.data or []:
        try:
            item = item_from_row(row)
        except pydantic.ValidationError:
            logger.warning("catalog.repository: ligne 'items' invalide id=%s", row.get("id"))
            continue
        items[item.id] = item
    return items


def get_item(item_id: str):
    return fetch_items_by_ids([item_id]).get(str(item_id))


def fetch_active_promotions(now: Optional[datetime] = None) -> List[Promotion]:
    """
    Promotions au statut 'active' dont la fenêtre [start_date, end_date] contient now.
    Le filtre de dates est refait côté moteur de prix; celui-ci limite seulement le volume lu.
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.isoformat()
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("promotions")
            .select("*")
            .eq("status", PromotionStatus.ACTIVE.value)
            .lte("start_date", stamp)
            .gte("end_date", stamp)
            .execute()
        )
    except Exception as e:
        logger.exception("catalog.repository.fetch_active_promotions failed")
        raise UpstreamFailure("Promotions indisponibles", service="catalog") from e

    promotions: List[Promotion] = []
    for row in res.data or []:
        try:
            promotions.append(promotion_from_row(row))
        except pydantic.ValidationError:
            logger.warning("catalog.repository: promotion invalide id=%s", row.get("id"))
    return promotions
