"""
Accès au stock produit (colonnes quantity/reserved/available de la table 'items').
Seule écriture autorisée: compare_and_set, conditionnée aux valeurs lues.
"""
from typing import Any, Dict, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import UpstreamFailure
from storefront.utils.clock import utcnow_iso

logger = logging.getLogger(__name__)


def get_stock(product_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("items")
            .select("id, type, name, status, quantity, reserved, available, track_inventory")
            .eq("id", str(product_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("inventory.repository.get_stock failed product_id=%s", product_id)
        raise UpstreamFailure("Stock indisponible", service="inventory") from e
    rows = res.data or []
    return rows[0] if rows else None


def compare_and_set(product_id: str, expected_quantity: int, expected_reserved: int, fields: Dict[str, Any]) -> bool:
    """
    Applique `fields` seulement si quantity/reserved valent toujours les valeurs lues.
    False = conflit avec une autre écriture, l'appelant relit et recommence.
    """
    payload = dict(fields)
    payload["updated_at"] = utcnow_iso()
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("items")
            .update(payload)
            .eq("id", str(product_id))
            .eq("quantity", expected_quantity)
            .eq("reserved", expected_reserved)
            .execute()
        )
    except Exception as e:
        logger.exception("inventory.repository.compare_and_set failed product_id=%s", product_id)
        raise UpstreamFailure("Mise à jour du stock impossible", service="inventory") from e
    return bool(res.data)
