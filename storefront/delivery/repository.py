"""
Accès aux prestataires de livraison (table 'delivery_providers').
"""
from typing import Any, Dict, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.delivery.models import DeliveryProvider
from storefront.errors import UpstreamFailure

logger = logging.getLogger(__name__)


def provider_from_row(row: Dict[str, Any]) -> DeliveryProvider:
    return DeliveryProvider(
        id=str(row.get("id")),
        name=row.get("name") or "",
        is_active=row.get("is_active") is not False,
        currency=row.get("currency") or "MWK",
        pricing={
            "general_price": row.get("general_price"),
            "region_pricing": row.get("region_pricing"),
            "district_pricing": row.get("district_pricing"),
        },
    )


def get_provider(provider_id: str) -> Optional[DeliveryProvider]:
    """Retourne le prestataire actif, None s'il est inconnu ou désactivé."""
    if not provider_id:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("delivery_providers")
            .select("*")
            .eq("id", str(provider_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("delivery.repository.get_provider failed provider_id=%s", provider_id)
        raise UpstreamFailure("Prestataires de livraison indisponibles", service="delivery") from e
    rows = res.data or []
    if not rows:
        return None
    provider = provider_from_row(rows[0])
    return provider if provider.is_active else None
