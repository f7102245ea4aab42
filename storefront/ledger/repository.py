"""
Accès à la table 'ledger' (journal financier en ajout seul).
"""
from typing import Any, Dict, Optional
import logging

from postgrest.exceptions import APIError

import storefront.infra.supabase_client as supabase_client
from storefront.errors import UpstreamFailure
from storefront.utils.clock import utcnow_iso

logger = logging.getLogger(__name__)


def insert_entry(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Insère une écriture avec son id fourni.
    - Retourne None si l'id existe déjà (violation d'unicité 23505): l'écriture a déjà été passée.
    """
    try:
        res = supabase_client.get_service_supabase().table("ledger").insert(row).execute()
        rows = res.data or []
        return rows[0] if rows else row
    except APIError as e:
        if getattr(e, "code", None) == "23505":
            return None
        logger.exception("ledger.repository.insert_entry failed id=%s", row.get("id"))
        raise UpstreamFailure("Écriture comptable impossible", service="ledger") from e
    except Exception as e:
        logger.exception("ledger.repository.insert_entry failed id=%s", row.get("id"))
        raise UpstreamFailure("Écriture comptable impossible", service="ledger") from e


def get_entry(entry_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("ledger")
            .select("*")
            .eq("id", str(entry_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("ledger.repository.get_entry failed id=%s", entry_id)
        raise UpstreamFailure("Lecture du journal impossible", service="ledger") from e
    rows = res.data or []
    return rows[0] if rows else None


def mark_reversed(entry_id: str, reason: str, reversed_by: str) -> Optional[Dict[str, Any]]:
    """Marque une écriture 'confirmed' comme contre-passée. None si elle ne l'était plus."""
    now = utcnow_iso()
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("ledger")
            .update({
                "status": "reversed",
                "reversed_at": now,
                "reversed_by": reversed_by,
                "reversal_reason": reason,
                "updated_at": now,
            })
            .eq("id", str(entry_id))
            .eq("status", "confirmed")
            .execute()
        )
    except Exception as e:
        logger.exception("ledger.repository.mark_reversed failed id=%s", entry_id)
        raise UpstreamFailure("Contre-passation impossible", service="ledger") from e
    rows = res.data or []
    return rows[0] if rows else None
