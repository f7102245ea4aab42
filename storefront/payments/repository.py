"""
Accès à la table 'payment_sessions' (une ligne par tentative de paiement, clé unique tx_ref).
"""
from typing import Any, Dict, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.errors import UpstreamFailure
from storefront.payments.models import PaymentSession
from storefront.utils.clock import utcnow_iso

logger = logging.getLogger(__name__)

TABLE = "payment_sessions"


def insert_session(session: PaymentSession) -> Dict[str, Any]:
    row = session.model_dump(mode="json", exclude_none=True)
    row.pop("id", None)
    row["created_at"] = utcnow_iso()
    row["updated_at"] = row["created_at"]
    try:
        res = supabase_client.get_service_supabase().table(TABLE).insert(row).execute()
    except Exception as e:
        logger.exception("payments.repository.insert_session failed tx_ref=%s", session.tx_ref)
        raise UpstreamFailure("Enregistrement de la session de paiement impossible", service="payments") from e
    rows = res.data or []
    return rows[0] if rows else row


def get_session_by_tx_ref(tx_ref: str) -> Optional[PaymentSession]:
    if not tx_ref:
        return None
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .select("*")
            .eq("tx_ref", str(tx_ref))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("payments.repository.get_session_by_tx_ref failed tx_ref=%s", tx_ref)
        raise UpstreamFailure("Lecture de la session de paiement impossible", service="payments") from e
    rows = res.data or []
    if not rows:
        return None
    row = dict(rows[0])
    row["id"] = str(row["id"]) if row.get("id") is not None else None
    row["metadata"] = row.get("metadata") or {}
    return PaymentSession(**{k: v for k, v in row.items() if k in PaymentSession.model_fields})


def update_session(tx_ref: str, fields: Dict[str, Any]) -> None:
    data = dict(fields)
    data["updated_at"] = utcnow_iso()
    try:
        (
            supabase_client.get_service_supabase()
            .table(TABLE)
            .update(data)
            .eq("tx_ref", str(tx_ref))
            .execute()
        )
    except Exception as e:
        logger.exception("payments.repository.update_session failed tx_ref=%s", tx_ref)
        raise UpstreamFailure("Mise à jour de la session de paiement impossible", service="payments") from e
