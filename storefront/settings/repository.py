"""
Réglages de paiement de la boutique (table 'settings', ligne key='payment').
Repli sur STORE_TAX_RATE / STORE_CURRENCY si la ligne est absente ou illisible.
"""
from decimal import Decimal
import logging

from pydantic import BaseModel, Field

import storefront.infra.supabase_client as supabase_client
from storefront import config

logger = logging.getLogger(__name__)


class PaymentSettings(BaseModel):
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    currency: str = "MWK"


def default_payment_settings() -> PaymentSettings:
    return PaymentSettings(tax_rate=Decimal(str(config.STORE_TAX_RATE)), currency=config.STORE_CURRENCY)


def get_payment_settings() -> PaymentSettings:
    try:
        res = (
            supabase_client.get_service_supabase()
            .table("settings")
            .select("value")
            .eq("key", "payment")
            .limit(1)
            .execute()
        )
        rows = res.data or []
    except Exception:
        logger.exception("settings.repository.get_payment_settings failed, repli sur la configuration")
        return default_payment_settings()

    if not rows:
        return default_payment_settings()
    value = rows[0].get("value") or {}
    fallback = default_payment_settings()
    return PaymentSettings(
        tax_rate=value.get("taxRate", fallback.tax_rate) or 0,
        currency=(value.get("currency") or fallback.currency).upper(),
    )
