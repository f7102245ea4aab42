"""
Moteur de prix pur (pas de DB, pas de réseau).

Ordre fixe:
  1) résolution de la promotion applicable (active, dans sa fenêtre de dates)
  2) prix promotionnel: percentage -> base * (1 - d/100), fixed -> max(0, base - d)
  3) inclusion des frais de transaction: prix / (1 - taux), taux par défaut 0.03
Le prix "effectif" (sans promotion, frais inclus) sert de prix barré; le prix "final" combine promotion et frais.
Tous les montants sont des Decimal arrondis à l'unité mineure (2 décimales, ROUND_HALF_UP).
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from storefront.catalog.models import DiscountType, ItemPricing, Promotion, PromotionStatus
from storefront.config import DEFAULT_TRANSACTION_FEE_RATE as _DEFAULT_RATE

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")
DEFAULT_TRANSACTION_FEE_RATE = Decimal(str(_DEFAULT_RATE))


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    return Decimal(str(value))


def money(value) -> Decimal:
    """Arrondit à l'unité mineure (2 décimales)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _check_fee_rate(fee_rate: Decimal) -> Decimal:
    rate = to_decimal(fee_rate)
    if rate <= 0 or rate >= 1:
        raise ValueError("Le taux de frais doit être strictement compris entre 0 et 1")
    return rate


def price_with_transaction_fee(price, fee_rate=DEFAULT_TRANSACTION_FEE_RATE) -> Decimal:
    """
    Prix incluant les frais: price / (1 - fee_rate), arrondi.
    Le vendeur touche ainsi `price` une fois les frais du processeur déduits.
    - Lève ValueError si fee_rate hors de ]0, 1[.
    - Retourne 0 si price <= 0.
    """
    rate = _check_fee_rate(fee_rate)
    amount = to_decimal(price)
    if amount <= 0:
        return money(ZERO)
    return money(amount / (Decimal(1) - rate))


def net_amount(price_with_fee, fee_rate=DEFAULT_TRANSACTION_FEE_RATE) -> Decimal:
    """Montant net perçu: price_with_fee * (1 - fee_rate), arrondi."""
    rate = _check_fee_rate(fee_rate)
    amount = to_decimal(price_with_fee)
    if amount <= 0:
        return money(ZERO)
    return money(amount * (Decimal(1) - rate))


def transaction_fee_amount(price_with_fee, fee_rate=DEFAULT_TRANSACTION_FEE_RATE) -> Decimal:
    rate = _check_fee_rate(fee_rate)
    amount = to_decimal(price_with_fee)
    if amount <= 0:
        return money(ZERO)
    return money(amount * rate)


def _fee_rate(pricing: ItemPricing) -> Decimal:
    if pricing.transaction_fee_rate is None:
        return DEFAULT_TRANSACTION_FEE_RATE
    return to_decimal(pricing.transaction_fee_rate)


def _now(now: Optional[datetime]) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now if now.tzinfo else now.replace(tzinfo=timezone.utc)


def is_promotion_active(promotion: Promotion, now: Optional[datetime] = None) -> bool:
    current = _now(now)
    return (
        promotion.status == PromotionStatus.ACTIVE
        and promotion.start_date <= current <= promotion.end_date
    )


def find_item_promotion(
    item_id: str,
    promotions: Optional[Iterable[Promotion]],
    now: Optional[datetime] = None,
) -> Optional[Promotion]:
    """
    Sélectionne au plus une promotion pour l'article.
    - Liste absente = liste vide.
    - Départage: début le plus récent, puis id le plus grand (ordre stable et déterministe).
    """
    current = _now(now)
    candidates = [
        p for p in (promotions or [])
        if p.targets(str(item_id)) and is_promotion_active(p, current)
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: (p.start_date, p.id))


def promotion_price(base_price, promotion: Promotion) -> Decimal:
    """
    Prix après promotion, jamais négatif.
    - percentage: base * (1 - d/100); une remise >= 100% donne 0.
    - fixed: max(0, base - d).
    - Une remise négative est ignorée (le prix promo ne dépasse jamais la base).
    """
    base = to_decimal(base_price)
    discount = max(to_decimal(promotion.discount), ZERO)
    if promotion.discount_type == DiscountType.PERCENTAGE:
        if discount >= HUNDRED:
            return money(ZERO)
        price = base * (Decimal(1) - discount / HUNDRED)
    else:
        price = base - discount
    return money(max(price, ZERO))


def effective_price(pricing: ItemPricing) -> Decimal:
    """Prix de référence: sans promotion, frais inclus si configuré."""
    if not pricing.include_transaction_fee:
        return money(pricing.base_price)
    return price_with_transaction_fee(pricing.base_price, _fee_rate(pricing))


def final_price(pricing: ItemPricing, promotion: Optional[Promotion] = None) -> Decimal:
    """Prix payé: promotion d'abord, puis frais de transaction sur le prix promotionnel."""
    after_promotion = (
        promotion_price(pricing.base_price, promotion) if promotion else money(pricing.base_price)
    )
    if not pricing.include_transaction_fee:
        return after_promotion
    return price_with_transaction_fee(after_promotion, _fee_rate(pricing))


def compute_tax(amount, tax_rate) -> Decimal:
    """Taxe = montant * taux/100 (taux en pourcentage, 0-100)."""
    return money(to_decimal(amount) * to_decimal(tax_rate) / HUNDRED)


@dataclass(frozen=True)
class PriceQuote:
    item_id: str
    currency: str
    base_price: Decimal
    effective_price: Decimal
    final_price: Decimal
    promotion_id: Optional[str] = None
    promotion_price: Optional[Decimal] = None

    @property
    def has_promotion(self) -> bool:
        return self.promotion_id is not None


def quote_item(item, promotions: Optional[Iterable[Promotion]] = None, now: Optional[datetime] = None) -> PriceQuote:
    """Calcule en une passe prix de base, prix effectif et prix final d'un article."""
    promotion = find_item_promotion(item.id, promotions, now)
    return PriceQuote(
        item_id=item.id,
        currency=item.pricing.currency,
        base_price=money(item.pricing.base_price),
        effective_price=effective_price(item.pricing),
        final_price=final_price(item.pricing, promotion),
        promotion_id=promotion.id if promotion else None,
        promotion_price=promotion_price(item.pricing.base_price, promotion) if promotion else None,
    )
