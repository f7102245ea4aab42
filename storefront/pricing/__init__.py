"""
Module 'pricing' (feature-first): point d'entrée public du moteur de prix.
"""

from .engine import (
    DEFAULT_TRANSACTION_FEE_RATE,
    PriceQuote,
    compute_tax,
    effective_price,
    final_price,
    find_item_promotion,
    is_promotion_active,
    money,
    net_amount,
    price_with_transaction_fee,
    promotion_price,
    quote_item,
    transaction_fee_amount,
)

__all__ = [
    "DEFAULT_TRANSACTION_FEE_RATE",
    "PriceQuote",
    # frais
    "price_with_transaction_fee",
    "net_amount",
    "transaction_fee_amount",
    # promotions
    "is_promotion_active",
    "find_item_promotion",
    "promotion_price",
    # prix
    "effective_price",
    "final_price",
    "quote_item",
    "compute_tax",
    "money",
]
