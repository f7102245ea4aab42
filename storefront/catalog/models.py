"""
Modèles du catalogue: articles (produit | service) et promotions.

Item est une union discriminée sur `type`:
- ProductItem: sku et stock (inventory) optionnels.
- ServiceItem: durée, frais de réservation (booking_fee), total_fee, paiement partiel, capacité par créneau.
Les champs spécifiques à une variante n'existent que sur cette variante.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator


class ItemStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"
    ARCHIVED = "archived"
    OUT_OF_STOCK = "out_of_stock"
    DISCONTINUED = "discontinued"


class PromotionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class ItemPricing(BaseModel):
    base_price: Decimal = Field(ge=0)
    currency: str = "MWK"
    include_transaction_fee: bool = False
    transaction_fee_rate: Optional[Decimal] = None

    @model_validator(mode="after")
    def _fee_rate_in_range(self) -> "ItemPricing":
        # Le taux n'est utilisé que si les frais sont inclus dans le prix
        rate = self.transaction_fee_rate
        if self.include_transaction_fee and rate is not None and not (0 < rate < 1):
            raise ValueError("transaction_fee_rate doit être strictement compris entre 0 et 1")
        return self


class Inventory(BaseModel):
    quantity: int = 0
    reserved: int = 0
    available: int = 0
    track_inventory: bool = True


class _ItemBase(BaseModel):
    id: str
    name: str
    slug: Optional[str] = None
    status: ItemStatus = ItemStatus.ACTIVE
    pricing: ItemPricing
    images: List[str] = Field(default_factory=list)


class ProductItem(_ItemBase):
    type: Literal["product"] = "product"
    sku: Optional[str] = None
    inventory: Optional[Inventory] = None


class ServiceItem(_ItemBase):
    type: Literal["service"] = "service"
    duration: int = Field(default=60, gt=0)
    booking_fee: Optional[Decimal] = None
    total_fee: Optional[Decimal] = None
    allow_partial_payment: bool = False
    max_concurrent_bookings: Optional[int] = Field(default=None, gt=0)


Item = Annotated[Union[ProductItem, ServiceItem], Field(discriminator="type")]

_item_adapter: TypeAdapter = TypeAdapter(Item)


def parse_item(data: Dict[str, Any]) -> Union[ProductItem, ServiceItem]:
    """Construit la bonne variante à partir d'un dict (lève pydantic.ValidationError si incohérent)."""
    return _item_adapter.validate_python(data)


class Promotion(BaseModel):
    id: str
    name: str = ""
    discount: Decimal
    discount_type: DiscountType
    product_ids: List[str] = Field(default_factory=list)
    service_ids: List[str] = Field(default_factory=list)
    start_date: datetime
    end_date: datetime
    status: PromotionStatus = PromotionStatus.ACTIVE

    @field_validator("product_ids", "service_ids", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return v or []

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        # Dates sans fuseau: UTC
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    def targets(self, item_id: str) -> bool:
        return item_id in self.product_ids or item_id in self.service_ids
