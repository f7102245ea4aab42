"""
Modèles livraison: prestataires, grille tarifaire, destination, régions/districts du Malawi.
"""
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class FulfillmentMethod(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class MalawiRegion(str, Enum):
    NORTHERN = "Northern"
    CENTRAL = "Central"
    SOUTHERN = "Southern"


MALAWI_DISTRICTS: Dict[str, List[str]] = {
    MalawiRegion.NORTHERN.value: ["Chitipa", "Karonga", "Likoma", "Mzimba", "Nkhata Bay", "Rumphi"],
    MalawiRegion.CENTRAL.value: [
        "Dedza", "Dowa", "Kasungu", "Lilongwe", "Mchinji", "Nkhotakota", "Ntcheu", "Ntchisi", "Salima",
    ],
    MalawiRegion.SOUTHERN.value: [
        "Balaka", "Blantyre", "Chikwawa", "Chiradzulu", "Machinga", "Mangochi", "Mulanje",
        "Mwanza", "Neno", "Nsanje", "Phalombe", "Thyolo", "Zomba",
    ],
}


def district_in_region(district: str, region: str) -> bool:
    return district in MALAWI_DISTRICTS.get(region, [])


class DeliveryPricing(BaseModel):
    general_price: Optional[Decimal] = None
    region_pricing: Dict[str, Decimal] = Field(default_factory=dict)
    district_pricing: Dict[str, Decimal] = Field(default_factory=dict)

    @field_validator("region_pricing", "district_pricing", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return v or {}


class DeliveryProvider(BaseModel):
    id: str
    name: str = ""
    is_active: bool = True
    pricing: DeliveryPricing = Field(default_factory=DeliveryPricing)
    currency: str = "MWK"


class Destination(BaseModel):
    district: Optional[str] = None
    region: Optional[str] = None
