"""
Résolution du coût de livraison à partir de la grille d'un prestataire.
Précédence: district > région > prix général > 0. Recherche par clé exacte uniquement.
"""
from decimal import Decimal
from typing import Optional

from storefront.delivery.models import DeliveryProvider, Destination, FulfillmentMethod
from storefront.pricing.engine import money

ZERO = Decimal("0.00")


def resolve_delivery_cost(
    provider: Optional[DeliveryProvider],
    destination: Optional[Destination],
    method: FulfillmentMethod = FulfillmentMethod.DELIVERY,
) -> Decimal:
    """
    Coût de livraison, jamais d'erreur pour un choix "pas encore fait":
    - PICKUP -> 0 sans consulter le prestataire
    - prestataire ou destination (district/région) manquant -> 0
    L'appelant valide séparément qu'un prestataire a bien été choisi avant le paiement.
    """
    if method == FulfillmentMethod.PICKUP:
        return ZERO
    if provider is None or destination is None:
        return ZERO
    if not destination.district and not destination.region:
        return ZERO

    pricing = provider.pricing
    if destination.district and destination.district in pricing.district_pricing:
        return money(pricing.district_pricing[destination.district])
    if destination.region and destination.region in pricing.region_pricing:
        return money(pricing.region_pricing[destination.region])
    if pricing.general_price is not None:
        return money(pricing.general_price)
    return ZERO
