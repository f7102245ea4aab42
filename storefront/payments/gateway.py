"""
Contrat de passerelle de paiement (paiement hébergé + webhook + vérification).

Implémentations:
- PayChanguGateway (paychangu_client): REST httpx, signature HMAC-SHA256.
- StripeGateway (stripe_client): SDK stripe, Checkout Session.
- FakeGateway (fake_gateway): développement et tests, aucun appel externe.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from storefront import config
from storefront.errors import ValidationError
from storefront.payments.models import CheckoutSession, GatewayCallback


class InvalidSignatureError(ValidationError):
    def __init__(self, message: str = "Signature webhook invalide"):
        super().__init__(message, code="invalid_signature")


class PaymentGateway(ABC):
    name = "gateway"

    @abstractmethod
    def create_checkout(
        self,
        *,
        tx_ref: str,
        amount: Decimal,
        currency: str,
        customer_email: str,
        first_name: str,
        last_name: str,
        callback_url: str,
        return_url: str,
        metadata: Dict[str, Any],
    ) -> CheckoutSession:
        """Ouvre un paiement hébergé. Lève UpstreamFailure si la passerelle échoue."""

    @abstractmethod
    def verify(self, tx_ref: str, gateway_reference: Optional[str] = None) -> GatewayCallback:
        """Interroge la passerelle sur l'état réel de la transaction. Lève UpstreamFailure."""

    @abstractmethod
    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Optional[GatewayCallback]:
        """
        Authentifie et normalise un webhook.
        - Lève InvalidSignatureError si la signature est refusée.
        - Retourne None pour un événement non géré.
        """


def build_gateway(name: Optional[str] = None) -> PaymentGateway:
    """Instancie la passerelle configurée (PAYMENT_GATEWAY), sans état partagé entre requêtes."""
    kind = (name or config.PAYMENT_GATEWAY or "paychangu").lower()
    if kind == "paychangu":
        from storefront.payments.paychangu_client import PayChanguGateway
        return PayChanguGateway()
    if kind == "stripe":
        from storefront.payments.stripe_client import StripeGateway
        return StripeGateway()
    if kind == "fake":
        from storefront.payments.fake_gateway import FakeGateway
        return FakeGateway()
    raise ValueError(f"Passerelle inconnue: {kind}")
