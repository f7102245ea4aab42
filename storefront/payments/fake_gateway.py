"""Passerelle factice configurable pour le développement et les tests.

Aucun appel externe:
- create_checkout renvoie une URL locale et mémorise montant/devise par tx_ref;
- verify renvoie le résultat programmé (set_result), sinon un succès au montant mémorisé;
- parse_webhook lit un JSON {tx_ref, status, amount, currency} signé 'test-signature'.
"""
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4
import json

from storefront.errors import UpstreamFailure
from storefront.payments.gateway import InvalidSignatureError, PaymentGateway
from storefront.payments.models import CheckoutSession, GatewayCallback

SIGNATURE_HEADER = "x-fake-signature"
TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    name = "fake"

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Passerelle indisponible"
        self.calls: List[Dict[str, Any]] = []
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._results: Dict[str, GatewayCallback] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Passerelle indisponible") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def set_result(self, callback: GatewayCallback) -> None:
        """Programme la réponse de verify() pour callback.tx_ref."""
        self._results[callback.tx_ref] = callback

    def create_checkout(self, *, tx_ref, amount, currency, customer_email, first_name, last_name,
                        callback_url, return_url, metadata) -> CheckoutSession:
        self.calls.append({
            "method": "create_checkout",
            "tx_ref": tx_ref,
            "amount": Decimal(amount),
            "currency": currency,
            "customer_email": customer_email,
            "callback_url": callback_url,
            "return_url": return_url,
            "metadata": dict(metadata),
        })
        if not self.should_succeed:
            raise UpstreamFailure(self.failure_reason, service="payment")
        self._sessions[tx_ref] = {"amount": Decimal(amount), "currency": currency, "email": customer_email}
        return CheckoutSession(
            checkout_url=f"https://pay.example.test/checkout/{tx_ref}",
            gateway_reference=f"fake_{uuid4().hex[:12]}",
        )

    def verify(self, tx_ref: str, gateway_reference: Optional[str] = None) -> GatewayCallback:
        self.calls.append({"method": "verify", "tx_ref": tx_ref})
        if not self.should_succeed:
            raise UpstreamFailure(self.failure_reason, service="payment")
        if tx_ref in self._results:
            return self._results[tx_ref]
        session = self._sessions.get(tx_ref)
        if session is None:
            return GatewayCallback(tx_ref=tx_ref, status="failed", failure_reason="Transaction inconnue")
        return GatewayCallback(
            tx_ref=tx_ref,
            status="success",
            amount=session["amount"],
            currency=session["currency"],
            reference=gateway_reference,
            channel="card",
            customer_email=session["email"],
        )

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Optional[GatewayCallback]:
        signature = next((v for k, v in headers.items() if k.lower() == SIGNATURE_HEADER), None)
        if signature != TEST_SIGNATURE:
            raise InvalidSignatureError()
        body = json.loads(payload.decode("utf-8") or "{}")
        if not body.get("tx_ref"):
            return None
        amount = body.get("amount")
        return GatewayCallback(
            tx_ref=body["tx_ref"],
            status=(body.get("status") or "").lower(),
            amount=Decimal(str(amount)) if amount is not None else None,
            currency=body.get("currency"),
            reference=body.get("reference"),
            channel=body.get("channel"),
            customer_email=body.get("email"),
            failure_reason=body.get("failure_reason"),
            raw=body,
        )
