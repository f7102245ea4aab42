"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
La transaction boutique (tx_ref) voyage dans client_reference_id et metadata.tx_ref.
"""
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
import logging

import stripe

from storefront import config
from storefront.errors import UpstreamFailure
from storefront.payments.gateway import InvalidSignatureError, PaymentGateway
from storefront.payments.models import CheckoutSession, GatewayCallback

logger = logging.getLogger(__name__)

_EVENT_STATUS = {
    "checkout.session.completed": "success",
    "checkout.session.async_payment_succeeded": "success",
    "checkout.session.async_payment_failed": "failed",
    "checkout.session.expired": "expired",
}


def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    En absence de clé, les appels Stripe échoueront côté SDK (No API key provided).
    """
    if config.STRIPE_SECRET_KEY:
        stripe.api_key = config.STRIPE_SECRET_KEY
    return stripe


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


def callback_from_session(session: Dict[str, Any], status: str) -> GatewayCallback:
    metadata = dict(session.get("metadata") or {})
    details = session.get("customer_details") or {}
    total = session.get("amount_total")
    return GatewayCallback(
        tx_ref=str(session.get("client_reference_id") or metadata.get("tx_ref") or ""),
        status=status,
        amount=(Decimal(total) / 100) if total is not None else None,
        currency=(session.get("currency") or "").upper() or None,
        reference=session.get("id"),
        channel="card",
        customer_email=details.get("email") or session.get("customer_email"),
        customer_name=details.get("name"),
        raw=dict(session),
    )


def session_status(session: Mapping[str, Any]) -> str:
    """
    Statut normalisé d'une Checkout Session relue chez Stripe.
    Session 'complete' non payée: paiement différé encore en cours, sauf si le PaymentIntent
    a été refusé (retour à requires_payment_method) ou annulé.
    """
    if session.get("payment_status") == "paid":
        return "success"
    if session.get("status") == "expired":
        return "expired"
    intent = session.get("payment_intent")
    intent_status = intent.get("status") if isinstance(intent, Mapping) else None
    if intent_status == "canceled":
        return "failed"
    if session.get("status") == "complete" and intent_status == "requires_payment_method":
        return "failed"
    return "pending"


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret if webhook_secret is not None else config.STRIPE_WEBHOOK_SECRET

    def create_checkout(self, *, tx_ref, amount, currency, customer_email, first_name, last_name,
                        callback_url, return_url, metadata) -> CheckoutSession:
        require_stripe()
        try:
            session = stripe.checkout.Session.create(
                line_items=[{
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": {"name": metadata.get("title") or tx_ref},
                        "unit_amount": to_minor_units(amount),
                    },
                    "quantity": 1,
                }],
                mode="payment",
                success_url=return_url,
                cancel_url=return_url,
                customer_email=customer_email,
                client_reference_id=tx_ref,
                metadata={"tx_ref": tx_ref, **{k: str(v) for k, v in metadata.items()}},
                payment_method_types=["card"],
            )
        except stripe.error.StripeError as e:
            logger.exception("stripe.create_checkout failed tx_ref=%s", tx_ref)
            raise UpstreamFailure("Création du paiement impossible", service="payment") from e
        data = dict(session)
        return CheckoutSession(checkout_url=data.get("url") or "", gateway_reference=data.get("id"))

    def verify(self, tx_ref: str, gateway_reference: Optional[str] = None) -> GatewayCallback:
        if not gateway_reference:
            raise UpstreamFailure("Session Stripe inconnue pour cette transaction", service="payment")
        require_stripe()
        try:
            session = dict(stripe.checkout.Session.retrieve(gateway_reference, expand=["payment_intent"]))
        except stripe.error.StripeError as e:
            logger.exception("stripe.verify failed tx_ref=%s", tx_ref)
            raise UpstreamFailure("Vérification du paiement impossible", service="payment") from e
        return callback_from_session(session, session_status(session))

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Optional[GatewayCallback]:
        require_stripe()
        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret or "")
        except (ValueError, stripe.error.SignatureVerificationError) as e:
            raise InvalidSignatureError() from e
        status = _EVENT_STATUS.get(event["type"])
        if status is None:
            logger.info("stripe: événement ignoré %s", event["type"])
            return None
        return callback_from_session(dict(event["data"]["object"]), status)
