"""
Cas d'usage 'payments': ouverture d'une session de paiement auprès de la passerelle.
"""
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import uuid4
import logging

from storefront import config
from storefront.payments import repository as payments_repository
from storefront.payments.gateway import PaymentGateway
from storefront.payments.models import PaymentSession, PaymentSessionStatus
from storefront.pricing import money

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/v1/payments/webhook"


def new_tx_ref() -> str:
    return str(uuid4())


def split_name(full_name: Optional[str]) -> tuple:
    parts = (full_name or "").strip().split(" ", 1)
    return parts[0], (parts[1] if len(parts) > 1 else "")


def open_payment_session(
    gateway: PaymentGateway,
    *,
    amount: Decimal,
    currency: str,
    customer_email: str,
    first_name: str,
    last_name: str,
    order_id: Optional[str] = None,
    booking_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    sessions=payments_repository,
) -> PaymentSession:
    """
    Ouvre un paiement hébergé pour une commande ou une réservation et persiste la session.
    - tx_ref (= transaction_id) est généré ici; la passerelle le renvoie dans ses callbacks.
    - callback et retour pointent sur le webhook: le GET redirige ensuite le client.
    Lève UpstreamFailure si la passerelle ou l'écriture échoue.
    """
    tx_ref = new_tx_ref()
    amount = money(amount)
    meta = dict(metadata or {})
    if order_id:
        meta.setdefault("orderId", order_id)
    if booking_id:
        meta.setdefault("bookingId", booking_id)

    hook = f"{config.BASE_URL}{WEBHOOK_PATH}"
    checkout = gateway.create_checkout(
        tx_ref=tx_ref,
        amount=amount,
        currency=currency,
        customer_email=customer_email,
        first_name=first_name,
        last_name=last_name,
        callback_url=hook,
        return_url=f"{hook}?tx_ref={tx_ref}",
        metadata=meta,
    )
    session = PaymentSession(
        tx_ref=tx_ref,
        transaction_id=tx_ref,
        order_id=order_id,
        booking_id=booking_id,
        amount=amount,
        currency=currency.upper(),
        status=PaymentSessionStatus.PENDING,
        checkout_url=checkout.checkout_url,
        gateway=gateway.name,
        gateway_reference=checkout.gateway_reference,
        customer_email=customer_email,
        customer_name=f"{first_name} {last_name}".strip() or None,
        metadata=meta,
    )
    created = sessions.insert_session(session)
    if created.get("id") is not None:
        session.id = str(created["id"])
    logger.info(
        "payments: session ouverte tx_ref=%s order_id=%s booking_id=%s montant=%s %s",
        tx_ref, order_id, booking_id, amount, session.currency,
    )
    return session
