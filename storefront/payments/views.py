import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse

from storefront.bookings import repository as bookings_repository
from storefront.dependencies import get_gateway, get_reconciler
from storefront.errors import NotFoundError, ReconcileOutcome, ValidationError
from storefront.orders import repository as orders_repository
from storefront.payments import repository as payments_repository
from storefront.payments import service as payments_service
from storefront.payments.gateway import PaymentGateway
from storefront.payments.models import PaymentSessionRequest
from storefront.payments.reconciler import PaymentReconciler
from storefront.pricing import money
from storefront.utils.rate_limit import optional_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])


def _payable_target(body: PaymentSessionRequest) -> Dict[str, Any]:
    """Commande/réservation visée: doit exister, être pending, et le montant doit être son total."""
    if body.order_id:
        target = orders_repository.get_order(body.order_id)
        label = "Commande"
    else:
        target = bookings_repository.get_booking(body.booking_id)
        label = "Réservation"
    if not target:
        raise NotFoundError(f"{label} introuvable")
    if target.get("status") != "pending":
        raise ValidationError(f"{label} déjà traitée ({target.get('status')})", code="not_payable")
    pricing = target.get("pricing") or {}
    if money(pricing.get("total")) != money(body.amount):
        raise ValidationError("Le montant ne correspond pas au total", code="amount_mismatch", field="amount")
    if (pricing.get("currency") or body.currency).upper() != body.currency.upper():
        raise ValidationError("La devise ne correspond pas", code="currency_mismatch", field="currency")
    return target


# module storefront.payments.views
@router.post("", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_payment_session(body: PaymentSessionRequest, gateway: PaymentGateway = Depends(get_gateway)):
    """
    Ouvre une session de paiement pour une commande ou une réservation pending.
    - Entrée: {orderId|bookingId, amount, currency, customerEmail, customerName, firstName, lastName, metadata}
    - Sortie: {success, data: {checkoutUrl, txRef, transactionId}}
    - 400 si le montant diffère du total enregistré, 404 si la cible est inconnue, 502 si la passerelle échoue
    """
    _payable_target(body)
    first, last = body.first_name, body.last_name
    if not first:
        first, last = payments_service.split_name(body.customer_name)
    session = payments_service.open_payment_session(
        gateway,
        amount=body.amount,
        currency=body.currency,
        customer_email=body.customer_email,
        first_name=first or "",
        last_name=last or "",
        order_id=body.order_id,
        booking_id=body.booking_id,
        metadata=body.metadata,
    )
    return {
        "success": True,
        "data": {
            "checkoutUrl": session.checkout_url,
            "txRef": session.tx_ref,
            "transactionId": session.transaction_id,
        },
    }


@router.post("/webhook", include_in_schema=False)
async def payment_webhook(request: Request, reconciler: PaymentReconciler = Depends(get_reconciler)):
    """
    Webhook passerelle (POST serveur à serveur).
    - Signature: contrôlée par l'adaptateur (400 si refusée)
    - Réconciliation idempotente: {"status": "ok", "outcome": ...} ou {"status": "ignored"}
    - 502 si la passerelle n'a pas pu confirmer: elle renverra le webhook
    """
    payload = await request.body()
    result = await run_in_threadpool(reconciler.handle_webhook, payload, dict(request.headers))
    if result is None:
        return JSONResponse({"status": "ignored"})
    logger.info("payments.webhook tx_ref=%s outcome=%s", result.tx_ref, result.outcome.value)
    if result.outcome == ReconcileOutcome.UNVERIFIED:
        return JSONResponse(status_code=502, content={"status": "retry", **result.to_dict()})
    return JSONResponse({"status": "ok", **result.to_dict()})


@router.get("/webhook", include_in_schema=False)
def payment_return(tx_ref: Optional[str] = Query(None), txRef: Optional[str] = Query(None)):
    """
    Retour navigateur après paiement: redirige vers la page de confirmation adaptée.
    Aucun changement d'état ici; la page appelle ensuite /verify.
    """
    ref = tx_ref or txRef
    if not ref:
        return RedirectResponse("/", status_code=302)
    try:
        session = payments_repository.get_session_by_tx_ref(ref)
    except Exception:
        logger.exception("payments.return: lecture de session impossible tx_ref=%s", ref)
        return RedirectResponse("/", status_code=302)

    q_ref = quote(ref)
    if session and session.booking_id:
        url = f"/book-confirmed?bookingId={quote(session.booking_id)}&txRef={q_ref}"
    elif session and session.order_id:
        url = f"/order-confirmed?orderId={quote(session.order_id)}&txRef={q_ref}"
    else:
        url = f"/payment/status?txRef={q_ref}"
    return RedirectResponse(url, status_code=302)


@router.get("/verify")
def verify_payment(txRef: str = Query(..., min_length=1), reconciler: PaymentReconciler = Depends(get_reconciler)):
    """
    Vérification explicite d'une transaction auprès de la passerelle puis réconciliation.
    Sans danger à répéter (polling de la page de confirmation).
    """
    result = reconciler.verify_transaction(txRef)
    if result.outcome == ReconcileOutcome.UNKNOWN_TRANSACTION:
        raise NotFoundError("Transaction inconnue")
    return {"success": result.outcome != ReconcileOutcome.UNVERIFIED, "data": result.to_dict()}
