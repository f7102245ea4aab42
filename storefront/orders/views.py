import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storefront.dependencies import get_checkout_orchestrator, get_inventory, get_ledger, get_notifier
from storefront.errors import NotFoundError, UpstreamFailure
from storefront.inventory.service import InventoryReservationService
from storefront.ledger.service import LedgerRecorder
from storefront.lifecycle import OrderStatus
from storefront.notifications.service import Notifier
from storefront.orders import repository as orders_repository
from storefront.orders.models import CheckoutRequest
from storefront.orders.service import CheckoutOrchestrator, update_order_status
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import optional_user, require_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])


class StatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = None


# module storefront.orders.views
@router.post("/checkout", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def checkout(
    body: CheckoutRequest,
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    orchestrator: CheckoutOrchestrator = Depends(get_checkout_orchestrator),
):
    """
    Panier -> commande pending + session de paiement.
    - 200: {success, data: {orderId, orderNumber, checkoutUrl, txRef, transactionId}}
    - 400: saisie invalide (rien n'est enregistré)
    - 502: passerelle indisponible; si la commande a été créée, son id est renvoyé
    """
    result = orchestrator.checkout(body, customer_id=(user or {}).get("id"))
    data = {
        "orderId": result.order_id,
        "orderNumber": result.order_number,
        "checkoutUrl": result.checkout_url,
        "txRef": result.tx_ref,
        "transactionId": result.transaction_id,
    }
    if result.ok:
        return {"success": True, "data": data}
    error = result.error
    status_code = 502 if isinstance(error, UpstreamFailure) else 404 if isinstance(error, NotFoundError) else 400
    return JSONResponse(status_code=status_code, content={"success": False, **error.to_dict(), "data": data})


@router.get("/{order_id}")
def get_order(order_id: str, user: Optional[Dict[str, Any]] = Depends(optional_user)):
    """Commande du client connecté (ou de n'importe qui pour un admin)."""
    order = orders_repository.get_order(order_id)
    if not order:
        raise NotFoundError("Commande introuvable")
    role = (user or {}).get("role")
    if role != "admin" and order.get("customer_id") and order.get("customer_id") != (user or {}).get("id"):
        raise NotFoundError("Commande introuvable")
    return {"success": True, "data": order}


@router.patch("/{order_id}/status")
def admin_update_status(
    order_id: str,
    body: StatusUpdate,
    admin: Dict[str, Any] = Depends(require_admin),
    inventory: InventoryReservationService = Depends(get_inventory),
    notifier: Notifier = Depends(get_notifier),
    ledger: LedgerRecorder = Depends(get_ledger),
):
    """Changement de statut admin (409 si la transition est interdite)."""
    updated = update_order_status(
        order_id,
        body.status.value,
        actor=str(admin.get("id")),
        inventory=inventory,
        notifier=notifier,
        ledger=ledger,
        reason=body.reason,
    )
    return {"success": True, "data": updated}
