import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storefront.bookings import repository as bookings_repository
from storefront.bookings.models import BookingRequest
from storefront.bookings.service import BookingOrchestrator, update_booking_status
from storefront.dependencies import get_booking_orchestrator, get_ledger, get_notifier
from storefront.errors import NotFoundError, UpstreamFailure
from storefront.ledger.service import LedgerRecorder
from storefront.lifecycle import BookingStatus
from storefront.notifications.service import Notifier
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import optional_user, require_admin

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/bookings", tags=["Bookings API"])


class StatusUpdate(BaseModel):
    status: BookingStatus
    reason: Optional[str] = None


@router.post("", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def place_booking(
    body: BookingRequest,
    user: Optional[Dict[str, Any]] = Depends(optional_user),
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    """
    Service + créneau -> réservation pending + session de paiement.
    400 si la saisie est invalide ou le créneau complet, 502 si la passerelle échoue.
    """
    result = orchestrator.place_booking(body, customer_id=(user or {}).get("id"))
    data = {
        "bookingId": result.booking_id,
        "bookingNumber": result.booking_number,
        "checkoutUrl": result.checkout_url,
        "txRef": result.tx_ref,
        "transactionId": result.transaction_id,
    }
    if result.ok:
        return {"success": True, "data": data}
    error = result.error
    status_code = 502 if isinstance(error, UpstreamFailure) else 404 if isinstance(error, NotFoundError) else 400
    return JSONResponse(status_code=status_code, content={"success": False, **error.to_dict(), "data": data})


@router.get("/{booking_id}")
def get_booking(booking_id: str, user: Optional[Dict[str, Any]] = Depends(optional_user)):
    booking = bookings_repository.get_booking(booking_id)
    if not booking:
        raise NotFoundError("Réservation introuvable")
    role = (user or {}).get("role")
    if role != "admin" and booking.get("customer_id") and booking.get("customer_id") != (user or {}).get("id"):
        raise NotFoundError("Réservation introuvable")
    return {"success": True, "data": booking}


@router.patch("/{booking_id}/status")
def admin_update_status(
    booking_id: str,
    body: StatusUpdate,
    admin: Dict[str, Any] = Depends(require_admin),
    notifier: Notifier = Depends(get_notifier),
    ledger: LedgerRecorder = Depends(get_ledger),
):
    updated = update_booking_status(
        booking_id,
        body.status.value,
        actor=str(admin.get("id")),
        notifier=notifier,
        ledger=ledger,
        reason=body.reason,
    )
    return {"success": True, "data": updated}
