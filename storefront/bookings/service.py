"""
Cas d'usage 'bookings': création d'une réservation payable et changements de statut admin.

Montant encaissé:
- partiel (autorisé et booking_fee > 0): booking_fee
- sinon: total_fee du service, ou à défaut le prix final (promotion + frais)
tax = montant * taux/100, total = montant + tax.
En partiel, le reste dû (total_fee - booking_fee + taxe sur total_fee) est calculé et stocké.
"""
from datetime import date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional
import logging
import random
import re

from storefront import config
from storefront.bookings import repository as bookings_repository
from storefront.bookings.models import Booking, BookingPricing, BookingRequest, PaymentChoice, TimeSlot
from storefront.catalog import repository as catalog_repository
from storefront.catalog.models import ItemStatus, ServiceItem
from storefront.errors import (
    BookingResult,
    NotFoundError,
    SlotUnavailableError,
    StorefrontError,
    ValidationError,
)
from storefront.ledger.models import payment_entry_id
from storefront.ledger.service import LedgerRecorder
from storefront.lifecycle import BookingStatus, assert_can_transition
from storefront.notifications.service import Notifier
from storefront.payments import repository as payments_repository
from storefront.payments import service as payments_service
from storefront.payments.gateway import PaymentGateway
from storefront.pricing import compute_tax, find_item_promotion, final_price, money
from storefront.settings import repository as settings_repository
from storefront.utils.clock import utcnow
from storefront.utils.validators import validate_contact

logger = logging.getLogger(__name__)

TIME_SLOT_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*(AM|PM)", re.IGNORECASE)


class SlotPolicy(str, Enum):
    CAPACITY = "capacity"
    UNLIMITED = "unlimited"


def generate_booking_number(now: Optional[datetime] = None) -> str:
    stamp = int((now or utcnow()).timestamp() * 1000)
    return f"BK-{stamp}-{random.randint(0, 999)}"


def parse_time_slot(slot_date: date, label: str, duration: int = 60, tz: tzinfo = timezone.utc) -> TimeSlot:
    """
    '9:00 AM - 12:00 PM' -> TimeSlot sur slot_date. Seule l'heure de début compte,
    la fin vaut début + durée du service.
    """
    match = TIME_SLOT_RE.match((label or "").strip())
    if not match:
        raise ValidationError("Format de créneau invalide", code="invalid_time_slot", field="timeSlot")
    hours, minutes, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if hours < 1 or hours > 12 or minutes > 59:
        raise ValidationError("Format de créneau invalide", code="invalid_time_slot", field="timeSlot")
    if period == "PM" and hours != 12:
        hours += 12
    if period == "AM" and hours == 12:
        hours = 0
    duration = duration or 60
    start = datetime(slot_date.year, slot_date.month, slot_date.day, hours, minutes, tzinfo=tz)
    return TimeSlot(start_time=start, end_time=start + timedelta(minutes=duration), duration=duration)


def compute_booking_amounts(
    service: ServiceItem,
    service_final_price: Decimal,
    tax_rate: Decimal,
    partial: bool,
    currency: Optional[str] = None,
) -> BookingPricing:
    base_price = money(service.pricing.base_price)
    total_fee = money(service.total_fee) if service.total_fee and service.total_fee > 0 else money(service_final_price)
    booking_fee = money(service.booking_fee or 0)
    is_partial = bool(partial and service.allow_partial_payment and booking_fee > 0)

    amount = booking_fee if is_partial else total_fee
    tax = compute_tax(amount, tax_rate)
    remaining = money(total_fee - booking_fee + compute_tax(total_fee, tax_rate)) if is_partial else money(0)

    return BookingPricing(
        base_price=base_price,
        booking_fee=booking_fee if is_partial else None,
        total_fee=total_fee if total_fee != base_price else None,
        tax=tax,
        total=money(amount + tax),
        currency=currency or service.pricing.currency,
        is_partial_payment=is_partial,
        remaining_balance=remaining,
        tax_rate=money(tax_rate),
    )


class BookingOrchestrator:
    def __init__(
        self,
        gateway: PaymentGateway,
        catalog=catalog_repository,
        bookings=bookings_repository,
        settings=settings_repository,
        sessions=payments_repository,
        slot_policy: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.catalog = catalog
        self.bookings = bookings
        self.settings = settings
        self.sessions = sessions
        self.slot_policy = SlotPolicy(slot_policy or config.BOOKING_SLOT_POLICY)
        self.clock = clock

    def _load_service(self, service_id: str) -> ServiceItem:
        item = self.catalog.get_item(service_id)
        if not isinstance(item, ServiceItem):
            raise NotFoundError(f"Service introuvable: {service_id}")
        if item.status != ItemStatus.ACTIVE:
            raise ValidationError("Service indisponible", code="service_unavailable", field="serviceId")
        return item

    def _claim_slot(self, service: ServiceItem, slot: TimeSlot, booking_number: str) -> bool:
        """Prend une place du créneau. False si aucune place n'est à prendre (pas de limite)."""
        if self.slot_policy is SlotPolicy.UNLIMITED or not service.max_concurrent_bookings:
            return False
        for seat in range(1, service.max_concurrent_bookings + 1):
            if self.bookings.claim_seat(service.id, slot.start_time, seat, booking_number):
                return True
        raise SlotUnavailableError()

    def place_booking(self, request: BookingRequest, customer_id: Optional[str] = None) -> BookingResult:
        """
        Réservation pending + session de paiement.
        - Échec avant persistance: rien n'est écrit (place libérée si elle avait été prise).
        - Échec de la passerelle: la réservation reste pending, sans session.
        """
        now = self.clock()
        claimed = False
        booking_number = generate_booking_number(now)
        try:
            validate_contact(request.customer)
            service = self._load_service(request.service_id)
            slot = parse_time_slot(request.slot_date, request.time_slot, service.duration)
            if slot.start_time <= now:
                raise ValidationError("Le créneau est déjà passé", code="slot_in_past", field="timeSlot")

            promotions = self.catalog.fetch_active_promotions(now)
            promotion = find_item_promotion(service.id, promotions, now)
            payment_settings = self.settings.get_payment_settings()
            pricing = compute_booking_amounts(
                service,
                final_price(service.pricing, promotion),
                payment_settings.tax_rate,
                request.payment_choice == PaymentChoice.PARTIAL,
                currency=service.pricing.currency or payment_settings.currency,
            )

            claimed = self._claim_slot(service, slot, booking_number)
            booking = Booking(
                booking_number=booking_number,
                service_id=service.id,
                service_name=service.name,
                service_image=service.images[0] if service.images else None,
                customer_id=customer_id,
                customer_email=request.customer.email.strip(),
                customer_name=request.customer.full_name,
                customer_phone=request.customer.phone.strip(),
                time_slot=slot,
                pricing=pricing,
                notes=request.notes,
            )
            created = self.bookings.insert_booking(booking)
        except StorefrontError as e:
            if claimed:
                try:
                    self.bookings.release_slot_claims(booking_number)
                except StorefrontError:
                    logger.exception("bookings: place non libérée booking_number=%s", booking_number)
            logger.info("bookings: réservation refusée service_id=%s code=%s", request.service_id, e.code)
            return BookingResult(ok=False, error=e)

        booking_id = str(created["id"])
        logger.info("bookings: réservation créée id=%s number=%s total=%s %s",
                    booking_id, booking_number, pricing.total, pricing.currency)
        try:
            session = payments_service.open_payment_session(
                self.gateway,
                amount=pricing.total,
                currency=pricing.currency,
                customer_email=booking.customer_email,
                first_name=request.customer.first_name.strip(),
                last_name=request.customer.last_name.strip(),
                booking_id=booking_id,
                metadata={
                    "bookingNumber": booking_number,
                    "paymentType": request.payment_choice.value,
                    "isPartialPayment": str(pricing.is_partial_payment).lower(),
                    "title": service.name,
                },
                sessions=self.sessions,
            )
        except StorefrontError as e:
            logger.warning("bookings: session de paiement impossible booking_id=%s: %s", booking_id, e)
            return BookingResult(ok=False, booking_id=booking_id, booking_number=booking_number, error=e)

        return BookingResult(
            ok=True,
            booking_id=booking_id,
            booking_number=booking_number,
            checkout_url=session.checkout_url,
            tx_ref=session.tx_ref,
            transaction_id=session.transaction_id,
        )


def update_booking_status(
    booking_id: str,
    target: str,
    actor: str,
    notifier: Notifier,
    ledger: LedgerRecorder,
    reason: Optional[str] = None,
    bookings=bookings_repository,
) -> dict:
    """
    Changement de statut admin, contrôlé par la machine à états.
    - canceled: libère la place du créneau
    - refunded: contre-passe l'écriture du paiement
    """
    booking = bookings.get_booking(booking_id)
    if not booking:
        raise NotFoundError(f"Réservation introuvable: {booking_id}")
    current = str(booking.get("status"))
    assert_can_transition("booking", current, target)

    stamp = utcnow().isoformat()
    extra = {}
    if target == BookingStatus.CANCELED.value:
        extra = {"canceled_at": stamp, "canceled_reason": reason}
    elif target == BookingStatus.NO_SHOW.value:
        extra = {"no_show_at": stamp}
    elif target == BookingStatus.REFUNDED.value:
        extra = {"refunded_at": stamp, "refunded_reason": reason}

    updated = bookings.transition_status(booking_id, current, target, extra)
    if updated is None:
        # Modifiée entre la lecture et l'écriture
        latest = bookings.get_booking(booking_id) or {}
        raise ValidationError(
            f"Statut modifié entre-temps ({latest.get('status')})", code="concurrent_update", field="status"
        )

    if target == BookingStatus.CANCELED.value:
        try:
            bookings.release_slot_claims(booking.get("booking_number"))
        except StorefrontError:
            logger.exception("bookings: place non libérée booking_id=%s", booking_id)
    if target == BookingStatus.REFUNDED.value and (booking.get("payment") or {}).get("paymentId"):
        entry_id = payment_entry_id(booking["payment"]["paymentId"], booking=True)
        ledger.reverse(entry_id, reason or "refund", actor)

    notifier.notify_booking_status_change(updated, target, current)
    logger.info("bookings: statut %s -> %s booking_id=%s par=%s", current, target, booking_id, actor)
    return updated
