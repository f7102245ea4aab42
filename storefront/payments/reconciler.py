"""
PaymentReconciler: transforme un retour de passerelle en changements d'état durables, une seule fois.

Déroulé pour un tx_ref:
  1) session inconnue -> UNKNOWN_TRANSACTION (aucune commande/réservation fantôme)
  2) cible déjà payée (ou au-delà) -> DUPLICATE, sans effet
  3) succès: montant et devise doivent égaler ceux de la session, sinon AMOUNT_MISMATCH + alerte
  4) succès conforme: pending -> paid (conditionnel), écriture de journal, stock, notification
  5) échec/expiration: pending -> canceled; un échec tardif sur une cible payée est ignoré
Rejouer un même callback est sans danger: la transition est conditionnelle et l'écriture
de journal a un identifiant déterministe.
"""
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional
import logging

from storefront.bookings import repository as bookings_repository
from storefront.errors import (
    PricingInconsistencyError,
    ReconcileOutcome,
    ReconcileResult,
    StorefrontError,
    UpstreamFailure,
)
from storefront.inventory.service import InventoryReservationService
from storefront.ledger.models import LedgerEntry, LedgerEntryType, payment_entry_id
from storefront.ledger.service import LedgerRecorder
from storefront.lifecycle import BookingStatus, OrderStatus, is_paid_or_later
from storefront.models import PaymentInfo
from storefront.notifications.service import Notifier
from storefront.orders import repository as orders_repository
from storefront.payments import repository as payments_repository
from storefront.payments.gateway import PaymentGateway
from storefront.payments.models import (
    GatewayCallback,
    PaymentSession,
    PaymentSessionStatus,
    map_payment_method,
)
from storefront.pricing import money
from storefront.utils.clock import utcnow

logger = logging.getLogger(__name__)

_FAILURE_SESSION_STATUS = {
    "failed": PaymentSessionStatus.FAILED,
    "expired": PaymentSessionStatus.EXPIRED,
    "canceled": PaymentSessionStatus.CANCELED,
    "cancelled": PaymentSessionStatus.CANCELED,
}


class PaymentReconciler:
    def __init__(
        self,
        gateway: PaymentGateway,
        inventory: InventoryReservationService,
        ledger: LedgerRecorder,
        notifier: Notifier,
        sessions=payments_repository,
        orders=orders_repository,
        bookings=bookings_repository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.inventory = inventory
        self.ledger = ledger
        self.notifier = notifier
        self.sessions = sessions
        self.orders = orders
        self.bookings = bookings
        self.clock = clock

    # --- Points d'entrée ---

    def handle_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Optional[ReconcileResult]:
        """
        Authentifie le webhook puis réconcilie après vérification auprès de la passerelle.
        - None pour un événement non géré.
        - InvalidSignatureError est propagée (rejet 400 côté vue).
        """
        callback = self.gateway.parse_webhook(payload, headers)
        if callback is None:
            return None
        return self.reconcile(callback, verify=True)

    def verify_transaction(self, tx_ref: str) -> ReconcileResult:
        """Vérification explicite (retour client, polling): l'état vient directement de la passerelle."""
        session = self.sessions.get_session_by_tx_ref(tx_ref)
        if session is None:
            return self._unknown(tx_ref)
        try:
            callback = self.gateway.verify(tx_ref, session.gateway_reference)
        except UpstreamFailure as e:
            logger.warning("reconciler: vérification impossible tx_ref=%s: %s", tx_ref, e)
            return ReconcileResult(ReconcileOutcome.UNVERIFIED, tx_ref, session.order_id, session.booking_id, error=e)
        return self._apply(session, callback)

    def reconcile(self, callback: GatewayCallback, verify: bool = False) -> ReconcileResult:
        session = self.sessions.get_session_by_tx_ref(callback.tx_ref)
        if session is None:
            return self._unknown(callback.tx_ref)
        if verify:
            try:
                verified = self.gateway.verify(callback.tx_ref, session.gateway_reference)
            except UpstreamFailure as e:
                logger.warning("reconciler: webhook non vérifié tx_ref=%s: %s", callback.tx_ref, e)
                return ReconcileResult(ReconcileOutcome.UNVERIFIED, callback.tx_ref, session.order_id, session.booking_id, error=e)
            if verified.status != callback.status:
                logger.warning(
                    "reconciler: statut webhook=%s différent de la vérification=%s tx_ref=%s",
                    callback.status, verified.status, callback.tx_ref,
                )
            if callback.is_failure and not (verified.is_success or verified.is_failure):
                # La passerelle ne contredit pas l'échec signé: il est conservé
                callback = replace(verified, status=callback.status,
                                   failure_reason=callback.failure_reason or verified.failure_reason)
            else:
                callback = verified
        return self._apply(session, callback)

    # --- Cœur ---

    def _unknown(self, tx_ref: str) -> ReconcileResult:
        logger.warning("reconciler: transaction inconnue tx_ref=%s", tx_ref)
        return ReconcileResult(ReconcileOutcome.UNKNOWN_TRANSACTION, tx_ref)

    def _load_target(self, session: PaymentSession) -> Optional[Dict[str, Any]]:
        if session.order_id:
            return self.orders.get_order(session.order_id)
        if session.booking_id:
            return self.bookings.get_booking(session.booking_id)
        return None

    def _result(self, outcome: ReconcileOutcome, session: PaymentSession, status: Optional[str] = None,
                error: Optional[StorefrontError] = None) -> ReconcileResult:
        return ReconcileResult(outcome, session.tx_ref, session.order_id, session.booking_id, status, error)

    def _apply(self, session: PaymentSession, callback: GatewayCallback) -> ReconcileResult:
        target = self._load_target(session)
        if target is None:
            logger.error("reconciler: cible introuvable tx_ref=%s order_id=%s booking_id=%s",
                         session.tx_ref, session.order_id, session.booking_id)
            return self._result(ReconcileOutcome.UNKNOWN_TRANSACTION, session)
        status = str(target.get("status") or "")

        if callback.is_success:
            if is_paid_or_later(status):
                if session.status != PaymentSessionStatus.COMPLETED:
                    # Cible déjà réglée par une autre session: double encaissement possible
                    self.notifier.alert_operator("payment_on_paid_target", {
                        "txRef": session.tx_ref,
                        "orderId": session.order_id,
                        "bookingId": session.booking_id,
                        "status": status,
                    })
                    return self._result(ReconcileOutcome.DUPLICATE, session, status)
                # Rejeu: l'écriture a un id déterministe, la reposer ne la duplique pas
                try:
                    self._post_ledger(session, target, callback)
                except StorefrontError:
                    logger.exception("reconciler: écriture de journal impossible au rejeu tx_ref=%s", session.tx_ref)
                logger.info("reconciler: callback déjà traité tx_ref=%s status=%s", session.tx_ref, status)
                return self._result(ReconcileOutcome.DUPLICATE, session, status)
            if status != "pending":
                self.notifier.alert_operator("payment_on_closed_target", {
                    "txRef": session.tx_ref,
                    "orderId": session.order_id,
                    "bookingId": session.booking_id,
                    "status": status,
                })
                return self._result(ReconcileOutcome.CONFLICT, session, status)
            return self._on_success(session, target, callback)

        if callback.is_failure:
            if is_paid_or_later(status):
                logger.warning("reconciler: échec tardif ignoré tx_ref=%s status=%s", session.tx_ref, status)
                return self._result(ReconcileOutcome.LATE_FAILURE_IGNORED, session, status)
            if status != "pending":
                return self._result(ReconcileOutcome.DUPLICATE, session, status)
            return self._on_failure(session, target, callback)

        return self._result(ReconcileOutcome.PENDING, session, status)

    def _on_success(self, session: PaymentSession, target: Dict[str, Any], callback: GatewayCallback) -> ReconcileResult:
        expected_amount = money(session.amount)
        expected_currency = (session.currency or "").upper()
        received_amount = money(callback.amount) if callback.amount is not None else None
        received_currency = (callback.currency or "").upper() or None
        if received_amount != expected_amount or received_currency != expected_currency:
            error = PricingInconsistencyError(
                session.tx_ref, expected_amount, expected_currency, received_amount, received_currency
            )
            logger.error("reconciler: %s", error.message)
            self.notifier.alert_operator("amount_mismatch", {
                "txRef": session.tx_ref,
                "orderId": session.order_id,
                "bookingId": session.booking_id,
                "expectedAmount": str(expected_amount),
                "expectedCurrency": expected_currency,
                "receivedAmount": str(received_amount) if received_amount is not None else None,
                "receivedCurrency": received_currency,
            })
            self.sessions.update_session(session.tx_ref, {"failure_reason": "amount_mismatch"})
            return self._result(ReconcileOutcome.AMOUNT_MISMATCH, session, "pending", error)

        now = self.clock()
        method = map_payment_method(callback.channel)
        payment = PaymentInfo(
            payment_id=session.transaction_id,
            payment_method=method.value,
            paid_at=now,
            amount=expected_amount,
            currency=expected_currency,
        )
        self.sessions.update_session(session.tx_ref, {
            "status": PaymentSessionStatus.COMPLETED.value,
            "payment_method": method.value,
            "gateway_reference": callback.reference or session.gateway_reference,
            "completed_at": now.isoformat(),
        })

        is_order = bool(session.order_id)
        repo = self.orders if is_order else self.bookings
        target_id = session.order_id or session.booking_id
        updated = repo.transition_status(target_id, "pending", "paid", {"payment": payment.to_json()})
        if updated is None:
            # Un autre traitement a fait passer la cible avant nous
            current = self._load_target(session) or {}
            return self._result(ReconcileOutcome.DUPLICATE, session, current.get("status"))

        if is_order:
            try:
                self.inventory.adjust_for_paid_order(target_id)
            except StorefrontError:
                logger.exception("reconciler: ajustement du stock impossible order_id=%s", target_id)
            self.notifier.notify_order_status_change(updated, OrderStatus.PAID.value, "pending")
        else:
            self.notifier.notify_booking_status_change(updated, BookingStatus.PAID.value, "pending")

        self.notifier.notify_payment_success({
            "txRef": session.tx_ref,
            "orderId": session.order_id,
            "bookingId": session.booking_id,
            "amount": str(expected_amount),
            "currency": expected_currency,
            "paymentMethod": method.value,
        }, session.customer_email or updated.get("customer_email"))

        # En dernier: si l'écriture échoue, la passerelle rejoue et la branche DUPLICATE la repose
        self._post_ledger(session, updated, callback)
        logger.info("reconciler: paiement confirmé tx_ref=%s cible=%s", session.tx_ref, target_id)
        return self._result(ReconcileOutcome.PAID, session, "paid")

    def _post_ledger(self, session: PaymentSession, target: Dict[str, Any], callback: GatewayCallback) -> None:
        is_booking = not session.order_id
        if is_booking:
            description = f"Paiement réservation {target.get('booking_number') or session.booking_id}"
        else:
            description = f"Vente commande {target.get('order_number') or session.order_id}"
        entry = LedgerEntry(
            id=payment_entry_id(session.transaction_id, booking=is_booking),
            entry_type=LedgerEntryType.BOOKING_PAYMENT if is_booking else LedgerEntryType.ORDER_SALE,
            amount=money(session.amount),
            currency=(session.currency or "").upper(),
            description=description,
            order_id=session.order_id,
            booking_id=session.booking_id,
            payment_id=session.transaction_id,
            metadata={
                "txRef": session.tx_ref,
                "gateway": session.gateway,
                "reference": callback.reference,
                "paymentMethod": map_payment_method(callback.channel).value,
            },
        )
        self.ledger.record(entry)

    def _on_failure(self, session: PaymentSession, target: Dict[str, Any], callback: GatewayCallback) -> ReconcileResult:
        now = self.clock()
        reason = callback.failure_reason or f"payment_{callback.status}"
        is_order = bool(session.order_id)
        repo = self.orders if is_order else self.bookings
        target_id = session.order_id or session.booking_id

        updated = repo.transition_status(target_id, "pending", "canceled", {
            "canceled_reason": reason,
            "canceled_at": now.isoformat(),
        })
        session_status = _FAILURE_SESSION_STATUS.get(callback.status, PaymentSessionStatus.FAILED)
        self.sessions.update_session(session.tx_ref, {"status": session_status.value, "failure_reason": reason})
        if updated is None:
            current = self._load_target(session) or {}
            current_status = str(current.get("status") or "")
            if is_paid_or_later(current_status):
                return self._result(ReconcileOutcome.LATE_FAILURE_IGNORED, session, current_status)
            return self._result(ReconcileOutcome.DUPLICATE, session, current_status)

        if is_order:
            try:
                self.inventory.release(target_id)
            except StorefrontError:
                logger.exception("reconciler: libération du stock impossible order_id=%s", target_id)
            self.notifier.notify_order_status_change(updated, OrderStatus.CANCELED.value, "pending")
        else:
            try:
                self.bookings.release_slot_claims(updated.get("booking_number") or target.get("booking_number"))
            except StorefrontError:
                logger.exception("reconciler: libération du créneau impossible booking_id=%s", target_id)
            self.notifier.notify_booking_status_change(updated, BookingStatus.CANCELED.value, "pending")

        self.notifier.notify_payment_failed({
            "txRef": session.tx_ref,
            "orderId": session.order_id,
            "bookingId": session.booking_id,
            "reason": reason,
        }, session.customer_email or updated.get("customer_email"))
        logger.info("reconciler: paiement en échec tx_ref=%s statut=%s cible annulée=%s", session.tx_ref, callback.status, target_id)
        return self._result(ReconcileOutcome.CANCELED, session, "canceled")
