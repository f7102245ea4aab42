"""
Notifications client et alertes opérateur.
- Notifier: contrat (le rendu des messages est hors périmètre).
- LoggingNotifier: journalise uniquement.
- SupabaseNotifier: insère une ligne dans 'notifications' (lue par le front / l'admin).
Un échec d'envoi est journalisé et n'interrompt jamais le traitement appelant.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

import storefront.infra.supabase_client as supabase_client
from storefront.utils.clock import utcnow_iso

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def send(self, kind: str, payload: Dict[str, Any], recipient: Optional[str] = None) -> None:
        ...

    def notify_order_status_change(self, order: Dict[str, Any], status: str, previous_status: Optional[str]) -> None:
        self._safe("order_status", {
            "orderId": order.get("id"),
            "orderNumber": order.get("order_number"),
            "customerId": order.get("customer_id"),
            "status": status,
            "previousStatus": previous_status,
        }, order.get("customer_email"))

    def notify_booking_status_change(self, booking: Dict[str, Any], status: str, previous_status: Optional[str]) -> None:
        self._safe("booking_status", {
            "bookingId": booking.get("id"),
            "bookingNumber": booking.get("booking_number"),
            "customerId": booking.get("customer_id"),
            "status": status,
            "previousStatus": previous_status,
        }, booking.get("customer_email"))

    def notify_payment_success(self, payload: Dict[str, Any], recipient: Optional[str]) -> None:
        self._safe("payment_success", payload, recipient)

    def notify_payment_failed(self, payload: Dict[str, Any], recipient: Optional[str]) -> None:
        self._safe("payment_failed", payload, recipient)

    def alert_operator(self, reason: str, payload: Dict[str, Any]) -> None:
        logger.error("ALERTE opérateur: %s %s", reason, payload)
        self._safe("operator_alert", {"reason": reason, **payload}, None)

    def _safe(self, kind: str, payload: Dict[str, Any], recipient: Optional[str]) -> None:
        try:
            self.send(kind, payload, recipient)
        except Exception:
            logger.exception("notifications: envoi impossible kind=%s recipient=%s", kind, recipient)


class LoggingNotifier(Notifier):
    def send(self, kind: str, payload: Dict[str, Any], recipient: Optional[str] = None) -> None:
        logger.info("notification kind=%s recipient=%s payload=%s", kind, recipient, payload)


class SupabaseNotifier(Notifier):
    def send(self, kind: str, payload: Dict[str, Any], recipient: Optional[str] = None) -> None:
        (
            supabase_client.get_service_supabase()
            .table("notifications")
            .insert({
                "kind": kind,
                "recipient_email": recipient,
                "customer_id": payload.get("customerId"),
                "payload": payload,
                "is_read": False,
                "created_at": utcnow_iso(),
            })
            .execute()
        )
