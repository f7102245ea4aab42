"""
Assemblage des collaborateurs par requête (FastAPI Depends).
Chaque requête reçoit ses propres instances: aucun état mutable partagé entre requêtes.
Les tests remplacent ces fabriques via app.dependency_overrides.
"""
from fastapi import Depends

from storefront import config
from storefront.bookings.service import BookingOrchestrator
from storefront.inventory.service import InventoryReservationService, SupabaseInventoryService
from storefront.ledger.service import LedgerRecorder, SupabaseLedgerRecorder
from storefront.notifications.service import LoggingNotifier, Notifier, SupabaseNotifier
from storefront.orders.service import CheckoutOrchestrator
from storefront.payments.gateway import PaymentGateway, build_gateway
from storefront.payments.reconciler import PaymentReconciler


def get_gateway() -> PaymentGateway:
    return build_gateway()


def get_inventory() -> InventoryReservationService:
    return SupabaseInventoryService()


def get_ledger() -> LedgerRecorder:
    return SupabaseLedgerRecorder()


def get_notifier() -> Notifier:
    if config.NOTIFIER_BACKEND == "logging":
        return LoggingNotifier()
    return SupabaseNotifier()


def get_checkout_orchestrator(
    gateway: PaymentGateway = Depends(get_gateway),
    inventory: InventoryReservationService = Depends(get_inventory),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(gateway=gateway, inventory=inventory)


def get_booking_orchestrator(gateway: PaymentGateway = Depends(get_gateway)) -> BookingOrchestrator:
    return BookingOrchestrator(gateway=gateway)


def get_reconciler(
    gateway: PaymentGateway = Depends(get_gateway),
    inventory: InventoryReservationService = Depends(get_inventory),
    ledger: LedgerRecorder = Depends(get_ledger),
    notifier: Notifier = Depends(get_notifier),
) -> PaymentReconciler:
    return PaymentReconciler(gateway=gateway, inventory=inventory, ledger=ledger, notifier=notifier)
