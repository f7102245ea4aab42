"""
Cas d'usage 'orders': checkout (panier -> commande pending + session de paiement) et statuts admin.

Ordre strict du checkout:
  validation -> prix (instantané par ligne) -> livraison -> totaux -> persistance
  -> réservation du stock (non bloquante) -> session de paiement
"""
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
import logging
import random

from storefront import config
from storefront.catalog import repository as catalog_repository
from storefront.catalog.models import ItemStatus, ProductItem
from storefront.delivery import repository as delivery_repository
from storefront.delivery.models import DeliveryProvider, Destination, FulfillmentMethod, district_in_region
from storefront.delivery.resolver import resolve_delivery_cost
from storefront.errors import CheckoutResult, NotFoundError, StorefrontError, ValidationError
from storefront.inventory.service import InventoryReservationService
from storefront.inventory.worker import schedule_retry
from storefront.ledger.models import payment_entry_id
from storefront.ledger.service import LedgerRecorder
from storefront.lifecycle import OrderStatus, assert_can_transition
from storefront.notifications.service import Notifier
from storefront.orders import repository as orders_repository
from storefront.orders.models import (
    Address,
    CheckoutRequest,
    Order,
    OrderDelivery,
    OrderItem,
    OrderPricing,
)
from storefront.payments import repository as payments_repository
from storefront.payments import service as payments_service
from storefront.payments.gateway import PaymentGateway
from storefront.pricing import compute_tax, money, quote_item
from storefront.settings import repository as settings_repository
from storefront.utils.clock import utcnow
from storefront.utils.validators import validate_contact

logger = logging.getLogger(__name__)


def generate_order_number(now: Optional[datetime] = None) -> str:
    stamp = int((now or utcnow()).timestamp() * 1000)
    return f"ORD-{stamp}-{random.randint(0, 999)}"


def order_totals(items: List[OrderItem], shipping, tax_rate, currency: str, discount=0) -> OrderPricing:
    """total = subtotal + shipping + tax - discount, chaque terme arrondi à l'unité mineure."""
    subtotal = money(sum((i.subtotal for i in items), money(0)))
    shipping = money(shipping)
    tax = compute_tax(subtotal, tax_rate)
    discount = money(discount)
    return OrderPricing(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        discount=discount,
        total=money(subtotal + shipping + tax - discount),
        currency=currency,
        tax_rate=money(tax_rate),
    )


class CheckoutOrchestrator:
    def __init__(
        self,
        gateway: PaymentGateway,
        inventory: InventoryReservationService,
        catalog=catalog_repository,
        delivery=delivery_repository,
        orders=orders_repository,
        settings=settings_repository,
        sessions=payments_repository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.inventory = inventory
        self.catalog = catalog
        self.delivery = delivery
        self.orders = orders
        self.settings = settings
        self.sessions = sessions
        self.clock = clock

    # --- Étapes ---

    def _resolve_address(self, request: CheckoutRequest, customer_id: Optional[str]) -> Optional[Address]:
        selection = request.delivery
        if selection.address_id:
            if not customer_id:
                raise ValidationError("Connexion requise pour une adresse enregistrée", code="required", field="addressId")
            address = self.orders.get_customer_address(customer_id, selection.address_id)
            if address is None:
                raise ValidationError("Adresse introuvable", code="invalid_address", field="addressId")
            return address
        return selection.address

    def validate_checkout(self, request: CheckoutRequest, customer_id: Optional[str] = None) -> Tuple[Optional[Address], Optional[DeliveryProvider]]:
        """
        Contrôles bloquants avant tout calcul: coordonnées, panier, livraison.
        Retourne (adresse, prestataire) pour une livraison, (None, None) pour un retrait.
        """
        validate_contact(request.customer)
        if not request.lines:
            raise ValidationError("Le panier est vide", code="empty_cart", field="lines")
        if request.delivery.method == FulfillmentMethod.PICKUP:
            return None, None

        if not request.delivery.provider_id:
            raise ValidationError("Choisissez un prestataire de livraison", code="required", field="providerId")
        address = self._resolve_address(request, customer_id)
        if address is None or not address.area_or_village.strip():
            raise ValidationError("Adresse de livraison obligatoire", code="required", field="address")
        if not address.region:
            raise ValidationError("La région est obligatoire", code="required", field="region")
        if not address.district:
            raise ValidationError("Le district est obligatoire", code="required", field="district")
        if not district_in_region(address.district, address.region):
            raise ValidationError("Ce district n'appartient pas à la région choisie", code="invalid_district", field="district")

        provider = self.delivery.get_provider(request.delivery.provider_id)
        if provider is None:
            raise ValidationError("Prestataire de livraison indisponible", code="invalid_provider", field="providerId")
        return address, provider

    def price_lines(self, request: CheckoutRequest, now: datetime) -> Tuple[List[OrderItem], str]:
        """Instantané des prix finaux (promotion + frais) pour chaque ligne du panier."""
        quantities: Dict[str, int] = {}
        for line in request.lines:
            quantities[line.item_id] = quantities.get(line.item_id, 0) + line.quantity

        items = self.catalog.fetch_items_by_ids(list(quantities))
        promotions = self.catalog.fetch_active_promotions(now)
        snapshot: List[OrderItem] = []
        currency = None
        for item_id, quantity in quantities.items():
            item = items.get(str(item_id))
            if not isinstance(item, ProductItem):
                raise ValidationError(f"Produit introuvable: {item_id}", code="unknown_item", field="lines")
            if item.status != ItemStatus.ACTIVE:
                raise ValidationError(f"Produit indisponible: {item.name}", code="item_unavailable", field="lines")
            if currency and item.pricing.currency != currency:
                raise ValidationError("Le panier mélange plusieurs devises", code="mixed_currency", field="lines")
            currency = item.pricing.currency
            quote = quote_item(item, promotions, now)
            snapshot.append(OrderItem(
                product_id=item.id,
                product_name=item.name,
                product_image=item.images[0] if item.images else None,
                quantity=quantity,
                unit_price=quote.final_price,
                subtotal=money(quote.final_price * quantity),
                sku=item.sku,
                promotion_id=quote.promotion_id,
            ))
        return snapshot, currency

    # --- Orchestration ---

    def checkout(self, request: CheckoutRequest, customer_id: Optional[str] = None) -> CheckoutResult:
        """
        Commande pending + session de paiement.
        - Échec avant persistance: CheckoutResult(ok=False), aucune commande écrite.
        - Échec de réservation du stock: journalisé, reprise par le worker.
        - Échec de la passerelle: la commande reste pending, sans session.
        """
        now = self.clock()
        try:
            address, provider = self.validate_checkout(request, customer_id)
            items, currency = self.price_lines(request, now)
            payment_settings = self.settings.get_payment_settings()
            currency = currency or payment_settings.currency
            destination = Destination(district=address.district, region=address.region) if address else None
            shipping = resolve_delivery_cost(provider, destination, request.delivery.method)
            order = Order(
                order_number=generate_order_number(now),
                customer_id=customer_id,
                customer_email=request.customer.email.strip(),
                customer_name=request.customer.full_name,
                customer_phone=request.customer.phone.strip(),
                status=OrderStatus.PENDING,
                items=items,
                pricing=order_totals(items, shipping, payment_settings.tax_rate, currency),
                delivery=OrderDelivery(
                    method=request.delivery.method,
                    provider_id=provider.id if provider else None,
                    address=address,
                ),
                notes=request.notes,
            )
            retry_not_before = now + timedelta(seconds=config.INVENTORY_RETRY_BASE_DELAY_SECONDS)
            created = self.orders.insert_order(order, retry_not_before=retry_not_before)
        except StorefrontError as e:
            logger.info("orders: checkout refusé code=%s", e.code)
            return CheckoutResult(ok=False, error=e)

        order_id = str(created["id"])
        logger.info("orders: commande créée id=%s number=%s total=%s %s",
                    order_id, order.order_number, order.pricing.total, order.pricing.currency)

        try:
            self.inventory.reserve(order_id)
        except StorefrontError as e:
            logger.warning("orders: réservation du stock différée order_id=%s: %s", order_id, e)
            try:
                schedule_retry(order_id, 1, e, orders=self.orders, now=now)
            except StorefrontError:
                logger.exception("orders: reprise de réservation non planifiée order_id=%s", order_id)

        try:
            session = payments_service.open_payment_session(
                self.gateway,
                amount=order.pricing.total,
                currency=order.pricing.currency,
                customer_email=order.customer_email,
                first_name=request.customer.first_name.strip(),
                last_name=request.customer.last_name.strip(),
                order_id=order_id,
                metadata={"orderNumber": order.order_number, "title": f"Commande {order.order_number}"},
                sessions=self.sessions,
            )
        except StorefrontError as e:
            logger.warning("orders: session de paiement impossible order_id=%s: %s", order_id, e)
            return CheckoutResult(ok=False, order_id=order_id, order_number=order.order_number, error=e)

        return CheckoutResult(
            ok=True,
            order_id=order_id,
            order_number=order.order_number,
            checkout_url=session.checkout_url,
            tx_ref=session.tx_ref,
            transaction_id=session.transaction_id,
        )


def update_order_status(
    order_id: str,
    target: str,
    actor: str,
    inventory: InventoryReservationService,
    notifier: Notifier,
    ledger: LedgerRecorder,
    reason: Optional[str] = None,
    orders=orders_repository,
) -> dict:
    """
    Changement de statut admin, contrôlé par la machine à états.
    - canceled: rend le stock réservé (sans effet si déjà sorti)
    - refunded: contre-passe l'écriture de vente
    """
    order = orders.get_order(order_id)
    if not order:
        raise NotFoundError(f"Commande introuvable: {order_id}")
    current = str(order.get("status"))
    assert_can_transition("order", current, target)

    stamp = utcnow().isoformat()
    extra = {}
    if target == OrderStatus.CANCELED.value:
        extra = {"canceled_at": stamp, "canceled_reason": reason}
    elif target == OrderStatus.REFUNDED.value:
        extra = {"refunded_at": stamp, "refunded_reason": reason}
    elif target == OrderStatus.SHIPPED.value:
        extra = {"shipped_at": stamp}

    updated = orders.transition_status(order_id, current, target, extra)
    if updated is None:
        latest = orders.get_order(order_id) or {}
        raise ValidationError(
            f"Statut modifié entre-temps ({latest.get('status')})", code="concurrent_update", field="status"
        )

    if target == OrderStatus.CANCELED.value:
        try:
            inventory.release(order_id)
        except StorefrontError:
            logger.exception("orders: stock non libéré order_id=%s", order_id)
    if target == OrderStatus.REFUNDED.value and (order.get("payment") or {}).get("paymentId"):
        ledger.reverse(payment_entry_id(order["payment"]["paymentId"]), reason or "refund", actor)

    notifier.notify_order_status_change(updated, target, current)
    logger.info("orders: statut %s -> %s order_id=%s par=%s", current, target, order_id, actor)
    return updated
