"""
Service de réservation de stock.

- InventoryReservationService: contrat attendu par les orchestrateurs et le réconciliateur.
- SupabaseInventoryService: implémentation par compare-and-set sur la ligne produit
  (lecture, calcul, écriture conditionnée aux valeurs lues, nouvel essai en cas de conflit).
Cycle d'une commande: reserve -> adjust_for_paid_order (paiement) ou release (annulation).
L'intention portée par la commande passe par des mises à jour conditionnelles
(pending|failed -> reserving -> reserved -> committed | released): un seul appelant touche au stock.
Une intention restée 'reserving' après un arrêt brutal se remet à 'failed' à la main.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from storefront.catalog.models import ItemStatus
from storefront.errors import InsufficientStockError, NotFoundError, UpstreamFailure
from storefront.inventory import repository as stock_repository
from storefront.inventory.models import ReservationStatus
from storefront.lifecycle import OrderStatus
from storefront.orders import repository as orders_repository

logger = logging.getLogger(__name__)

_CLAIMABLE = (ReservationStatus.PENDING.value, ReservationStatus.FAILED.value)
_PAID_STATUSES = (
    OrderStatus.PAID.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.COMPLETED.value,
)


class InventoryReservationService(ABC):
    @abstractmethod
    def reserve(self, order_id: str) -> None:
        """Réserve le stock de toutes les lignes de la commande (tout ou rien)."""

    @abstractmethod
    def release(self, order_id: str) -> None:
        """Rend au stock la réservation d'une commande annulée (idempotent)."""

    @abstractmethod
    def adjust_for_paid_order(self, order_id: str) -> None:
        """Convertit la réservation en sortie de stock définitive (idempotent)."""


def _order_lines(order: Dict[str, Any]) -> List[Tuple[str, int]]:
    lines = []
    for item in order.get("items") or []:
        product_id = item.get("productId")
        quantity = int(item.get("quantity") or 0)
        if product_id and quantity > 0:
            lines.append((str(product_id), quantity))
    return lines


class SupabaseInventoryService(InventoryReservationService):
    def __init__(self, orders=orders_repository, stock=stock_repository, max_cas_retries: int = 5):
        self.orders = orders
        self.stock = stock
        self.max_cas_retries = max_cas_retries

    # --- Primitive atomique ---

    def _mutate(self, product_id: str, compute: Callable[[Dict[str, Any], int, int], Dict[str, Any]]) -> bool:
        """
        Boucle compare-and-set sur un produit.
        - compute(row, quantity, reserved) retourne les champs à écrire (ou lève).
        - False si l'article n'est pas un produit suivi en stock (rien à faire).
        """
        for _ in range(self.max_cas_retries):
            row = self.stock.get_stock(product_id)
            if not row or row.get("type") != "product" or row.get("track_inventory") is False:
                return False
            quantity = int(row.get("quantity") or 0)
            reserved = int(row.get("reserved") or 0)
            fields = compute(row, quantity, reserved)
            if self.stock.compare_and_set(product_id, quantity, reserved, fields):
                return True
            logger.info("inventory: conflit d'écriture product_id=%s, nouvel essai", product_id)
        raise UpstreamFailure(f"Stock trop disputé pour {product_id}", service="inventory", code="inventory_contention")

    def _reserve_units(self, product_id: str, quantity: int) -> bool:
        def compute(row, current_quantity, current_reserved):
            new_reserved = current_reserved + quantity
            available = current_quantity - new_reserved
            if available < 0:
                raise InsufficientStockError(product_id, quantity, max(current_quantity - current_reserved, 0))
            return {"reserved": new_reserved, "available": available}

        return self._mutate(product_id, compute)

    def _release_units(self, product_id: str, quantity: int) -> bool:
        def compute(row, current_quantity, current_reserved):
            new_reserved = max(0, current_reserved - quantity)
            return {"reserved": new_reserved, "available": current_quantity - new_reserved}

        return self._mutate(product_id, compute)

    def _commit_units(self, product_id: str, quantity: int) -> bool:
        def compute(row, current_quantity, current_reserved):
            new_quantity = max(0, current_quantity - quantity)
            new_reserved = max(0, current_reserved - quantity)
            available = max(0, new_quantity - new_reserved)
            fields: Dict[str, Any] = {"quantity": new_quantity, "reserved": new_reserved, "available": available}
            if available <= 0:
                fields["status"] = ItemStatus.OUT_OF_STOCK.value
            return fields

        return self._mutate(product_id, compute)

    # --- Contrat ---

    def _load(self, order_id: str) -> Dict[str, Any]:
        order = self.orders.get_order(order_id)
        if not order:
            raise NotFoundError(f"Commande introuvable: {order_id}")
        return order

    def _is_paid(self, order: Dict[str, Any]) -> bool:
        return order.get("status") in _PAID_STATUSES

    def reserve(self, order_id: str) -> None:
        self._reserve(self._load(order_id))

    def _reserve(self, order: Dict[str, Any], commit: bool = False) -> None:
        """
        Réserve les lignes après avoir pris l'intention (pending|failed -> reserving).
        - Un seul appelant obtient l'intention; les autres repartent sans toucher au stock.
        - Si la commande est payée entre-temps, le détenteur enchaîne sur la sortie définitive.
        """
        order_id = str(order["id"])
        previous = order.get("reservation_status") or ReservationStatus.PENDING.value
        if previous not in _CLAIMABLE:
            return
        previous = ReservationStatus(previous)
        if not self.orders.set_reservation_state(order_id, ReservationStatus.RESERVING, expected=[previous]):
            logger.info("inventory: réservation déjà prise en charge order_id=%s", order_id)
            return

        done: List[Tuple[str, int]] = []
        try:
            for product_id, quantity in _order_lines(order):
                if self._reserve_units(product_id, quantity):
                    done.append((product_id, quantity))
        except Exception:
            # Tout ou rien: on rend ce qui a déjà été pris
            self._rollback(order_id, done)
            self.orders.set_reservation_state(order_id, previous, expected=[ReservationStatus.RESERVING])
            raise

        if not self.orders.set_reservation_state(
            order_id, ReservationStatus.RESERVED, expected=[ReservationStatus.RESERVING]
        ):
            # Intention libérée pendant la réservation
            self._rollback(order_id, done)
            logger.info("inventory: réservation abandonnée, commande libérée order_id=%s", order_id)
            return
        logger.info("inventory: stock réservé order_id=%s lignes=%s", order_id, len(done))

        current = self._load(order_id)
        if commit or self._is_paid(current):
            self._commit(current)

    def _rollback(self, order_id: str, done: List[Tuple[str, int]]) -> None:
        for product_id, quantity in done:
            try:
                self._release_units(product_id, quantity)
            except Exception:
                logger.exception("inventory: compensation impossible product_id=%s order_id=%s", product_id, order_id)

    def _commit(self, order: Dict[str, Any]) -> None:
        order_id = str(order["id"])
        if not self.orders.claim_flag(order_id, "inventory_updated"):
            logger.info("inventory: déjà ajusté order_id=%s", order_id)
            return
        if not self.orders.set_reservation_state(
            order_id, ReservationStatus.COMMITTED, expected=[ReservationStatus.RESERVED]
        ):
            self.orders.reset_flag(order_id, "inventory_updated")
            logger.info("inventory: plus de réservation à sortir order_id=%s", order_id)
            return
        try:
            for product_id, quantity in _order_lines(order):
                self._commit_units(product_id, quantity)
        except Exception:
            self.orders.reset_flag(order_id, "inventory_updated")
            self.orders.set_reservation_state(
                order_id, ReservationStatus.RESERVED, expected=[ReservationStatus.COMMITTED]
            )
            raise
        logger.info("inventory: stock ajusté pour commande payée order_id=%s", order_id)

    def release(self, order_id: str) -> None:
        order = self._load(order_id)
        if order.get("inventory_updated"):
            # Stock déjà sorti définitivement: rien à rendre ici
            return
        if not self.orders.claim_flag(order_id, "inventory_released"):
            logger.info("inventory: déjà libéré order_id=%s", order_id)
            return
        for _ in range(self.max_cas_retries):
            state = order.get("reservation_status") or ReservationStatus.PENDING.value
            if state == ReservationStatus.RESERVED.value:
                if self.orders.set_reservation_state(
                    order_id, ReservationStatus.RELEASED, expected=[ReservationStatus.RESERVED]
                ):
                    for product_id, quantity in _order_lines(order):
                        self._release_units(product_id, quantity)
                    logger.info("inventory: stock libéré order_id=%s", order_id)
                    return
            elif state in _CLAIMABLE or state == ReservationStatus.RESERVING.value:
                # Rien n'est encore pris; un détenteur en cours rendra ses unités
                if self.orders.set_reservation_state(
                    order_id, ReservationStatus.RELEASED, expected=[ReservationStatus(state)]
                ):
                    logger.info("inventory: intention de réservation annulée order_id=%s", order_id)
                    return
            else:
                return
            order = self._load(order_id)
        self.orders.reset_flag(order_id, "inventory_released")
        raise UpstreamFailure(f"Réservation trop disputée pour {order_id}", service="inventory", code="inventory_contention")

    def adjust_for_paid_order(self, order_id: str) -> None:
        order = self._load(order_id)
        if order.get("inventory_updated"):
            logger.info("inventory: déjà ajusté order_id=%s", order_id)
            return
        state = order.get("reservation_status") or ReservationStatus.PENDING.value
        if state in _CLAIMABLE:
            # La réservation du checkout a échoué ou n'a pas encore eu lieu: on la refait avant de sortir le stock
            self._reserve(order, commit=True)
        elif state == ReservationStatus.RESERVED.value:
            self._commit(order)
        elif state == ReservationStatus.RESERVING.value:
            logger.info("inventory: réservation en cours, sortie laissée au détenteur order_id=%s", order_id)
