"""
Reprise des réservations de stock en attente (outbox porté par la commande).

La commande est persistée avec reservation_status='pending'. Le checkout tente une réservation
immédiate; en cas d'échec, ou si elle n'a pas eu lieu, ce worker réessaie avec un délai exponentiel
(base * 2**essais) jusqu'à INVENTORY_RETRY_MAX_ATTEMPTS.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional
import asyncio
import logging

from storefront import config
from storefront.errors import StorefrontError
from storefront.inventory.models import ReservationStatus
from storefront.inventory.service import InventoryReservationService
from storefront.orders import repository as orders_repository
from storefront.utils.clock import utcnow

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_seconds: int) -> timedelta:
    return timedelta(seconds=base_seconds * (2 ** max(attempt, 0)))


def schedule_retry(
    order_id: str,
    attempt: int,
    error: Exception,
    orders=orders_repository,
    base_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> datetime:
    """
    Marque l'intention 'failed' et fixe la prochaine tentative. Retourne l'échéance.
    Sans effet si l'intention a quitté pending|failed entre-temps (réservée ou libérée ailleurs).
    """
    base = config.INVENTORY_RETRY_BASE_DELAY_SECONDS if base_seconds is None else base_seconds
    next_at = (now or utcnow()) + backoff_delay(attempt, base)
    orders.set_reservation_state(
        order_id,
        ReservationStatus.FAILED,
        attempts=attempt,
        next_attempt_at=next_at,
        last_error=str(error)[:500],
        expected=(ReservationStatus.PENDING, ReservationStatus.FAILED),
    )
    return next_at


class ReservationRetryWorker:
    def __init__(
        self,
        inventory: InventoryReservationService,
        orders=orders_repository,
        max_attempts: Optional[int] = None,
        base_delay_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.inventory = inventory
        self.orders = orders
        self.max_attempts = config.INVENTORY_RETRY_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.base_delay_seconds = (
            config.INVENTORY_RETRY_BASE_DELAY_SECONDS if base_delay_seconds is None else base_delay_seconds
        )
        self.clock = clock

    def run_once(self) -> int:
        """Traite un lot d'intentions échues. Retourne le nombre de réservations réussies."""
        now = self.clock()
        backlog = self.orders.fetch_reservation_backlog(now, self.max_attempts)
        reserved = 0
        for row in backlog:
            order_id = str(row.get("id"))
            attempt = int(row.get("reservation_attempts") or 0) + 1
            try:
                self.inventory.reserve(order_id)
                reserved += 1
            except StorefrontError as e:
                next_at = schedule_retry(
                    order_id, attempt, e, orders=self.orders, base_seconds=self.base_delay_seconds, now=now
                )
                if attempt >= self.max_attempts:
                    logger.error("inventory.worker: abandon après %s essais order_id=%s: %s", attempt, order_id, e)
                else:
                    logger.warning("inventory.worker: échec order_id=%s essai=%s prochain=%s: %s", order_id, attempt, next_at, e)
        if backlog:
            logger.info("inventory.worker: lot traité total=%s réservés=%s", len(backlog), reserved)
        return reserved

    async def run_forever(self, interval_seconds: int) -> None:
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("inventory.worker: itération en erreur")
            await asyncio.sleep(interval_seconds)
