"""
LedgerRecorder: contrat du journal financier et implémentation Supabase.
- record: idempotent par identifiant (rejouer renvoie (id, False)).
- reverse: marque l'écriture d'origine, sans créer d'écriture négative.
"""
from abc import ABC, abstractmethod
from typing import Optional, Tuple
import logging

from storefront.errors import NotFoundError, ValidationError
from storefront.ledger import repository as ledger_repository
from storefront.ledger.models import LedgerEntry, LedgerEntryStatus
from storefront.utils.clock import utcnow_iso

logger = logging.getLogger(__name__)


class LedgerRecorder(ABC):
    @abstractmethod
    def record(self, entry: LedgerEntry) -> Tuple[str, bool]:
        """Enregistre l'écriture; retourne (id, créée?)."""

    @abstractmethod
    def get(self, entry_id: str) -> Optional[LedgerEntry]:
        ...

    @abstractmethod
    def reverse(self, entry_id: str, reason: str, reversed_by: str) -> LedgerEntry:
        ...


class SupabaseLedgerRecorder(LedgerRecorder):
    def __init__(self, repository=ledger_repository):
        self.repository = repository

    def record(self, entry: LedgerEntry) -> Tuple[str, bool]:
        if entry.amount <= 0 or not entry.currency or not entry.description:
            raise ValidationError("Écriture comptable incomplète", code="ledger_invalid")
        row = entry.model_dump(mode="json", exclude_none=True)
        row["status"] = LedgerEntryStatus.CONFIRMED.value
        row.setdefault("created_at", utcnow_iso())
        row["updated_at"] = row["created_at"]
        created = self.repository.insert_entry(row)
        if created is None:
            logger.info("ledger: écriture déjà présente id=%s", entry.id)
            return entry.id, False
        logger.info("ledger: écriture créée id=%s type=%s montant=%s %s", entry.id, entry.entry_type.value, entry.amount, entry.currency)
        return entry.id, True

    def get(self, entry_id: str) -> Optional[LedgerEntry]:
        row = self.repository.get_entry(entry_id)
        return LedgerEntry(**row) if row else None

    def reverse(self, entry_id: str, reason: str, reversed_by: str) -> LedgerEntry:
        """Contre-passe une écriture confirmée; une écriture déjà contre-passée est renvoyée telle quelle."""
        row = self.repository.mark_reversed(entry_id, reason, reversed_by)
        if row is None:
            existing = self.repository.get_entry(entry_id)
            if not existing:
                raise NotFoundError(f"Écriture introuvable: {entry_id}")
            return LedgerEntry(**existing)
        logger.info("ledger: écriture contre-passée id=%s par=%s", entry_id, reversed_by)
        return LedgerEntry(**row)
