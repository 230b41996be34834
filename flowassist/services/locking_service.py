from __future__ import annotations
import logging
from typing import List, Tuple

from flowassist.errors import LockingError
from flowassist.models.invoice import Invoice
from flowassist.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


class LockingCoordinator:
    """Verrouillage des temps et frais consommés par une facture émise."""

    def __init__(self, store: RecordStore):
        self.store = store

    def plan(self, invoice: Invoice) -> Tuple[List[str], List[str]]:
        """
        Liste (temps, frais) à verrouiller pour cette facture, après contrôle
        qu'aucun n'est déjà pris par une autre facture. Ne modifie rien.
        """
        entries = {e.id: e for e in self.store.list_timesheet_entries(matter_id=invoice.matter_id)}
        expenses = {x.id: x for x in self.store.list_expenses(matter_id=invoice.matter_id)}

        entry_ids = invoice.referenced_entry_ids()
        expense_ids = invoice.referenced_expense_ids()

        # Lignes sans référence (anciennes données): on retombe sur la période.
        # Heuristique imprécise, à supprimer quand toutes les lignes seront tracées.
        legacy = [ln for ln in invoice.lines if ln.is_legacy]
        if legacy:
            fallback = [
                e.id for e in entries.values()
                if e.billable and not e.locked and not e.invoice_id
                and invoice.period_from <= e.date <= invoice.period_to
                and e.id not in entry_ids
            ]
            logger.warning(
                "Facture %s: %d ligne(s) sans référence, verrouillage de %d temps sur la période",
                invoice.id, len(legacy), len(fallback),
            )
            entry_ids = entry_ids + fallback

        for eid in entry_ids:
            e = entries.get(eid)
            if e is None:
                raise LockingError(f"Temps introuvable pour la facture: {eid}")
            if e.invoice_id not in (None, invoice.id) or (e.locked and e.invoice_id != invoice.id):
                raise LockingError(f"Le temps {eid} est déjà facturé")
        for xid in expense_ids:
            x = expenses.get(xid)
            if x is None:
                raise LockingError(f"Frais introuvable pour la facture: {xid}")
            if x.invoice_id not in (None, invoice.id) or (x.locked and x.invoice_id != invoice.id):
                raise LockingError(f"Le frais {xid} est déjà facturé")
        return entry_ids, expense_ids

    def lock_for_invoice(self, invoice: Invoice) -> Invoice:
        entry_ids, expense_ids = self.plan(invoice)
        if entry_ids:
            n = self.store.lock_entries(entry_ids, invoice.id)
            if n != len(entry_ids):
                raise LockingError(f"{len(entry_ids) - n} temps n'ont pas pu être verrouillés")
        if expense_ids:
            n = self.store.lock_expenses(expense_ids, invoice.id)
            if n != len(expense_ids):
                raise LockingError(f"{len(expense_ids) - n} frais n'ont pas pu être verrouillés")
        invoice.locked_entry_ids = list(entry_ids)
        invoice.locked_expense_ids = list(expense_ids)
        logger.info("Facture %s: %d temps et %d frais verrouillés", invoice.id, len(entry_ids), len(expense_ids))
        return invoice

    def unlock_for_invoice(self, invoice: Invoice) -> Invoice:
        """Déverrouille exactement ce que l'émission avait verrouillé."""
        entry_ids = invoice.locked_entry_ids or invoice.referenced_entry_ids()
        expense_ids = invoice.locked_expense_ids or invoice.referenced_expense_ids()

        own_entries = [
            e.id for e in self.store.list_timesheet_entries(matter_id=invoice.matter_id)
            if e.id in entry_ids and e.invoice_id in (None, invoice.id)
        ]
        own_expenses = [
            x.id for x in self.store.list_expenses(matter_id=invoice.matter_id)
            if x.id in expense_ids and x.invoice_id in (None, invoice.id)
        ]
        if own_entries:
            self.store.unlock_entries(own_entries)
        if own_expenses:
            self.store.unlock_expenses(own_expenses)
        invoice.locked_entry_ids = []
        invoice.locked_expense_ids = []
        logger.info("Facture %s: %d temps et %d frais déverrouillés", invoice.id, len(own_entries), len(own_expenses))
        return invoice
