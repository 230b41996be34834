from __future__ import annotations
import logging
from datetime import date
from typing import Callable, List, Optional, Sequence

from flowassist.errors import BillingValidationError, InvoiceStateError, IssuanceError
from flowassist.models.audit import AuditLog
from flowassist.models.invoice import EntrySelection, ExpenseSelection, GroupingMode, Invoice
from flowassist.models.timesheet import Expense, TimesheetEntry
from flowassist.services.line_builder import InvoiceLineBuilder
from flowassist.services.locking_service import LockingCoordinator
from flowassist.services.numbering_service import NumberingAuthority
from flowassist.services.rate_resolver import RateResolver
from flowassist.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


class InvoiceService:
    def __init__(
        self,
        store: RecordStore,
        numbering: Optional[NumberingAuthority] = None,
        today: Callable[[], date] = date.today,
        actor_id: Optional[str] = None,
    ):
        self.store = store
        self.numbering = numbering or NumberingAuthority(store)
        self.locking = LockingCoordinator(store)
        self.today = today
        self.actor_id = actor_id

    def _audit(self, action: str, invoice: Invoice, **details) -> None:
        self.store.add_audit_log(AuditLog(
            user_id=self.actor_id,
            action=action,
            entity_type="invoice",
            entity_id=invoice.id,
            details={"invoice_number": invoice.number, **details},
        ))

    def _resolver(self) -> RateResolver:
        profiles = {p.id: p for p in self.store.list_profiles()}
        return RateResolver(self.store.get_cabinet_settings(), profiles)

    # ----------- sélection ----------
    def billable_entries(self, matter_id: str, period_from: date, period_to: date) -> List[TimesheetEntry]:
        entries = self.store.list_timesheet_entries(matter_id=matter_id, date_from=period_from, date_to=period_to)
        return sorted(
            (e for e in entries if e.billable and not e.locked and not e.invoice_id),
            key=lambda e: (e.date, e.user_id),
        )

    def billable_expenses(self, matter_id: str) -> List[Expense]:
        return [x for x in self.store.list_expenses(matter_id=matter_id) if x.billable and not x.locked and not x.invoice_id]

    # ----------- brouillon ----------
    def create_draft(
        self,
        matter_id: Optional[str],
        period_from: date,
        period_to: date,
        entries: Sequence[EntrySelection] = (),
        expenses: Sequence[ExpenseSelection] = (),
        grouping: GroupingMode = "single",
        custom_total_ht_cents: Optional[int] = None,
    ) -> Invoice:
        if not matter_id:
            raise BillingValidationError("Aucun dossier sélectionné")
        matter = self.store.get_matter(matter_id)
        builder = InvoiceLineBuilder(self._resolver())
        lines = builder.build(
            matter,
            period_from,
            period_to,
            entries={e.id: e for e in self.store.list_timesheet_entries(matter_id=matter.id)},
            entry_selections=entries,
            expenses={x.id: x for x in self.store.list_expenses(matter_id=matter.id)},
            expense_selections=expenses,
            grouping=grouping,
            custom_total_ht_cents=custom_total_ht_cents,
        )
        invoice = Invoice(
            matter_id=matter.id,
            client_id=matter.client_id,
            period_from=period_from,
            period_to=period_to,
            lines=lines,
        ).recompute_totals()
        self.store.save_invoice(invoice)
        logger.info("Brouillon %s créé pour le dossier %s (%s HT)", invoice.id, matter.code, invoice.total_ht_cents)
        return invoice

    def delete_draft(self, invoice_id: str) -> None:
        invoice = self.store.get_invoice(invoice_id)
        if invoice.status != "draft":
            raise InvoiceStateError("Seul un brouillon peut être supprimé")
        self.store.delete_invoice(invoice_id)

    # ----------- émission ----------
    def issue(self, invoice_id: str) -> Invoice:
        """
        Numérotation, passage au statut émis et verrouillage des pièces en une
        seule transaction: au moindre échec tout est restauré, compteur compris.
        """
        with self.store.transaction():
            invoice = self.store.get_invoice(invoice_id)
            if invoice.status != "draft":
                raise InvoiceStateError(f"La facture {invoice.number or invoice.id} n'est pas un brouillon")
            if not invoice.lines:
                raise BillingValidationError("Impossible d'émettre une facture sans ligne")
            # refus avant toute écriture si une pièce a déjà été facturée
            self.locking.plan(invoice)

            today = self.today()
            number = self.numbering.allocate("invoice", today)
            invoice.number = number
            invoice.issue_date = today
            invoice.status = "issued"
            try:
                self.locking.lock_for_invoice(invoice)
                self._audit("issue_invoice", invoice, total_ttc_cents=invoice.total_ttc_cents)
                self.store.save_invoice(invoice)
            except Exception as e:
                raise IssuanceError(f"Émission de {number} annulée: {e}") from e

        logger.info("Facture %s émise (%s TTC)", invoice.number, invoice.total_ttc_cents)
        return invoice

    def void(self, invoice_id: str) -> Invoice:
        """Annule une facture émise sans avoir et libère ses temps/frais."""
        with self.store.transaction():
            invoice = self.store.get_invoice(invoice_id)
            if invoice.status != "issued":
                raise InvoiceStateError("Seule une facture émise peut être annulée")
            if self.store.list_credit_notes(invoice_id=invoice.id):
                raise InvoiceStateError("Facture déjà créditée: annulation impossible, établir un avoir")
            if invoice.paid:
                raise InvoiceStateError("Facture réglée: annulation impossible")
            released = len(invoice.locked_entry_ids), len(invoice.locked_expense_ids)
            self.locking.unlock_for_invoice(invoice)
            invoice.status = "cancelled"
            self._audit("void_invoice", invoice, released_entries=released[0], released_expenses=released[1])
            self.store.save_invoice(invoice)
        logger.info("Facture %s annulée (numéro conservé)", invoice.number)
        return invoice

    # ----------- règlement ----------
    def mark_paid(self, invoice_id: str, payment_date: Optional[date] = None) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice.status != "issued":
            raise InvoiceStateError("Seule une facture émise peut être marquée payée")
        invoice.paid = True
        invoice.payment_date = payment_date or self.today()
        return self.store.save_invoice(invoice)

    def mark_unpaid(self, invoice_id: str) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice.status != "issued":
            raise InvoiceStateError("Seule une facture émise peut être marquée impayée")
        invoice.paid = False
        invoice.payment_date = None
        return self.store.save_invoice(invoice)

    # ----------- lecture ----------
    def get(self, invoice_id: str) -> Invoice:
        return self.store.get_invoice(invoice_id)

    def list_invoices(self, matter_id: Optional[str] = None, status: Optional[str] = None) -> List[Invoice]:
        return sorted(self.store.list_invoices(matter_id, status), key=lambda i: i.created_at, reverse=True)
