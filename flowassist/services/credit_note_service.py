from __future__ import annotations
import logging
from datetime import date
from typing import Callable, List, Optional

from pydantic import BaseModel

from flowassist.errors import BillingValidationError, InvoiceStateError
from flowassist.models.audit import AuditLog
from flowassist.models.invoice import CreditNote, Invoice
from flowassist.services.money import round_half_up
from flowassist.services.numbering_service import NumberingAuthority
from flowassist.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


class CreditAmounts(BaseModel):
    total_ht_cents: int
    total_vat_cents: int
    total_ttc_cents: int
    cancels_invoice: bool = False


class CreditNoteCalculator:
    """
    Avoir total ou partiel sur une facture émise.

    Partiel: le TTC saisi fait foi, HT et TVA sont proratisés
    (ratio = TTC saisi / TTC facture) et peuvent différer d'un centime du TTC.
    Le cumul des avoirs est plafonné au TTC restant de la facture.
    """

    def compute(
        self,
        invoice: Invoice,
        reason: str,
        partial_ttc_cents: Optional[int] = None,
        already_credited_ttc_cents: int = 0,
    ) -> CreditAmounts:
        if invoice.status != "issued":
            raise InvoiceStateError("Un avoir ne peut être établi que sur une facture émise")
        if not (reason or "").strip():
            raise BillingValidationError("Le motif de l'avoir est obligatoire")

        remaining = invoice.total_ttc_cents - already_credited_ttc_cents

        if partial_ttc_cents is None:
            if already_credited_ttc_cents > 0:
                raise BillingValidationError(
                    "Des avoirs partiels existent déjà: saisir le montant restant à créditer"
                )
            return CreditAmounts(
                total_ht_cents=invoice.total_ht_cents,
                total_vat_cents=invoice.total_vat_cents,
                total_ttc_cents=invoice.total_ttc_cents,
                cancels_invoice=True,
            )

        if partial_ttc_cents <= 0:
            raise BillingValidationError("Le montant de l'avoir doit être positif")
        if partial_ttc_cents > remaining:
            raise BillingValidationError(
                f"Le montant de l'avoir ({partial_ttc_cents}) dépasse le restant créditable ({remaining})"
            )

        if partial_ttc_cents == invoice.total_ttc_cents:
            # équivalent à un avoir total
            return CreditAmounts(
                total_ht_cents=invoice.total_ht_cents,
                total_vat_cents=invoice.total_vat_cents,
                total_ttc_cents=invoice.total_ttc_cents,
                cancels_invoice=True,
            )

        ttc = invoice.total_ttc_cents
        return CreditAmounts(
            total_ht_cents=round_half_up(invoice.total_ht_cents * partial_ttc_cents, ttc),
            total_vat_cents=round_half_up(invoice.total_vat_cents * partial_ttc_cents, ttc),
            total_ttc_cents=partial_ttc_cents,
            cancels_invoice=partial_ttc_cents == remaining,
        )


class CreditNoteService:
    def __init__(
        self,
        store: RecordStore,
        numbering: Optional[NumberingAuthority] = None,
        today: Callable[[], date] = date.today,
        actor_id: Optional[str] = None,
    ):
        self.store = store
        self.numbering = numbering or NumberingAuthority(store)
        self.calculator = CreditNoteCalculator()
        self.today = today
        self.actor_id = actor_id

    def list_for_invoice(self, invoice_id: str) -> List[CreditNote]:
        return self.store.list_credit_notes(invoice_id=invoice_id)

    def credited_ttc(self, invoice_id: str) -> int:
        return sum(n.total_ttc_cents for n in self.list_for_invoice(invoice_id))

    def create(self, invoice_id: str, reason: str, partial_ttc_cents: Optional[int] = None) -> CreditNote:
        """Calcule, numérote et enregistre l'avoir (pas de brouillon pour les avoirs)."""
        with self.store.transaction():
            invoice = self.store.get_invoice(invoice_id)
            amounts = self.calculator.compute(
                invoice, reason, partial_ttc_cents, already_credited_ttc_cents=self.credited_ttc(invoice_id)
            )
            today = self.today()
            number = self.numbering.allocate("credit_note", today)
            note = CreditNote(
                number=number,
                invoice_id=invoice.id,
                issue_date=today,
                reason=reason.strip(),
                total_ht_cents=amounts.total_ht_cents,
                total_vat_cents=amounts.total_vat_cents,
                total_ttc_cents=amounts.total_ttc_cents,
            )
            self.store.save_credit_note(note)
            self.store.add_audit_log(AuditLog(
                user_id=self.actor_id,
                action="create_credit_note",
                entity_type="credit_note",
                entity_id=note.id,
                details={"credit_number": number, "invoice_id": invoice.id, "reason": note.reason},
            ))
            if amounts.cancels_invoice:
                invoice.status = "cancelled"
                self.store.save_invoice(invoice)

        logger.info(
            "Avoir %s sur facture %s (%s TTC)%s",
            note.number, invoice.number, note.total_ttc_cents,
            ", facture annulée" if amounts.cancels_invoice else "",
        )
        return note
