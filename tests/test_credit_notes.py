"""Avoirs totaux et partiels."""
from datetime import date

import pytest

from flowassist.errors import BillingValidationError, InvoiceStateError
from flowassist.models.invoice import EntrySelection, Invoice
from flowassist.services.credit_note_service import CreditNoteCalculator

TODAY = date(2025, 3, 31)
MARCH_FROM, MARCH_TO = date(2025, 3, 1), date(2025, 3, 31)


@pytest.fixture
def issued(invoices):
    """Facture émise de 250 HT / 50 TVA / 300 TTC."""
    draft = invoices.create_draft(
        "m1", MARCH_FROM, MARCH_TO,
        [EntrySelection(entry_id="e1"), EntrySelection(entry_id="e2")],
        custom_total_ht_cents=25000,
    )
    inv = invoices.issue(draft.id)
    assert (inv.total_ht_cents, inv.total_vat_cents, inv.total_ttc_cents) == (25000, 5000, 30000)
    return inv


class TestCalculator:
    def _invoice(self, status="issued", ht=1000, vat=200, ttc=1200):
        return Invoice(matter_id="m", client_id="c", period_from=MARCH_FROM, period_to=MARCH_TO, status=status,
                       total_ht_cents=ht, total_vat_cents=vat, total_ttc_cents=ttc)

    @pytest.mark.parametrize("totals, partial, expected", [
        ((1000, 200, 1200), 100, (83, 17, 100)),
        ((100000, 20000, 120000), 30000, (25000, 5000, 30000)),
    ])
    def test_partial_is_prorated(self, totals, partial, expected):
        a = CreditNoteCalculator().compute(self._invoice("issued", *totals), "Remise", partial)
        assert (a.total_ht_cents, a.total_vat_cents, a.total_ttc_cents) == expected
        assert a.cancels_invoice is False

    def test_total(self):
        a = CreditNoteCalculator().compute(self._invoice(), "Erreur")
        assert (a.total_ht_cents, a.total_vat_cents, a.total_ttc_cents) == (1000, 200, 1200)
        assert a.cancels_invoice is True

    def test_partial_equal_to_total(self):
        assert CreditNoteCalculator().compute(self._invoice(), "Erreur", 1200).cancels_invoice is True

    @pytest.mark.parametrize("amount", [0, -10, 1201])
    def test_rejects_bad_amount(self, amount):
        with pytest.raises(BillingValidationError):
            CreditNoteCalculator().compute(self._invoice(), "Remise", amount)

    def test_requires_reason(self):
        with pytest.raises(BillingValidationError):
            CreditNoteCalculator().compute(self._invoice(), "   ")

    def test_requires_issued_invoice(self):
        with pytest.raises(InvoiceStateError):
            CreditNoteCalculator().compute(self._invoice("draft"), "Remise")


class TestCreditNoteService:
    def test_partial_credit(self, credits, issued, seeded):
        note = credits.create(issued.id, "Geste commercial", partial_ttc_cents=6000)
        assert note.number == "AV-2025-0001"
        assert note.issue_date == TODAY
        assert (note.total_ht_cents, note.total_vat_cents, note.total_ttc_cents) == (5000, 1000, 6000)
        assert seeded.get_invoice(issued.id).status == "issued"

    def test_total_credit_cancels_invoice(self, credits, issued, seeded):
        note = credits.create(issued.id, "Facture erronée")
        assert (note.total_ht_cents, note.total_vat_cents, note.total_ttc_cents) == (25000, 5000, 30000)
        assert seeded.get_invoice(issued.id).status == "cancelled"
        with pytest.raises(InvoiceStateError):
            credits.create(issued.id, "Encore")

    def test_cumulative_partials_cancel_when_exhausted(self, credits, issued, seeded):
        credits.create(issued.id, "Remise 1", partial_ttc_cents=20000)
        second = credits.create(issued.id, "Remise 2", partial_ttc_cents=10000)
        assert second.number == "AV-2025-0002"
        assert credits.credited_ttc(issued.id) == 30000
        assert seeded.get_invoice(issued.id).status == "cancelled"

    def test_cumulative_capped(self, credits, issued):
        credits.create(issued.id, "Remise 1", partial_ttc_cents=20000)
        with pytest.raises(BillingValidationError):
            credits.create(issued.id, "Remise 2", partial_ttc_cents=15000)

    def test_total_after_partial_refused(self, credits, issued):
        credits.create(issued.id, "Remise", partial_ttc_cents=1000)
        with pytest.raises(BillingValidationError):
            credits.create(issued.id, "Annulation")

    def test_failure_consumes_no_number(self, credits, issued, numbering):
        with pytest.raises(BillingValidationError):
            credits.create(issued.id, "")
        assert numbering.peek("credit_note", TODAY) == "AV-2025-0001"

    def test_draft_cannot_be_credited(self, credits, invoices):
        draft = invoices.create_draft("m1", MARCH_FROM, MARCH_TO, [EntrySelection(entry_id="e1")])
        with pytest.raises(InvoiceStateError):
            credits.create(draft.id, "Remise", partial_ttc_cents=100)

    def test_list_for_invoice(self, credits, issued):
        credits.create(issued.id, "Remise", partial_ttc_cents=1000)
        assert [n.total_ttc_cents for n in credits.list_for_invoice(issued.id)] == [1000]
        assert credits.list_for_invoice("other") == []
