"""
Fixtures partagées par la suite de tests du moteur de facturation.

Fournit:
- un JsonRecordStore isolé dans tmp_path (sans backups)
- un cabinet type: un client, deux collaborateurs, un dossier au temps passé
  et un dossier au forfait, quelques temps et un frais
- une date du jour figée (31/03/2025) pour les services
"""
from datetime import date

import pytest

from flowassist.models.client import Client
from flowassist.models.matter import Matter
from flowassist.models.profile import Profile
from flowassist.models.settings import CabinetSettings
from flowassist.models.timesheet import Expense, TimesheetEntry
from flowassist.services.credit_note_service import CreditNoteService
from flowassist.services.invoice_service import InvoiceService
from flowassist.services.kpi_service import KpiService
from flowassist.services.numbering_service import NumberingAuthority
from flowassist.storage.record_store import JsonRecordStore

TODAY = date(2025, 3, 31)


@pytest.fixture
def store(tmp_path):
    return JsonRecordStore(tmp_path / "data", backup_enabled=False)


@pytest.fixture
def seeded(store):
    """
    Jeu de données de référence.

    Dossier DOS-001 (temps passé, taux dossier 160 MAD/h, budget 500 MAD HT):
      e1  alice  03/03  60 min   (taux perso 200 MAD/h)
      e2  bob    10/03  60 min   (pas de taux perso -> taux dossier)
      e3  alice  10/02  30 min
      e4  bob    12/03  45 min   non facturable
      x1  frais de greffe 120 MAD TTC
    Dossier FOR-001 (forfait 5 000 MAD HT):
      e5  alice  05/03  120 min
    """
    store.save_cabinet_settings(CabinetSettings(name="Cabinet Test", rate_cabinet_cents=15000, iban="MA64 0000"))
    store.save_client(Client(id="c1", code="CLI001", name="Société Atlas", address="12 bd Anfa, Casablanca"))
    store.save_profile(Profile(id="alice", name="Alice Martin", email="alice@cabinet.ma", rate_cents=20000))
    store.save_profile(Profile(id="bob", name="Bob Durand", email="bob@cabinet.ma"))
    store.save_matter(Matter(
        id="m1", code="DOS-001", label="Contentieux commercial", client_id="c1",
        rate_cents=16000, max_amount_ht_cents=50000,
    ))
    store.save_matter(Matter(
        id="m2", code="FOR-001", label="Constitution de société", client_id="c1",
        billing_type="flat_fee", flat_fee_cents=500000,
    ))
    for e in (
        TimesheetEntry(id="e1", user_id="alice", matter_id="m1", date=date(2025, 3, 3), minutes_rounded=60),
        TimesheetEntry(id="e2", user_id="bob", matter_id="m1", date=date(2025, 3, 10), minutes_rounded=60),
        TimesheetEntry(id="e3", user_id="alice", matter_id="m1", date=date(2025, 2, 10), minutes_rounded=30),
        TimesheetEntry(id="e4", user_id="bob", matter_id="m1", date=date(2025, 3, 12), minutes_rounded=45,
                       billable=False),
        TimesheetEntry(id="e5", user_id="alice", matter_id="m2", date=date(2025, 3, 5), minutes_rounded=120),
    ):
        store.save_timesheet_entry(e)
    store.save_expense(Expense(
        id="x1", user_id="bob", client_id="c1", matter_id="m1",
        expense_date=date(2025, 3, 15), nature="Frais de greffe", amount_ttc_cents=12000,
    ))
    return store


@pytest.fixture
def numbering(seeded):
    return NumberingAuthority(seeded)


@pytest.fixture
def invoices(seeded, numbering):
    return InvoiceService(seeded, numbering, today=lambda: TODAY)


@pytest.fixture
def credits(seeded, numbering):
    return CreditNoteService(seeded, numbering, today=lambda: TODAY)


@pytest.fixture
def kpis(seeded):
    return KpiService(seeded, today=lambda: TODAY)
