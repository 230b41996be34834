from __future__ import annotations
import csv
import io
import os
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from flowassist.models.client import Client
from flowassist.models.invoice import CreditNote, Invoice
from flowassist.models.kpi import GroupBy, InvoiceAgingReport, KpiReport, WipAgingReport
from flowassist.models.matter import Matter
from flowassist.models.profile import Profile
from flowassist.models.timesheet import TimesheetEntry
from flowassist.services.money import format_cents, format_hours

BOM = "\ufeff"  # Excel ouvre l'UTF-8 correctement avec le BOM

STATUS_LABELS = {"draft": "Brouillon", "issued": "Émise", "cancelled": "Annulée"}


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Oui" if value else "Non"
    return str(value)


def to_csv(
    headers: Sequence[str],
    rows: Iterable[Sequence[Any]],
    delimiter: str = ";",
    bom: bool = False,
) -> str:
    """
    Sérialise en CSV. Une valeur contenant le séparateur, un guillemet ou un
    retour ligne est entourée de guillemets (guillemets internes doublés).
    """
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=delimiter, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_cell(v) for v in row])
    content = buf.getvalue().rstrip("\n")
    return BOM + content if bom else content


def write_csv(path: os.PathLike | str, content: str) -> str:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content, encoding="utf-8", newline="")
    return str(p)


# ---------- Temps ----------
def timesheet_csv(
    entries: Sequence[TimesheetEntry],
    matters: Mapping[str, Matter],
    clients: Mapping[str, Client],
    profiles: Mapping[str, Profile],
    invoices: Optional[Mapping[str, Invoice]] = None,
    delimiter: str = ";",
) -> str:
    invoices = invoices or {}
    headers = [
        "Date", "Collaborateur Email", "Dossier Code", "Dossier Libellé", "Client Code",
        "Minutes Arrondies", "Heures", "Facturable", "Description", "Verrouillé", "N° Facture",
    ]
    rows = []
    for e in sorted(entries, key=lambda x: (x.date, x.user_id)):
        matter = matters.get(e.matter_id)
        client = clients.get(matter.client_id) if matter else None
        profile = profiles.get(e.user_id)
        invoice = invoices.get(e.invoice_id) if e.invoice_id else None
        rows.append([
            e.date.isoformat(),
            profile.email if profile else "",
            matter.code if matter else "",
            matter.label if matter else "",
            client.code if client else "",
            e.minutes_rounded,
            format_hours(e.minutes_rounded),
            e.billable,
            e.description,
            e.locked,
            invoice.number if invoice else "",
        ])
    return to_csv(headers, rows, delimiter)


# ---------- Factures / avoirs ----------
def invoices_csv(
    invoices: Sequence[Invoice],
    matters: Mapping[str, Matter],
    clients: Mapping[str, Client],
    delimiter: str = ";",
) -> str:
    headers = [
        "N° Facture", "Date Émission", "Dossier Code", "Client Code", "Client Nom",
        "Période Du", "Période Au", "Total HT", "Total TVA", "Total TTC", "Statut", "Payée",
    ]
    rows = []
    for i in invoices:
        matter = matters.get(i.matter_id)
        client = clients.get(i.client_id)
        rows.append([
            i.number or "",
            i.issue_date.isoformat() if i.issue_date else "",
            matter.code if matter else "",
            client.code if client else "",
            client.name if client else "",
            i.period_from.isoformat(),
            i.period_to.isoformat(),
            format_cents(i.total_ht_cents),
            format_cents(i.total_vat_cents),
            format_cents(i.total_ttc_cents),
            STATUS_LABELS.get(i.status, i.status),
            i.paid,
        ])
    return to_csv(headers, rows, delimiter)


def credit_notes_csv(
    notes: Sequence[CreditNote],
    invoices: Mapping[str, Invoice],
    delimiter: str = ";",
) -> str:
    headers = ["N° Avoir", "Date Émission", "N° Facture", "Motif", "Total HT", "Total TVA", "Total TTC"]
    rows = []
    for n in notes:
        invoice = invoices.get(n.invoice_id)
        rows.append([
            n.number,
            n.issue_date.isoformat(),
            invoice.number if invoice else "",
            n.reason,
            format_cents(n.total_ht_cents),
            format_cents(n.total_vat_cents),
            format_cents(n.total_ttc_cents),
        ])
    return to_csv(headers, rows, delimiter)


# ---------- Tableaux de bord ----------
def _key_headers(group_by: GroupBy) -> List[str]:
    out: List[str] = []
    if group_by.collaborator:
        out += ["Collaborateur", "Email"]
    if group_by.client:
        out += ["Client Code", "Client"]
    if group_by.matter:
        out += ["Dossier Code", "Dossier"]
    return out


def _key_cells(row, group_by: GroupBy) -> List[Any]:
    out: List[Any] = []
    if group_by.collaborator:
        out += [row.user_name, row.user_email]
    if group_by.client:
        out += [row.client_code, row.client_name]
    if group_by.matter:
        out += [row.matter_code, row.matter_label]
    return out


def wip_aging_csv(report: WipAgingReport, group_by: GroupBy, delimiter: str = ";") -> str:
    headers = _key_headers(group_by) + [
        "Heures non facturées", "< 30 j", "30-60 j", "60-90 j", "90-120 j", "> 120 j",
    ]
    rows = []
    for r in report.rows:
        a = r.aging
        rows.append(_key_cells(r, group_by) + [
            format_hours(r.billable_minutes),
            format_hours(a.under30), format_hours(a.d30to60), format_hours(a.d60to90),
            format_hours(a.d90to120), format_hours(a.over120),
        ])
    return to_csv(headers, rows, delimiter)


def revenue_kpi_csv(report: KpiReport, group_by: GroupBy, delimiter: str = ";") -> str:
    headers = _key_headers(group_by) + ["Minutes Facturables", "Heures Facturables", "CA Facturable HT", "CA Facturé HT"]
    rows = [
        _key_cells(r, group_by) + [
            r.billable_minutes,
            format_hours(r.billable_minutes),
            format_cents(r.billable_revenue_cents),
            format_cents(r.invoiced_revenue_cents),
        ]
        for r in report.rows
    ]
    return to_csv(headers, rows, delimiter)


def unpaid_invoices_csv(report: InvoiceAgingReport, delimiter: str = ";") -> str:
    headers = [
        "N° Facture", "Date Émission", "Jours", "Dossier Code", "Client",
        "Total TTC", "Avoirs TTC", "Restant dû TTC",
    ]
    rows = [
        [
            r.number or "",
            r.issue_date.isoformat(),
            r.days_since,
            r.matter_code,
            r.client_name,
            format_cents(r.total_ttc_cents),
            format_cents(r.credited_ttc_cents),
            format_cents(r.outstanding_ttc_cents),
        ]
        for r in report.rows
    ]
    return to_csv(headers, rows, delimiter)
