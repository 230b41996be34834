"""Tableaux de bord: ancienneté des encours, impayés et chiffre d'affaires.

Lecture seule: aucun appel ne modifie le stockage.
"""
from __future__ import annotations
import calendar
import logging
from datetime import date
from typing import Callable, Dict, List, Optional, TypeVar

from flowassist.errors import BillingValidationError
from flowassist.models.client import Client
from flowassist.models.invoice import Invoice
from flowassist.models.kpi import (
    BudgetStatus,
    FlatFeeKpiReport,
    FlatFeeKpiRow,
    GroupBy,
    GroupKey,
    InvoiceAgingReport,
    InvoiceAgingRow,
    KpiFilters,
    KpiReport,
    KpiRow,
    KpiTotals,
    MonthlyRevenue,
    WipAgingReport,
    WipAgingRow,
)
from flowassist.models.matter import Matter
from flowassist.models.profile import Profile
from flowassist.services.money import round_half_up, time_amount_ht
from flowassist.services.rate_resolver import RateResolver
from flowassist.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
BUDGET_ALERT_PCT = 80

R = TypeVar("R", bound=GroupKey)


def _in_range(d: Optional[date], start: Optional[date], end: Optional[date]) -> bool:
    if d is None:
        return False
    return (start is None or d >= start) and (end is None or d <= end)


class _Lookup:
    """Référentiels indexés par id, chargés une fois par calcul."""

    def __init__(self, store: RecordStore):
        self.matters: Dict[str, Matter] = {m.id: m for m in store.list_matters()}
        self.clients: Dict[str, Client] = {c.id: c for c in store.list_clients()}
        self.profiles: Dict[str, Profile] = {p.id: p for p in store.list_profiles()}
        self.resolver = RateResolver(store.get_cabinet_settings(), self.profiles)

    def client_of(self, matter_id: str) -> Optional[Client]:
        m = self.matters.get(matter_id)
        return self.clients.get(m.client_id) if m else None


def _group_key(
    row_type: Callable[..., R],
    group_by: GroupBy,
    lk: _Lookup,
    matter_id: str,
    user_id: Optional[str] = None,
) -> R:
    matter = lk.matters.get(matter_id)
    client = lk.client_of(matter_id)
    client_id = client.id if client else (matter.client_id if matter else None)

    parts: List[str] = []
    fields: Dict[str, Optional[str]] = {}
    if group_by.collaborator:
        profile = lk.profiles.get(user_id or "")
        parts.append(user_id or UNKNOWN)
        fields.update(
            user_id=user_id,
            user_name=profile.name if profile else "Inconnu",
            user_email=profile.email if profile else "",
        )
    if group_by.client:
        parts.append(client_id or UNKNOWN)
        fields.update(
            client_id=client_id,
            client_code=client.code if client else "-",
            client_name=client.name if client else "Inconnu",
        )
    if group_by.matter:
        parts.append(matter_id)
        fields.update(
            matter_id=matter_id,
            matter_code=matter.code if matter else "-",
            matter_label=matter.label if matter else "Inconnu",
        )
    return row_type(key="|".join(parts), **fields)


class KpiService:
    def __init__(self, store: RecordStore, today: Callable[[], date] = date.today):
        self.store = store
        self.today = today

    # ---------- Encours non facturés ----------
    def wip_aging(
        self,
        group_by: GroupBy,
        today: Optional[date] = None,
        period_from: Optional[date] = None,
        period_to: Optional[date] = None,
    ) -> WipAgingReport:
        today = today or self.today()
        lk = _Lookup(self.store)
        grouped: Dict[str, WipAgingRow] = {}

        for e in self.store.list_timesheet_entries(date_from=period_from, date_to=period_to):
            if not e.billable or e.locked or e.invoice_id:
                continue
            days = (today - e.date).days
            row = _group_key(WipAgingRow, group_by, lk, e.matter_id, e.user_id)
            row = grouped.setdefault(row.key, row)
            row.billable_minutes += e.minutes_rounded
            row.aging.add(days, e.minutes_rounded)

        report = WipAgingReport(rows=sorted(grouped.values(), key=lambda r: r.billable_minutes, reverse=True))
        for r in report.rows:
            report.total_minutes += r.billable_minutes
            report.total_aging.merge(r.aging)
        return report

    # ---------- Factures impayées ----------
    def unpaid_invoice_aging(self, today: Optional[date] = None) -> InvoiceAgingReport:
        today = today or self.today()
        lk = _Lookup(self.store)
        credited: Dict[str, int] = {}
        for n in self.store.list_credit_notes():
            credited[n.invoice_id] = credited.get(n.invoice_id, 0) + n.total_ttc_cents

        report = InvoiceAgingReport()
        unpaid = [i for i in self.store.list_invoices(status="issued") if not i.paid and i.issue_date]
        unpaid.sort(key=lambda i: (i.issue_date, i.number or ""))
        for inv in unpaid:
            matter = lk.matters.get(inv.matter_id)
            client = lk.client_of(inv.matter_id)
            days = (today - inv.issue_date).days
            already = credited.get(inv.id, 0)
            row = InvoiceAgingRow(
                invoice_id=inv.id,
                number=inv.number,
                issue_date=inv.issue_date,
                days_since=days,
                matter_id=inv.matter_id,
                matter_code=matter.code if matter else "",
                matter_label=matter.label if matter else "",
                client_id=client.id if client else inv.client_id,
                client_name=client.name if client else "Inconnu",
                total_ttc_cents=inv.total_ttc_cents,
                credited_ttc_cents=already,
                outstanding_ttc_cents=inv.total_ttc_cents - already,
            )
            row.aging.add(days, row.outstanding_ttc_cents)
            report.total_aging.add(days, row.outstanding_ttc_cents)
            report.total_outstanding_cents += row.outstanding_ttc_cents
            report.rows.append(row)
        report.count = len(report.rows)
        return report

    # ---------- Chiffre d'affaires ----------
    def _issued_in(self, period_from: date, period_to: date, lk: _Lookup, filters: KpiFilters) -> List[Invoice]:
        out: List[Invoice] = []
        for inv in self.store.list_invoices(status="issued"):
            if not _in_range(inv.issue_date, period_from, period_to):
                continue
            matter = lk.matters.get(inv.matter_id)
            if filters.client_id and (matter is None or matter.client_id != filters.client_id):
                continue
            if filters.matter_id and inv.matter_id != filters.matter_id:
                continue
            out.append(inv)
        return out

    def revenue_kpi(
        self,
        group_by: GroupBy,
        period_from: date,
        period_to: date,
        filters: Optional[KpiFilters] = None,
    ) -> KpiReport:
        """
        CA facturable (temps valorisés) et CA facturé (HT des factures émises)
        sur la période, regroupés selon les axes choisis.

        Le CA facturé n'est pas ventilable par collaborateur: regroupé par
        collaborateur, chaque ligne du même dossier (ou à défaut du même
        client) reçoit le HT complet de la facture. Le total, lui, est exact.
        """
        filters = filters or KpiFilters()
        lk = _Lookup(self.store)
        grouped: Dict[str, KpiRow] = {}

        for e in self.store.list_timesheet_entries(date_from=period_from, date_to=period_to):
            if not e.billable:
                continue
            if filters.user_id and e.user_id != filters.user_id:
                continue
            matter = lk.matters.get(e.matter_id)
            if filters.client_id and (matter is None or matter.client_id != filters.client_id):
                continue
            if filters.matter_id and e.matter_id != filters.matter_id:
                continue
            rate = lk.resolver.rate_for(e, matter)
            row = _group_key(KpiRow, group_by, lk, e.matter_id, e.user_id)
            row = grouped.setdefault(row.key, row)
            row.billable_minutes += e.minutes_rounded
            row.billable_revenue_cents += time_amount_ht(e.minutes_rounded, rate)

        invoices = self._issued_in(period_from, period_to, lk, filters)
        for inv in invoices:
            client = lk.client_of(inv.matter_id)
            client_id = client.id if client else inv.client_id
            if group_by.collaborator:
                for row in grouped.values():
                    if group_by.matter and row.matter_id == inv.matter_id:
                        row.invoiced_revenue_cents += inv.total_ht_cents
                    elif not group_by.matter and group_by.client and row.client_id == client_id:
                        row.invoiced_revenue_cents += inv.total_ht_cents
            else:
                row = _group_key(KpiRow, group_by, lk, inv.matter_id)
                row = grouped.setdefault(row.key, row)
                row.invoiced_revenue_cents += inv.total_ht_cents

        rows = sorted(grouped.values(), key=lambda r: r.billable_revenue_cents, reverse=True)
        totals = KpiTotals(
            billable_minutes=sum(r.billable_minutes for r in rows),
            billable_revenue_cents=sum(r.billable_revenue_cents for r in rows),
            invoiced_revenue_cents=sum(i.total_ht_cents for i in invoices),
        )
        return KpiReport(rows=rows, totals=totals, approximate=group_by.collaborator)

    def flat_fee_kpi(
        self,
        group_by: GroupBy,
        period_from: date,
        period_to: date,
        filters: Optional[KpiFilters] = None,
    ) -> FlatFeeKpiReport:
        """Forfaits contractés vs facturés, par client et/ou dossier."""
        if not (group_by.client or group_by.matter):
            raise BillingValidationError("Les forfaits se regroupent par client ou par dossier")
        axes = GroupBy(collaborator=False, client=group_by.client, matter=group_by.matter)
        filters = filters or KpiFilters()
        lk = _Lookup(self.store)
        grouped: Dict[str, FlatFeeKpiRow] = {}

        flat = [m for m in lk.matters.values() if m.is_flat_fee]
        for m in flat:
            if filters.client_id and m.client_id != filters.client_id:
                continue
            if filters.matter_id and m.id != filters.matter_id:
                continue
            row = _group_key(FlatFeeKpiRow, axes, lk, m.id)
            row = grouped.setdefault(row.key, row)
            row.flat_fee_cents += m.flat_fee_cents or 0

        flat_ids = {m.id for m in flat}
        for inv in self._issued_in(period_from, period_to, lk, filters):
            if inv.matter_id not in flat_ids:
                continue
            key = _group_key(FlatFeeKpiRow, axes, lk, inv.matter_id).key
            if key in grouped:
                grouped[key].invoiced_revenue_cents += inv.total_ht_cents

        rows = sorted(grouped.values(), key=lambda r: r.flat_fee_cents, reverse=True)
        return FlatFeeKpiReport(
            rows=rows,
            total_flat_fee_cents=sum(r.flat_fee_cents for r in rows),
            total_invoiced_revenue_cents=sum(r.invoiced_revenue_cents for r in rows),
        )

    def monthly_revenue(self, year: int) -> List[MonthlyRevenue]:
        """Encours, facturé, encaissé et taux de recouvrement pour chaque mois."""
        lk = _Lookup(self.store)
        entries = [e for e in self.store.list_timesheet_entries() if e.billable and not e.locked and not e.invoice_id]
        invoices = self.store.list_invoices()

        out: List[MonthlyRevenue] = []
        for month in range(1, 13):
            start = date(year, month, 1)
            end = date(year, month, calendar.monthrange(year, month)[1])
            wip = sum(
                time_amount_ht(e.minutes_rounded, lk.resolver.rate_for(e, lk.matters.get(e.matter_id)))
                for e in entries if start <= e.date <= end
            )
            invoiced = sum(
                i.total_ht_cents for i in invoices
                if i.status == "issued" and _in_range(i.issue_date, start, end)
            )
            collected = sum(i.total_ht_cents for i in invoices if i.paid and _in_range(i.payment_date, start, end))
            rate = round_half_up(collected * 100, invoiced) if invoiced > 0 else 0
            out.append(MonthlyRevenue(
                year=year, month=month,
                wip_cents=wip, invoiced_cents=invoiced, collected_cents=collected,
                recovery_rate_pct=rate,
            ))
        return out

    def budget_status(self, matter_id: str) -> BudgetStatus:
        """Consommation HT d'un dossier au temps passé face à son budget."""
        lk = _Lookup(self.store)
        matter = self.store.get_matter(matter_id)
        status = BudgetStatus(matter_id=matter.id, max_amount_ht_cents=matter.max_amount_ht_cents)
        if matter.is_flat_fee:
            return status

        status.consumed_ht_cents = sum(
            time_amount_ht(e.minutes_rounded, lk.resolver.rate_for(e, matter))
            for e in self.store.list_timesheet_entries(matter_id=matter.id) if e.billable
        )
        if matter.max_amount_ht_cents:
            status.percentage = round(status.consumed_ht_cents * 100 / matter.max_amount_ht_cents, 1)
            status.alert = status.consumed_ht_cents * 100 >= matter.max_amount_ht_cents * BUDGET_ALERT_PCT
            if status.alert:
                logger.info("Dossier %s: budget consommé à %s %%", matter.code, status.percentage)
        return status
