"""Tableaux de bord: encours, impayés, chiffre d'affaires, budget."""
from datetime import date

import pytest

from flowassist.errors import BillingValidationError
from flowassist.models.invoice import EntrySelection
from flowassist.models.kpi import GroupBy, KpiFilters
from flowassist.models.matter import Matter
from flowassist.models.timesheet import TimesheetEntry

MARCH_FROM, MARCH_TO = date(2025, 3, 1), date(2025, 3, 31)

BY_USER = GroupBy(collaborator=True)
BY_MATTER = GroupBy(collaborator=False, matter=True)
BY_CLIENT = GroupBy(collaborator=False, client=True)


def issue(invoices, matter_id, *entry_ids):
    draft = invoices.create_draft(matter_id, MARCH_FROM, MARCH_TO, [EntrySelection(entry_id=i) for i in entry_ids])
    return invoices.issue(draft.id)


class TestGroupBy:
    def test_requires_one_axis(self):
        with pytest.raises(ValueError):
            GroupBy(collaborator=False)


class TestWipAging:
    def test_by_collaborator(self, kpis):
        report = kpis.wip_aging(BY_USER)
        rows = {r.user_id: r for r in report.rows}
        assert report.rows[0].user_id == "alice"
        assert rows["alice"].billable_minutes == 210
        assert rows["alice"].aging.under30 == 180
        assert rows["alice"].aging.d30to60 == 30
        assert rows["alice"].user_name == "Alice Martin"
        assert rows["bob"].billable_minutes == 60
        assert report.total_minutes == 270
        assert report.total_aging.under30 == 240

    def test_by_matter(self, kpis):
        rows = {r.matter_id: r for r in kpis.wip_aging(BY_MATTER).rows}
        assert rows["m1"].billable_minutes == 150
        assert rows["m1"].matter_code == "DOS-001"
        assert rows["m2"].billable_minutes == 120
        assert rows["m1"].user_id is None

    def test_invoiced_time_leaves_wip(self, kpis, invoices):
        issue(invoices, "m1", "e1", "e2")
        rows = {r.user_id: r for r in kpis.wip_aging(BY_USER).rows}
        assert "bob" not in rows
        assert rows["alice"].billable_minutes == 150

    def test_old_entries(self, kpis, seeded):
        seeded.save_timesheet_entry(
            TimesheetEntry(user_id="bob", matter_id="m1", date=date(2024, 11, 1), minutes_rounded=90)
        )
        report = kpis.wip_aging(BY_USER)
        assert report.total_aging.over120 == 90

    def test_period_filter(self, kpis):
        report = kpis.wip_aging(BY_USER, period_from=MARCH_FROM, period_to=MARCH_TO)
        assert report.total_minutes == 240


class TestUnpaidAging:
    def test_outstanding_after_credit(self, kpis, invoices, credits):
        inv = issue(invoices, "m1", "e1", "e2")
        credits.create(inv.id, "Remise", partial_ttc_cents=3200)
        report = kpis.unpaid_invoice_aging(today=date(2025, 5, 15))
        assert report.count == 1
        row = report.rows[0]
        assert row.number == "2025-0001"
        assert row.days_since == 45
        assert row.client_name == "Société Atlas"
        assert (row.total_ttc_cents, row.credited_ttc_cents, row.outstanding_ttc_cents) == (43200, 3200, 40000)
        assert row.aging.d30to60 == 40000
        assert report.total_outstanding_cents == 40000
        assert report.total_aging.d30to60 == 40000

    def test_paid_and_drafts_excluded(self, kpis, invoices):
        paid = issue(invoices, "m1", "e1")
        invoices.mark_paid(paid.id)
        invoices.create_draft("m1", MARCH_FROM, MARCH_TO, [EntrySelection(entry_id="e2")])
        report = kpis.unpaid_invoice_aging()
        assert report.count == 0
        assert report.total_outstanding_cents == 0


class TestRevenueKpi:
    def test_billable_revenue_by_collaborator(self, kpis):
        report = kpis.revenue_kpi(BY_USER, MARCH_FROM, MARCH_TO)
        rows = {r.user_id: r for r in report.rows}
        # alice: 60 min + 120 min à 200/h ; bob: 60 min au taux dossier 160/h
        assert (rows["alice"].billable_minutes, rows["alice"].billable_revenue_cents) == (180, 60000)
        assert (rows["bob"].billable_minutes, rows["bob"].billable_revenue_cents) == (60, 16000)
        assert report.totals.billable_revenue_cents == 76000
        assert report.approximate is True

    def test_invoiced_total_is_not_double_counted(self, kpis, invoices):
        issue(invoices, "m1", "e1", "e2")
        report = kpis.revenue_kpi(GroupBy(collaborator=True, matter=True), MARCH_FROM, MARCH_TO)
        rows = {(r.user_id, r.matter_id): r for r in report.rows}
        assert rows[("alice", "m1")].invoiced_revenue_cents == 36000
        assert rows[("bob", "m1")].invoiced_revenue_cents == 36000
        assert rows[("alice", "m2")].invoiced_revenue_cents == 0
        assert report.totals.invoiced_revenue_cents == 36000

    def test_exact_by_matter(self, kpis, invoices):
        issue(invoices, "m1", "e1", "e2")
        report = kpis.revenue_kpi(BY_MATTER, MARCH_FROM, MARCH_TO)
        assert report.approximate is False
        assert [r.matter_id for r in report.rows] == ["m2", "m1"]
        m1 = report.rows[1]
        assert (m1.billable_revenue_cents, m1.invoiced_revenue_cents) == (36000, 36000)

    def test_filters(self, kpis):
        report = kpis.revenue_kpi(BY_USER, MARCH_FROM, MARCH_TO, KpiFilters(user_id="bob"))
        assert [r.user_id for r in report.rows] == ["bob"]
        report = kpis.revenue_kpi(BY_MATTER, MARCH_FROM, MARCH_TO, KpiFilters(matter_id="m2"))
        assert [r.matter_id for r in report.rows] == ["m2"]

    def test_out_of_period_invoice_ignored(self, kpis, invoices):
        issue(invoices, "m1", "e1")
        report = kpis.revenue_kpi(BY_MATTER, date(2025, 4, 1), date(2025, 4, 30))
        assert report.totals.invoiced_revenue_cents == 0


class TestFlatFeeKpi:
    def test_by_client(self, kpis, invoices):
        issue(invoices, "m2", "e5")
        report = kpis.flat_fee_kpi(BY_CLIENT, MARCH_FROM, MARCH_TO)
        assert len(report.rows) == 1
        row = report.rows[0]
        assert row.client_code == "CLI001"
        assert (row.flat_fee_cents, row.invoiced_revenue_cents) == (500000, 500000)
        assert report.total_flat_fee_cents == 500000

    def test_time_based_matters_excluded(self, kpis, seeded):
        seeded.save_matter(Matter(id="m3", code="FOR-002", label="Audit", client_id="c1",
                                  billing_type="flat_fee", flat_fee_cents=100000))
        report = kpis.flat_fee_kpi(BY_MATTER, MARCH_FROM, MARCH_TO)
        assert [r.matter_id for r in report.rows] == ["m2", "m3"]

    def test_collaborator_axis_refused(self, kpis):
        with pytest.raises(BillingValidationError):
            kpis.flat_fee_kpi(BY_USER, MARCH_FROM, MARCH_TO)


class TestMonthlyRevenue:
    def test_twelve_months(self, kpis, invoices):
        inv = issue(invoices, "m1", "e1", "e2")
        invoices.mark_paid(inv.id, date(2025, 3, 31))
        months = kpis.monthly_revenue(2025)
        assert [m.month for m in months] == list(range(1, 13))
        feb, march = months[1], months[2]
        assert feb.wip_cents == 10000
        assert march.wip_cents == 40000
        assert march.invoiced_cents == 36000
        assert march.collected_cents == 36000
        assert march.recovery_rate_pct == 100
        assert months[3].recovery_rate_pct == 0


class TestBudget:
    def test_alert_over_threshold(self, kpis):
        status = kpis.budget_status("m1")
        assert status.consumed_ht_cents == 46000
        assert status.percentage == 92.0
        assert status.alert is True

    def test_below_threshold(self, kpis, seeded):
        seeded.save_matter(seeded.get_matter("m1").model_copy(update={"max_amount_ht_cents": 100000}))
        status = kpis.budget_status("m1")
        assert (status.percentage, status.alert) == (46.0, False)

    def test_no_budget(self, kpis):
        status = kpis.budget_status("m2")
        assert status.percentage is None
        assert status.alert is False
