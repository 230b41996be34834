from __future__ import annotations
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
import datetime as dt


class GroupBy(BaseModel):
    """Axes de regroupement des tableaux de bord (au moins un)."""
    collaborator: bool = True
    client: bool = False
    matter: bool = False

    @model_validator(mode="after")
    def _at_least_one(self) -> "GroupBy":
        if not (self.collaborator or self.client or self.matter):
            raise ValueError("Sélectionner au moins un axe de regroupement")
        return self


class KpiFilters(BaseModel):
    user_id: Optional[str] = None
    client_id: Optional[str] = None
    matter_id: Optional[str] = None


class GroupKey(BaseModel):
    """Colonnes d'identification d'une ligne groupée."""
    key: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    client_id: Optional[str] = None
    client_code: Optional[str] = None
    client_name: Optional[str] = None
    matter_id: Optional[str] = None
    matter_code: Optional[str] = None
    matter_label: Optional[str] = None


# ---------- Ancienneté des temps non facturés ----------
class WipAgingBuckets(BaseModel):
    under30: int = 0
    d30to60: int = 0
    d60to90: int = 0
    d90to120: int = 0
    over120: int = 0

    def add(self, days: int, minutes: int) -> None:
        if days < 30:
            self.under30 += minutes
        elif days < 60:
            self.d30to60 += minutes
        elif days < 90:
            self.d60to90 += minutes
        elif days < 120:
            self.d90to120 += minutes
        else:
            self.over120 += minutes

    def merge(self, other: "WipAgingBuckets") -> None:
        self.under30 += other.under30
        self.d30to60 += other.d30to60
        self.d60to90 += other.d60to90
        self.d90to120 += other.d90to120
        self.over120 += other.over120


class WipAgingRow(GroupKey):
    billable_minutes: int = 0
    aging: WipAgingBuckets = Field(default_factory=WipAgingBuckets)


class WipAgingReport(BaseModel):
    rows: List[WipAgingRow] = Field(default_factory=list)
    total_minutes: int = 0
    total_aging: WipAgingBuckets = Field(default_factory=WipAgingBuckets)


# ---------- Factures impayées ----------
class InvoiceAgingBuckets(BaseModel):
    under30: int = 0
    d30to60: int = 0
    d60to90: int = 0
    over90: int = 0

    def add(self, days: int, cents: int) -> None:
        if days < 30:
            self.under30 += cents
        elif days < 60:
            self.d30to60 += cents
        elif days < 90:
            self.d60to90 += cents
        else:
            self.over90 += cents


class InvoiceAgingRow(BaseModel):
    invoice_id: str
    number: Optional[str] = None
    issue_date: dt.date
    days_since: int
    matter_id: str
    matter_code: str = ""
    matter_label: str = ""
    client_id: Optional[str] = None
    client_name: str = ""
    total_ttc_cents: int = 0
    credited_ttc_cents: int = 0
    outstanding_ttc_cents: int = 0
    aging: InvoiceAgingBuckets = Field(default_factory=InvoiceAgingBuckets)


class InvoiceAgingReport(BaseModel):
    rows: List[InvoiceAgingRow] = Field(default_factory=list)
    count: int = 0
    total_outstanding_cents: int = 0
    total_aging: InvoiceAgingBuckets = Field(default_factory=InvoiceAgingBuckets)


# ---------- Chiffre d'affaires ----------
class KpiRow(GroupKey):
    billable_minutes: int = 0
    billable_revenue_cents: int = 0
    invoiced_revenue_cents: int = 0


class KpiTotals(BaseModel):
    billable_minutes: int = 0
    billable_revenue_cents: int = 0
    invoiced_revenue_cents: int = 0


class KpiReport(BaseModel):
    rows: List[KpiRow] = Field(default_factory=list)
    totals: KpiTotals = Field(default_factory=KpiTotals)
    # CA facturé approximatif quand on regroupe par collaborateur
    approximate: bool = False


class FlatFeeKpiRow(GroupKey):
    flat_fee_cents: int = 0
    invoiced_revenue_cents: int = 0


class FlatFeeKpiReport(BaseModel):
    rows: List[FlatFeeKpiRow] = Field(default_factory=list)
    total_flat_fee_cents: int = 0
    total_invoiced_revenue_cents: int = 0


class MonthlyRevenue(BaseModel):
    year: int
    month: int
    wip_cents: int = 0
    invoiced_cents: int = 0
    collected_cents: int = 0
    recovery_rate_pct: int = 0


class BudgetStatus(BaseModel):
    matter_id: str
    max_amount_ht_cents: Optional[int] = None
    consumed_ht_cents: int = 0
    percentage: Optional[float] = None
    alert: bool = False
