from __future__ import annotations
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
import datetime as dt
from .common import gen_id, utcnow

InvoiceStatus = Literal["draft", "issued", "cancelled"]
LineKind = Literal["time", "flat_fee", "expense"]
GroupingMode = Literal["single", "by_collaborator"]


class InvoiceLine(BaseModel):
    id: str = Field(default_factory=gen_id)
    label: str
    kind: LineKind = "time"
    minutes: int = 0
    rate_cents: int = 0
    vat_rate: int = 20
    amount_ht_cents: int = 0
    vat_cents: int = 0
    amount_ttc_cents: int = 0

    # références vers les pièces consommées (verrouillées à l'émission)
    entry_ids: List[str] = Field(default_factory=list)
    expense_id: Optional[str] = None
    user_id: Optional[str] = None
    # posé par le générateur de lignes; absent des anciennes données
    traced: bool = False

    class Config:
        extra = "ignore"

    @property
    def has_references(self) -> bool:
        return bool(self.entry_ids) or self.expense_id is not None

    @property
    def is_legacy(self) -> bool:
        """Ligne d'honoraires antérieure au suivi des pièces consommées."""
        return not self.traced and not self.has_references and self.kind != "expense"


class Invoice(BaseModel):
    id: str = Field(default_factory=gen_id)
    number: Optional[str] = None
    matter_id: str
    client_id: str
    status: InvoiceStatus = "draft"

    period_from: dt.date
    period_to: dt.date
    issue_date: Optional[dt.date] = None

    lines: List[InvoiceLine] = Field(default_factory=list)
    total_ht_cents: int = 0
    total_vat_cents: int = 0
    total_ttc_cents: int = 0

    paid: bool = False
    payment_date: Optional[dt.date] = None

    # ce que l'émission a réellement verrouillé (sert à l'annulation)
    locked_entry_ids: List[str] = Field(default_factory=list)
    locked_expense_ids: List[str] = Field(default_factory=list)

    created_at: dt.datetime = Field(default_factory=utcnow)
    updated_at: dt.datetime = Field(default_factory=utcnow)

    class Config:
        extra = "ignore"

    def recompute_totals(self) -> "Invoice":
        self.total_ht_cents = sum(ln.amount_ht_cents for ln in self.lines)
        self.total_vat_cents = sum(ln.vat_cents for ln in self.lines)
        self.total_ttc_cents = sum(ln.amount_ttc_cents for ln in self.lines)
        return self

    def referenced_entry_ids(self) -> List[str]:
        out: List[str] = []
        for ln in self.lines:
            for eid in ln.entry_ids:
                if eid not in out:
                    out.append(eid)
        return out

    def referenced_expense_ids(self) -> List[str]:
        return [ln.expense_id for ln in self.lines if ln.expense_id]

    def touch(self) -> None:
        self.updated_at = utcnow()


class CreditNote(BaseModel):
    id: str = Field(default_factory=gen_id)
    number: str
    invoice_id: str
    issue_date: dt.date
    reason: str
    total_ht_cents: int
    total_vat_cents: int
    total_ttc_cents: int
    created_at: dt.datetime = Field(default_factory=utcnow)

    class Config:
        extra = "ignore"


# ---------- Sélection à la création ----------
class EntrySelection(BaseModel):
    """Temps retenu pour la facture, avec surcharges éventuelles."""
    entry_id: str
    minutes_override: Optional[int] = None
    rate_override: Optional[int] = None


class ExpenseSelection(BaseModel):
    expense_id: str
    amount_ttc_override: Optional[int] = None
