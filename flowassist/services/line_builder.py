from __future__ import annotations
import logging
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from flowassist.errors import BillingValidationError
from flowassist.models.invoice import EntrySelection, ExpenseSelection, GroupingMode, InvoiceLine
from flowassist.models.matter import Matter
from flowassist.models.timesheet import Expense, TimesheetEntry
from flowassist.services.money import split_ttc, time_amount_ht, vat_from_ht, weighted_rate, round_half_up
from flowassist.services.rate_resolver import RateResolver

logger = logging.getLogger(__name__)

# (temps, minutes effectives, taux effectif)
_Priced = Tuple[TimesheetEntry, int, int]


def _time_line(label: str, priced: Sequence[_Priced], vat_rate: int, user_id: Optional[str] = None) -> InvoiceLine:
    total_minutes = sum(m for _, m, _ in priced)
    if total_minutes > 0:
        rate = weighted_rate((r, m) for _, m, r in priced)
    else:
        # toutes les durées ramenées à 0: on garde le taux du premier temps
        rate = priced[0][2]
    ht = time_amount_ht(total_minutes, rate)
    vat, ttc = vat_from_ht(ht, vat_rate)
    return InvoiceLine(
        label=label,
        kind="time",
        minutes=total_minutes,
        rate_cents=rate,
        vat_rate=vat_rate,
        amount_ht_cents=ht,
        vat_cents=vat,
        amount_ttc_cents=ttc,
        entry_ids=[e.id for e, _, _ in priced],
        user_id=user_id,
        traced=True,
    )


def apply_custom_total(lines: List[InvoiceLine], custom_total_ht_cents: int) -> List[InvoiceLine]:
    """
    Ramène le total HT au montant saisi en redistribuant proportionnellement
    chaque ligne. Le reliquat d'arrondi va sur la plus grosse ligne, la TVA de
    chaque ligne est recalculée avec son propre taux.
    """
    if custom_total_ht_cents < 0:
        raise BillingValidationError("Le montant HT personnalisé ne peut pas être négatif")
    calculated = sum(ln.amount_ht_cents for ln in lines)
    if calculated == 0:
        raise BillingValidationError("Impossible de répartir un montant personnalisé sur une facture à 0")

    new_ht = [round_half_up(ln.amount_ht_cents * custom_total_ht_cents, calculated) for ln in lines]
    residue = custom_total_ht_cents - sum(new_ht)
    if residue:
        biggest = max(range(len(new_ht)), key=lambda i: new_ht[i])
        new_ht[biggest] += residue

    out: List[InvoiceLine] = []
    for ln, ht in zip(lines, new_ht):
        vat, ttc = vat_from_ht(ht, ln.vat_rate)
        out.append(ln.model_copy(update={"amount_ht_cents": ht, "vat_cents": vat, "amount_ttc_cents": ttc}))
    return out


class InvoiceLineBuilder:
    def __init__(self, resolver: RateResolver):
        self.resolver = resolver

    # ----------- validation ----------
    def _pick_entries(
        self,
        matter: Matter,
        period_from: date,
        period_to: date,
        candidates: Mapping[str, TimesheetEntry],
        selections: Iterable[EntrySelection],
    ) -> List[_Priced]:
        priced: List[_Priced] = []
        seen = set()
        for sel in selections:
            if sel.entry_id in seen:
                continue
            seen.add(sel.entry_id)
            e = candidates.get(sel.entry_id)
            if e is None:
                raise BillingValidationError(f"Temps introuvable: {sel.entry_id}")
            if e.matter_id != matter.id:
                raise BillingValidationError(f"Le temps {e.id} n'appartient pas au dossier {matter.code}")
            if not e.billable:
                raise BillingValidationError(f"Le temps {e.id} n'est pas facturable")
            if e.locked or e.invoice_id:
                raise BillingValidationError(f"Le temps {e.id} est déjà facturé")
            if not (period_from <= e.date <= period_to):
                raise BillingValidationError(f"Le temps {e.id} est hors de la période facturée")
            if sel.minutes_override is not None and sel.minutes_override < 0:
                raise BillingValidationError("La durée surchargée ne peut pas être négative")
            if sel.rate_override is not None and sel.rate_override < 0:
                raise BillingValidationError("Le taux surchargé ne peut pas être négatif")

            minutes = sel.minutes_override if sel.minutes_override is not None else e.minutes_rounded
            rate = self.resolver.rate_for(e, matter, sel.rate_override)
            priced.append((e, minutes, rate))
        return priced

    def _pick_expenses(
        self,
        matter: Matter,
        candidates: Mapping[str, Expense],
        selections: Iterable[ExpenseSelection],
    ) -> List[Tuple[Expense, int]]:
        out: List[Tuple[Expense, int]] = []
        seen = set()
        for sel in selections:
            if sel.expense_id in seen:
                continue
            seen.add(sel.expense_id)
            x = candidates.get(sel.expense_id)
            if x is None:
                raise BillingValidationError(f"Frais introuvable: {sel.expense_id}")
            if x.matter_id != matter.id:
                raise BillingValidationError(f"Le frais {x.id} n'appartient pas au dossier {matter.code}")
            if not x.billable:
                raise BillingValidationError(f"Le frais {x.id} n'est pas refacturable")
            if x.locked or x.invoice_id:
                raise BillingValidationError(f"Le frais {x.id} est déjà facturé")
            amount = x.amount_ttc_cents
            if sel.amount_ttc_override is not None:
                if sel.amount_ttc_override < 0:
                    raise BillingValidationError("Le montant de frais surchargé ne peut pas être négatif")
                if sel.amount_ttc_override > x.amount_ttc_cents:
                    logger.warning(
                        "Frais %s refacturé %s > montant d'origine %s",
                        x.id, sel.amount_ttc_override, x.amount_ttc_cents,
                    )
                amount = sel.amount_ttc_override
            out.append((x, amount))
        return out

    # ----------- construction ----------
    def build(
        self,
        matter: Matter,
        period_from: date,
        period_to: date,
        entries: Mapping[str, TimesheetEntry],
        entry_selections: Sequence[EntrySelection] = (),
        expenses: Optional[Mapping[str, Expense]] = None,
        expense_selections: Sequence[ExpenseSelection] = (),
        grouping: GroupingMode = "single",
        custom_total_ht_cents: Optional[int] = None,
    ) -> List[InvoiceLine]:
        if period_from > period_to:
            raise BillingValidationError("La période de facturation est inversée")

        priced = self._pick_entries(matter, period_from, period_to, entries, entry_selections)
        picked_expenses = self._pick_expenses(matter, expenses or {}, expense_selections)
        vat_rate = matter.vat_rate
        lines: List[InvoiceLine] = []

        if matter.is_flat_fee:
            if not matter.flat_fee_cents or matter.flat_fee_cents <= 0:
                raise BillingValidationError(f"Aucun montant de forfait défini pour le dossier {matter.code}")
            vat, ttc = vat_from_ht(matter.flat_fee_cents, vat_rate)
            lines.append(InvoiceLine(
                label=f"Forfait - {matter.label}",
                kind="flat_fee",
                rate_cents=0,
                vat_rate=vat_rate,
                amount_ht_cents=matter.flat_fee_cents,
                vat_cents=vat,
                amount_ttc_cents=ttc,
                entry_ids=[e.id for e, _, _ in priced],
                traced=True,
            ))
        else:
            if not priced:
                raise BillingValidationError("Aucun temps facturable sélectionné")
            if grouping == "by_collaborator":
                groups: Dict[str, List[_Priced]] = {}
                for p in priced:
                    groups.setdefault(p[0].user_id, []).append(p)
                for user_id, group in groups.items():
                    profile = self.resolver.profiles.get(user_id)
                    name = profile.name if profile else "Collaborateur"
                    lines.append(_time_line(f"Prestations - {name}", group, vat_rate, user_id=user_id))
            else:
                lines.append(_time_line("Prestations juridiques", priced, vat_rate))

        for x, amount in picked_expenses:
            ht, vat = split_ttc(amount, vat_rate)
            lines.append(InvoiceLine(
                label=f"Frais - {x.nature}",
                kind="expense",
                vat_rate=vat_rate,
                amount_ht_cents=ht,
                vat_cents=vat,
                amount_ttc_cents=amount,
                expense_id=x.id,
                traced=True,
            ))

        if custom_total_ht_cents is not None:
            lines = apply_custom_total(lines, custom_total_ht_cents)
        return lines
