"""Primitives monétaires et temporelles.

Tous les montants sont des entiers en centimes; aucun calcul ne passe par des
flottants binaires. Les arrondis sont "au demi supérieur" (ROUND_HALF_UP).
"""
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple

Cents = int

QUARTER_HOUR = 15


def round_minutes(minutes: int) -> int:
    """Arrondit au quart d'heure supérieur; une durée nulle compte 15 min."""
    if minutes <= 0:
        return QUARTER_HOUR
    return -(-int(minutes) // QUARTER_HOUR) * QUARTER_HOUR


def round_half_up(numerator: int | Decimal, denominator: int | Decimal = 1) -> int:
    if denominator == 0:
        raise ZeroDivisionError("division par zéro dans un calcul de montant")
    q = Decimal(numerator) / Decimal(denominator)
    return int(q.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def vat_from_ht(ht_cents: Cents, vat_rate: int) -> Tuple[Cents, Cents]:
    """HT -> (TVA, TTC)."""
    vat = round_half_up(ht_cents * vat_rate, 100)
    return vat, ht_cents + vat


def split_ttc(ttc_cents: Cents, vat_rate: int) -> Tuple[Cents, Cents]:
    """TTC -> (HT, TVA) avec HT + TVA == TTC au centime près."""
    ht = round_half_up(ttc_cents * 100, 100 + vat_rate)
    return ht, ttc_cents - ht


def time_amount_ht(minutes: int, rate_cents: Cents) -> Cents:
    return round_half_up(minutes * rate_cents, 60)


def weighted_rate(pairs) -> int:
    """Taux moyen pondéré par les minutes: pairs = [(rate_cents, minutes), ...]."""
    total_minutes = 0
    weighted = 0
    for rate, minutes in pairs:
        weighted += rate * minutes
        total_minutes += minutes
    if total_minutes == 0:
        return 0
    return round_half_up(weighted, total_minutes)


# ---------- Formats ----------
def format_cents(cents: Cents) -> str:
    """12345 -> '123.45' (sans passer par un float)."""
    c = int(cents)
    sign = "-" if c < 0 else ""
    c = abs(c)
    return f"{sign}{c // 100}.{c % 100:02d}"


def format_amount(cents: Cents, currency: str = "MAD") -> str:
    """Affichage à la française: 1234567 -> '12 345,67 MAD'."""
    raw = format_cents(cents)
    units, decimals = raw.split(".")
    sign = ""
    if units.startswith("-"):
        sign, units = "-", units[1:]
    groups = []
    while len(units) > 3:
        groups.insert(0, units[-3:])
        units = units[:-3]
    groups.insert(0, units)
    return f"{sign}{' '.join(groups)},{decimals} {currency}".strip()


def format_minutes(minutes: int) -> str:
    hours, mins = divmod(int(minutes), 60)
    if hours == 0:
        return f"{mins} min"
    if mins == 0:
        return f"{hours} h"
    return f"{hours} h {mins}"


def format_hours(minutes: int) -> str:
    """Heures décimales pour les exports: 135 -> '2.25'."""
    return format_cents(round_half_up(minutes * 100, 60))
