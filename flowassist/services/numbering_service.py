from __future__ import annotations
import logging
from datetime import date
from typing import Literal, Optional, Tuple

from flowassist.errors import ConcurrentUpdateError, NumberingError
from flowassist.models.settings import CabinetSettings
from flowassist.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

DocumentKind = Literal["invoice", "credit_note"]

# champs (année, prochain numéro) de CabinetSettings par type de pièce
_FIELDS = {
    "invoice": ("invoice_seq_year", "invoice_seq_next"),
    "credit_note": ("credit_seq_year", "credit_seq_next"),
}


def format_number(kind: DocumentKind, year: int, seq: int) -> str:
    if kind == "invoice":
        return f"{year}-{seq:04d}"
    return f"AV-{year}-{seq:04d}"


def _next_in_year(settings: CabinetSettings, kind: DocumentKind, year: int) -> int:
    year_field, next_field = _FIELDS[kind]
    if getattr(settings, year_field) != year:
        return 1
    return getattr(settings, next_field)


class NumberingAuthority:
    """
    Attribution des numéros de facture (AAAA-NNNN) et d'avoir (AV-AAAA-NNNN).

    Chaque attribution est une lecture-modification-écriture conditionnée par
    la version des réglages du cabinet: si un autre émetteur a écrit entre
    temps, on relit et on recommence. Un numéro attribué n'est jamais réutilisé.
    """

    def __init__(self, store: RecordStore, max_attempts: int = 5):
        if max_attempts < 1:
            raise ValueError("max_attempts doit être >= 1")
        self.store = store
        self.max_attempts = max_attempts

    def peek(self, kind: DocumentKind, today: Optional[date] = None) -> str:
        """Numéro qui serait attribué maintenant (sans le consommer)."""
        year = (today or date.today()).year
        settings = self.store.get_cabinet_settings()
        return format_number(kind, year, _next_in_year(settings, kind, year))

    def allocate(self, kind: DocumentKind, today: Optional[date] = None) -> str:
        number, _ = self.allocate_with_settings(kind, today)
        return number

    def allocate_with_settings(self, kind: DocumentKind, today: Optional[date] = None) -> Tuple[str, CabinetSettings]:
        if kind not in _FIELDS:
            raise ValueError(f"Type de pièce inconnu: {kind}")
        year = (today or date.today()).year
        year_field, next_field = _FIELDS[kind]

        last_conflict: Optional[ConcurrentUpdateError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                current = self.store.get_cabinet_settings()
                seq = _next_in_year(current, kind, year)
                updated = current.model_copy(update={year_field: year, next_field: seq + 1})
                saved = self.store.compare_and_swap_settings(updated, expected_version=current.version)
            except ConcurrentUpdateError as e:
                last_conflict = e
                logger.warning("Conflit de numérotation %s (tentative %d/%d)", kind, attempt, self.max_attempts)
                continue
            except Exception as e:
                raise NumberingError(f"Numérotation indisponible: {e}") from e
            number = format_number(kind, year, seq)
            logger.info("Numéro %s attribué", number)
            return number, saved

        raise NumberingError(
            f"Impossible d'attribuer un numéro de {'facture' if kind == 'invoice' else 'avoir'} "
            f"après {self.max_attempts} tentatives"
        ) from last_conflict
