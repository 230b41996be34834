"""Exceptions levées par le moteur de facturation.

Toutes dérivent de ``BillingError``; les messages sont lisibles tels quels par
l'utilisateur final.
"""
from __future__ import annotations
from typing import Optional


class BillingError(Exception):
    """Base de toutes les erreurs métier."""


class BillingValidationError(BillingError, ValueError):
    """Opération refusée: données d'entrée invalides (jamais réessayée)."""


class RecordNotFoundError(BillingError, KeyError):
    def __init__(self, entity: str, record_id: str):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} introuvable: {record_id}")

    def __str__(self) -> str:  # KeyError met le message entre guillemets
        return f"{self.entity} introuvable: {self.record_id}"


class InvoiceStateError(BillingError):
    """Transition de statut interdite (ex.: émettre une facture déjà émise)."""


class ConcurrentUpdateError(BillingError):
    """L'enregistrement a été modifié entre la lecture et l'écriture."""

    def __init__(self, entity: str, expected_version: int, actual_version: Optional[int]):
        self.entity = entity
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Conflit d'écriture sur {entity}: version attendue {expected_version}, "
            f"trouvée {actual_version}"
        )


class NumberingError(BillingError, RuntimeError):
    """Impossible d'attribuer un numéro de pièce."""


class LockingError(BillingError):
    """Un temps ou un frais ne peut pas être verrouillé."""


class IssuanceError(BillingError):
    """L'émission a échoué après le début de la transaction (tout a été annulé)."""


class DocumentExportError(BillingError, RuntimeError):
    """Rendu PDF/Word impossible."""
