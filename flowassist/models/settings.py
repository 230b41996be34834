from __future__ import annotations
from pydantic import BaseModel
from typing import Optional

class CabinetSettings(BaseModel):
    """Réglages du cabinet (singleton id='default')."""
    id: str = "default"
    name: str = "Mon Cabinet"
    address: Optional[str] = None
    iban: Optional[str] = None
    mentions: Optional[str] = None

    rate_cabinet_cents: int = 15000
    vat_default: int = 20

    # compteurs de numérotation (un par type de pièce)
    invoice_seq_year: int = 0
    invoice_seq_next: int = 1
    credit_seq_year: int = 0
    credit_seq_next: int = 1

    # jeton de concurrence optimiste, incrémenté à chaque écriture
    version: int = 0

    class Config:
        extra = "ignore"
