from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional
from .common import gen_id

BillingType = Literal["time_based", "flat_fee"]
MatterStatus = Literal["open", "closed"]
VatRate = Literal[0, 20]

class Matter(BaseModel):
    id: str = Field(default_factory=gen_id)
    code: str
    label: str
    client_id: str
    status: MatterStatus = "open"

    billing_type: BillingType = "time_based"
    rate_cents: Optional[int] = None        # taux horaire propre au dossier
    flat_fee_cents: Optional[int] = None    # montant HT du forfait
    vat_rate: VatRate = 20
    max_amount_ht_cents: Optional[int] = None  # budget HT (alerte à 80 %)

    class Config:
        extra = "ignore"

    @property
    def is_flat_fee(self) -> bool:
        return self.billing_type == "flat_fee"
