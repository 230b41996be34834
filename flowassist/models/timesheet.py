from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Optional
import datetime as dt
from .common import gen_id

class TimesheetEntry(BaseModel):
    id: str = Field(default_factory=gen_id)
    user_id: str
    matter_id: str
    date: dt.date
    minutes_rounded: int
    billable: bool = True
    locked: bool = False
    description: str = ""
    invoice_id: Optional[str] = None  # facture émise qui a consommé le temps

    class Config:
        extra = "ignore"

    @field_validator("minutes_rounded")
    @classmethod
    def _quarter_hours(cls, v: int) -> int:
        if v <= 0 or v % 15:
            raise ValueError("minutes_rounded doit être un multiple positif de 15")
        return v


class Expense(BaseModel):
    id: str = Field(default_factory=gen_id)
    user_id: str
    client_id: str
    matter_id: str
    expense_date: dt.date
    nature: str
    amount_ttc_cents: int = Field(ge=0)
    billable: bool = True
    locked: bool = False
    invoice_id: Optional[str] = None

    class Config:
        extra = "ignore"
