from pydantic import BaseModel, Field
from typing import Optional
from .common import gen_id

class Profile(BaseModel):
    """Collaborateur du cabinet (auteur des temps)."""
    id: str = Field(default_factory=gen_id)
    name: str
    email: str = ""
    rate_cents: Optional[int] = None  # taux horaire personnel
    active: bool = True

    class Config:
        extra = "ignore"
