from pydantic import BaseModel, Field
from typing import Any, Dict, Literal, Optional
import datetime as dt
from .common import gen_id, utcnow

AuditAction = Literal["issue_invoice", "void_invoice", "create_credit_note"]


class AuditLog(BaseModel):
    """Trace d'un événement de facturation."""
    id: str = Field(default_factory=gen_id)
    user_id: Optional[str] = None  # auteur, si connu
    action: AuditAction
    entity_type: str
    entity_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: dt.datetime = Field(default_factory=utcnow)

    class Config:
        extra = "ignore"
