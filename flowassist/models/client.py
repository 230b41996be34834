from pydantic import BaseModel, EmailStr, Field
from .common import gen_id

class Client(BaseModel):
    id: str = Field(default_factory=gen_id)
    code: str
    name: str
    address: str | None = None
    billing_email: EmailStr | None = None
    vat_number: str | None = None
    contact_name: str | None = None
    active: bool = True

    class Config:
        extra = "ignore"
