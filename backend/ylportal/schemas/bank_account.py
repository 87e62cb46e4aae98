from pydantic import BaseModel, Field
from datetime import datetime


class BankAccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    account_number: str = Field(min_length=1, max_length=64)
    bank_name: str | None = Field(default=None, max_length=128)
    currency: str = Field(default="EUR", min_length=3, max_length=3)


class BankAccountOut(BaseModel):
    id: str
    name: str
    bank_name: str | None
    account_number: str
    currency: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True
