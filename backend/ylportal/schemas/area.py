from pydantic import BaseModel, Field
from datetime import datetime


class AreaCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    code: str = Field(min_length=1, max_length=32)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    description: str | None = Field(default=None, max_length=500)
    budget: int | None = Field(default=None, ge=0)
    bank_account_id: str | None = None


class AreaOut(BaseModel):
    id: str
    name: str
    code: str
    currency: str
    description: str | None
    budget: int | None
    bank_account_id: str | None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class DepartmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    code: str = Field(min_length=1, max_length=32)
    description: str | None = Field(default=None, max_length=500)
    user_id: str | None = None


class DepartmentOut(BaseModel):
    id: str
    area_id: str
    name: str
    code: str
    description: str | None
    user_id: str | None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
