from pydantic import BaseModel, Field, field_validator
from datetime import date, datetime
from typing import Literal

MovementTypeName = Literal["INCOME", "EXPENSE", "TRANSFER", "DISTRIBUTION"]


class MovementCreate(BaseModel):
    type: MovementTypeName
    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)
    transaction_date: date
    area_id: str
    source_bank_account_id: str
    department_id: str | None = None
    destination_bank_account_id: str | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    category: str | None = Field(default=None, max_length=100)
    reference: str | None = Field(default=None, max_length=128)
    idempotency_key: str | None = Field(default=None, max_length=128)

    @field_validator("description")
    @classmethod
    def description_trim(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("description is required")
        return v


class MovementUpdate(BaseModel):
    type: MovementTypeName | None = None
    amount: int | None = Field(default=None, gt=0)
    description: str | None = Field(default=None, min_length=1, max_length=500)
    transaction_date: date | None = None
    area_id: str | None = None
    department_id: str | None = None
    source_bank_account_id: str | None = None
    destination_bank_account_id: str | None = None
    category: str | None = Field(default=None, max_length=100)
    reference: str | None = Field(default=None, max_length=128)


class MovementOut(BaseModel):
    id: str
    type: str
    status: str
    amount: int
    currency: str
    description: str
    category: str | None
    reference: str | None
    transaction_date: date
    area_id: str
    department_id: str | None
    user_id: str
    source_bank_account_id: str | None
    destination_bank_account_id: str | None
    is_internal_transfer: bool
    parent_id: str | None
    is_split_parent: bool
    needs_categorization: bool
    approved_by: str | None
    approved_at: datetime | None
    rejected_by: str | None
    rejected_at: datetime | None
    rejection_reason: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class AllocationIn(BaseModel):
    area_id: str
    amount: int
    department_id: str | None = None
    description: str | None = None
    transaction_date: date | None = None


class SplitIn(BaseModel):
    allocations: list[AllocationIn]


class SplitOut(BaseModel):
    parent: MovementOut
    children: list[MovementOut]


class FinalizeIn(BaseModel):
    override: bool = False


class ApproveIn(BaseModel):
    comment: str | None = None


class RejectIn(BaseModel):
    reason: str | None = None
    comment: str | None = None


class CancelIn(BaseModel):
    reason: str | None = None


class CommentIn(BaseModel):
    comment: str


class BulkApproveIn(BaseModel):
    ids: list[str]
    comment: str | None = None


class BulkRejectIn(BaseModel):
    ids: list[str]
    reason: str | None = None
    comment: str | None = None


class HistoryOut(BaseModel):
    id: int
    movement_id: str
    user_id: str
    user_name: str | None
    action: str
    comment: str | None
    metadata: dict | None
    created_at: datetime


class CategorizeIn(BaseModel):
    area_id: str | None = None
    department_id: str | None = None
    category: str | None = Field(default=None, max_length=100)


class DraftAreaStat(BaseModel):
    area_id: str
    area_name: str
    area_code: str
    count: int
    needs_categorization: int


class DraftStatsOut(BaseModel):
    total: int
    needs_categorization: int
    by_area: list[DraftAreaStat]
