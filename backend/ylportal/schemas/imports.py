from pydantic import BaseModel, Field
from datetime import date


class ValidateImportIn(BaseModel):
    source_bank_account_id: str
    file_name: str
    file_data: str = Field(description="base64-encoded file contents")
    default_area_id: str | None = None


class IssueOut(BaseModel):
    field: str
    message: str
    row: int | None = None

    class Config:
        from_attributes = True


class ImportRowData(BaseModel):
    row_number: int
    description: str
    amount: int
    type: str
    transaction_date: date | None
    source_bank_account_id: str
    area_id: str | None = None
    department_id: str | None = None
    category: str | None = None
    reference: str | None = None
    needs_categorization: bool = True
    idempotency_key: str = Field(min_length=1, max_length=255)


class ImportRowOut(BaseModel):
    data: ImportRowData
    errors: list[IssueOut] = []
    warnings: list[IssueOut] = []

    class Config:
        from_attributes = True


class ValidationOut(BaseModel):
    valid: bool
    total_rows: int
    valid_rows: int
    error_count: int
    warning_count: int
    rows: list[ImportRowOut]
    errors: list[IssueOut]

    class Config:
        from_attributes = True


class ExecuteImportIn(BaseModel):
    rows: list[ImportRowOut]
    skip_invalid: bool = True


class ExecuteImportOut(BaseModel):
    drafts: int
    success: int
    failed: int
    needs_categorization: int
    duplicates: int
    errors: list[IssueOut]

    class Config:
        from_attributes = True
