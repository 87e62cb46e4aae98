from pydantic import BaseModel


class MonthlySummaryOut(BaseModel):
    month: str
    income: int
    expenses: int
    net: int


class UserMonthOut(BaseModel):
    month: str
    total_expenses: int
    count: int


class UserExpensesOut(BaseModel):
    user_id: str
    user_name: str
    user_email: str
    monthly: list[UserMonthOut]
    grand_total: int
    transaction_count: int
