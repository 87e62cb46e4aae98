from pydantic import BaseModel


class OverviewOut(BaseModel):
    total_income: int
    total_expenses: int
    balance: int
    pending_count: int
    draft_count: int
    areas_count: int


class AreaRef(BaseModel):
    id: str
    name: str
    code: str
    currency: str


class AreaBalanceOut(BaseModel):
    area: AreaRef
    income: int
    expenses: int
    balance: int


class CategorySlice(BaseModel):
    category: str
    amount: int
    percentage: float


class ExpenseBreakdownOut(BaseModel):
    breakdown: list[CategorySlice]
    total: int


class MonthTotals(BaseModel):
    month: str
    income: int
    expenses: int


class AreaSlice(BaseModel):
    area_id: str
    area_name: str
    area_code: str
    amount: int
    percentage: float


class ExpensesByAreaOut(BaseModel):
    breakdown: list[AreaSlice]
    total: int


class DepartmentSlice(BaseModel):
    department_id: str
    department_name: str
    department_code: str
    area_name: str
    area_code: str
    amount: int
    percentage: float


class ExpensesByDepartmentOut(BaseModel):
    breakdown: list[DepartmentSlice]
    total: int


class DepartmentRef(BaseModel):
    id: str
    name: str
    code: str
    description: str | None


class PersonalFundsOut(BaseModel):
    department: DepartmentRef
    area: AreaRef
    income: int
    expenses: int
    balance: int
    movement_count: int


class AlertOut(BaseModel):
    type: str
    area_id: str
    area_name: str
    area_code: str
    count: int
    message: str


class AlertsOut(BaseModel):
    draft_movements: int
    recent_cancellations: int
    high_value_drafts: int
    alerts: list[AlertOut]
