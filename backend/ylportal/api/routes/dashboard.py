from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from ylportal.api.deps import db, current_user
from ylportal.models.user import User
from ylportal.schemas.dashboard import (
    AlertsOut,
    AreaBalanceOut,
    ExpenseBreakdownOut,
    ExpensesByAreaOut,
    ExpensesByDepartmentOut,
    MonthTotals,
    OverviewOut,
    PersonalFundsOut,
)
from ylportal.schemas.movement import MovementOut
from ylportal.services import dashboard

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

@router.get("/overview", response_model=OverviewOut)
def overview(s: Session = Depends(db), u: User = Depends(current_user)):
    return dashboard.get_overview_stats(s, u)

@router.get("/balances", response_model=list[AreaBalanceOut])
def balances(s: Session = Depends(db), u: User = Depends(current_user)):
    return dashboard.get_balances(s, u)

@router.get("/expense-breakdown", response_model=ExpenseBreakdownOut)
def expense_breakdown(
    months: int = Query(default=6, ge=1, le=12), s: Session = Depends(db), u: User = Depends(current_user)
):
    return dashboard.get_expense_breakdown(s, u, months)

@router.get("/income-vs-expense", response_model=list[MonthTotals])
def income_vs_expense(
    months: int = Query(default=6, ge=1, le=12), s: Session = Depends(db), u: User = Depends(current_user)
):
    return dashboard.get_income_vs_expense(s, u, months)

@router.get("/expenses-by-area", response_model=ExpensesByAreaOut)
def expenses_by_area(
    months: int = Query(default=6, ge=1, le=12), s: Session = Depends(db), u: User = Depends(current_user)
):
    return dashboard.get_expenses_by_area(s, u, months)

@router.get("/expenses-by-department", response_model=ExpensesByDepartmentOut)
def expenses_by_department(
    months: int = Query(default=6, ge=1, le=12),
    area_id: str | None = Query(default=None),
    s: Session = Depends(db),
    u: User = Depends(current_user),
):
    return dashboard.get_expenses_by_department(s, u, months, area_id)

@router.get("/personal-funds", response_model=PersonalFundsOut | None)
def personal_funds(s: Session = Depends(db), u: User = Depends(current_user)):
    return dashboard.get_personal_funds(s, u)

@router.get("/recent", response_model=list[MovementOut])
def recent(limit: int = Query(default=10, ge=1, le=50), s: Session = Depends(db), u: User = Depends(current_user)):
    return dashboard.get_recent_movements(s, u, limit)

@router.get("/alerts", response_model=AlertsOut)
def alerts(s: Session = Depends(db), u: User = Depends(current_user)):
    return dashboard.get_organization_alerts(s, u)
