from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import StreamingResponse
from io import BytesIO
from sqlalchemy.orm import Session
from datetime import date

from ylportal.api.deps import db, current_user
from ylportal.models.user import User
from ylportal.schemas.report import MonthlySummaryOut, UserExpensesOut
from ylportal.services import reports

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/movements.xlsx")
def movements_report(
    start: date = Query(...),
    end: date = Query(...),
    s: Session = Depends(db),
    u: User = Depends(current_user),
):
    buf = BytesIO()
    reports.build_movements_report(s, u, start, end, buf)
    buf.seek(0)

    filename = f"movements_{start}_to_{end}.xlsx"
    return StreamingResponse(
        buf,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/movements.csv")
def movements_csv(
    start: date = Query(...),
    end: date = Query(...),
    s: Session = Depends(db),
    u: User = Depends(current_user),
):
    data, _ = reports.build_movements_csv(s, u, start, end)
    return Response(
        content=data,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="movements_{start}_to_{end}.csv"'},
    )


@router.get("/monthly-summary", response_model=list[MonthlySummaryOut])
def monthly_summary(
    months: int = Query(default=12, ge=1, le=24),
    area_id: str | None = Query(default=None),
    s: Session = Depends(db),
    u: User = Depends(current_user),
):
    return reports.monthly_summary(s, u, months, area_id)


@router.get("/monthly-user-expenses", response_model=list[UserExpensesOut])
def monthly_user_expenses(
    months: int = Query(default=12, ge=1, le=24),
    user_id: str | None = Query(default=None),
    s: Session = Depends(db),
    u: User = Depends(current_user),
):
    return reports.monthly_user_expenses(s, u, months, user_id)
