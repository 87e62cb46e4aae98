"""Dashboard aggregates.

Every figure counts only settled money: APPROVED, live, not an internal
transfer and not a split parent (its children carry the amounts). Scope is
the caller's areas, all live areas for a global admin, and other users'
special funds are left out for everyone else.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from ylportal.core.errors import FieldError, ValidationFailed
from ylportal.models.area import Area
from ylportal.models.department import Department
from ylportal.models.movement import Movement, MovementStatus, MovementType
from ylportal.models.user import User
from ylportal.services import permissions
from ylportal.services.movements import visible_query
from ylportal.utils.timezone import add_months, month_key, month_start, now_utc, today_utc

UNCATEGORIZED = "Uncategorized"
HIGH_VALUE_DRAFT = 10_000


def window_start(months: int, today: date | None = None) -> date:
    if not 1 <= months <= 12:
        raise ValidationFailed("months must be between 1 and 12", [FieldError("months", "must be 1-12")])
    return add_months(month_start(today or today_utc()), -(months - 1))


def settled_filters(s: Session, user: User, area_ids: list[str] | None = None) -> list:
    if area_ids is None:
        area_ids = permissions.accessible_area_ids(s, user)
    clauses = [
        Movement.status == MovementStatus.APPROVED,
        Movement.deleted_at.is_(None),
        Movement.is_internal_transfer.is_(False),
        Movement.is_split_parent.is_(False),
        Movement.area_id.in_(area_ids),
    ]
    hidden = permissions.foreign_fund_department_ids(s, user)
    if hidden:
        clauses.append(or_(Movement.department_id.is_(None), Movement.department_id.not_in(hidden)))
    return clauses


def _pct(amount: int, total: int) -> float:
    return round(amount / total * 100, 2) if total > 0 else 0.0


def _sum_by_type(s: Session, clauses: list) -> dict[str, int]:
    rows = s.execute(
        select(Movement.type, func.coalesce(func.sum(Movement.amount), 0)).where(*clauses).group_by(Movement.type)
    ).all()
    return {t: int(v) for t, v in rows}


def _count_status(s: Session, user: User, status: str) -> int:
    # split parents are never decided themselves; their children are
    sub = (
        visible_query(s, user)
        .where(Movement.status == status, Movement.is_split_parent.is_(False))
        .subquery()
    )
    return s.execute(select(func.count()).select_from(sub)).scalar_one()


def get_overview_stats(s: Session, user: User) -> dict:
    area_ids = permissions.accessible_area_ids(s, user)
    totals = _sum_by_type(s, settled_filters(s, user, area_ids))
    income = totals.get(MovementType.INCOME, 0)
    expenses = totals.get(MovementType.EXPENSE, 0)
    return {
        "total_income": income,
        "total_expenses": expenses,
        "balance": income - expenses,
        "pending_count": _count_status(s, user, MovementStatus.PENDING),
        "draft_count": _count_status(s, user, MovementStatus.DRAFT),
        "areas_count": len(area_ids),
    }


def get_balances(s: Session, user: User) -> list[dict]:
    area_ids = permissions.accessible_area_ids(s, user)
    if not area_ids:
        return []
    areas = s.execute(select(Area).where(Area.id.in_(area_ids)).order_by(Area.name.asc())).scalars().all()

    sums: dict[str, dict[str, int]] = defaultdict(dict)
    for area_id, mtype, total in s.execute(
        select(Movement.area_id, Movement.type, func.sum(Movement.amount))
        .where(*settled_filters(s, user, area_ids))
        .group_by(Movement.area_id, Movement.type)
    ).all():
        sums[area_id][mtype] = int(total or 0)

    out = []
    for a in areas:
        income = sums[a.id].get(MovementType.INCOME, 0)
        expenses = sums[a.id].get(MovementType.EXPENSE, 0)
        out.append(
            {
                "area": {"id": a.id, "name": a.name, "code": a.code, "currency": a.currency},
                "income": income,
                "expenses": expenses,
                "balance": income - expenses,
            }
        )
    return out


def get_expense_breakdown(s: Session, user: User, months: int = 6) -> dict:
    start = window_start(months)
    rows = s.execute(
        select(Movement.category, func.sum(Movement.amount))
        .where(
            *settled_filters(s, user),
            Movement.type == MovementType.EXPENSE,
            Movement.transaction_date >= start,
        )
        .group_by(Movement.category)
    ).all()

    merged: dict[str, int] = defaultdict(int)
    for category, amount in rows:
        merged[category or UNCATEGORIZED] += int(amount or 0)
    total = sum(merged.values())

    breakdown = [{"category": c, "amount": a, "percentage": _pct(a, total)} for c, a in merged.items()]
    breakdown.sort(key=lambda r: (-r["amount"], r["category"]))
    return {"breakdown": breakdown, "total": total}


def get_income_vs_expense(s: Session, user: User, months: int = 6) -> list[dict]:
    today = today_utc()
    start = window_start(months, today)

    buckets = {}
    for i in range(months):
        key = month_key(add_months(start, i))
        buckets[key] = {"month": key, "income": 0, "expenses": 0}

    rows = s.execute(
        select(Movement.type, Movement.transaction_date, func.sum(Movement.amount))
        .where(
            *settled_filters(s, user),
            Movement.type.in_((MovementType.INCOME, MovementType.EXPENSE)),
            Movement.transaction_date >= start,
        )
        .group_by(Movement.type, Movement.transaction_date)
    ).all()
    for mtype, tx_date, amount in rows:
        bucket = buckets.get(month_key(tx_date))
        if bucket is None:
            # future-dated rows beyond the current month
            continue
        bucket["income" if mtype == MovementType.INCOME else "expenses"] += int(amount or 0)

    return list(buckets.values())


def get_expenses_by_area(s: Session, user: User, months: int = 6) -> dict:
    start = window_start(months)
    rows = s.execute(
        select(Area.id, Area.name, Area.code, func.sum(Movement.amount))
        .select_from(Movement)
        .join(Area, Area.id == Movement.area_id)
        .where(
            *settled_filters(s, user),
            Movement.type == MovementType.EXPENSE,
            Movement.transaction_date >= start,
        )
        .group_by(Area.id, Area.name, Area.code)
    ).all()

    total = sum(int(r[3] or 0) for r in rows)
    breakdown = [
        {
            "area_id": aid,
            "area_name": name,
            "area_code": code,
            "amount": int(amount or 0),
            "percentage": _pct(int(amount or 0), total),
        }
        for aid, name, code, amount in rows
    ]
    breakdown.sort(key=lambda r: (-r["amount"], r["area_name"]))
    return {"breakdown": breakdown, "total": total}


def get_expenses_by_department(s: Session, user: User, months: int = 6, area_id: str | None = None) -> dict:
    start = window_start(months)
    area_ids = permissions.accessible_area_ids(s, user)
    if area_id:
        if area_id not in area_ids:
            return {"breakdown": [], "total": 0}
        area_ids = [area_id]

    rows = s.execute(
        select(Department.id, Department.name, Department.code, Area.name, Area.code, func.sum(Movement.amount))
        .select_from(Movement)
        .join(Department, Department.id == Movement.department_id)
        .join(Area, Area.id == Movement.area_id)
        .where(
            *settled_filters(s, user, area_ids),
            Movement.type == MovementType.EXPENSE,
            Movement.transaction_date >= start,
        )
        .group_by(Department.id, Department.name, Department.code, Area.name, Area.code)
    ).all()

    total = sum(int(r[5] or 0) for r in rows)
    breakdown = [
        {
            "department_id": did,
            "department_name": dname,
            "department_code": dcode,
            "area_name": aname,
            "area_code": acode,
            "amount": int(amount or 0),
            "percentage": _pct(int(amount or 0), total),
        }
        for did, dname, dcode, aname, acode, amount in rows
    ]
    breakdown.sort(key=lambda r: (-r["amount"], r["department_name"]))
    return {"breakdown": breakdown, "total": total}


def get_personal_funds(s: Session, user: User) -> dict | None:
    dept = (
        s.execute(
            select(Department)
            .where(Department.user_id == user.id, Department.deleted_at.is_(None))
            .order_by(Department.created_at.asc())
        )
        .scalars()
        .first()
    )
    if dept is None:
        return None
    area = s.get(Area, dept.area_id)

    clauses = [
        Movement.department_id == dept.id,
        Movement.status == MovementStatus.APPROVED,
        Movement.deleted_at.is_(None),
        Movement.is_internal_transfer.is_(False),
        Movement.is_split_parent.is_(False),
    ]
    totals = _sum_by_type(s, clauses)
    count = s.execute(select(func.count(Movement.id)).where(*clauses)).scalar_one()
    income = totals.get(MovementType.INCOME, 0)
    expenses = totals.get(MovementType.EXPENSE, 0)
    return {
        "department": {"id": dept.id, "name": dept.name, "code": dept.code, "description": dept.description},
        "area": {"id": area.id, "name": area.name, "code": area.code, "currency": area.currency},
        "income": income,
        "expenses": expenses,
        "balance": income - expenses,
        "movement_count": count,
    }


def get_recent_movements(s: Session, user: User, limit: int = 10) -> list[Movement]:
    q = visible_query(s, user).order_by(Movement.transaction_date.desc(), Movement.created_at.desc()).limit(limit)
    return list(s.execute(q).scalars().all())


def get_organization_alerts(s: Session, user: User) -> dict:
    """Admin-only work queue summary; empty for everyone else."""
    if not user.is_admin:
        return {"draft_movements": 0, "recent_cancellations": 0, "high_value_drafts": 0, "alerts": []}

    live = [Movement.deleted_at.is_(None)]
    drafts = s.execute(
        select(func.count(Movement.id)).where(*live, Movement.status == MovementStatus.DRAFT)
    ).scalar_one()
    week_ago = now_utc() - timedelta(days=7)
    cancellations = s.execute(
        select(func.count(Movement.id)).where(
            *live, Movement.status == MovementStatus.CANCELLED, Movement.updated_at >= week_ago
        )
    ).scalar_one()
    high_value = s.execute(
        select(func.count(Movement.id)).where(
            *live, Movement.status == MovementStatus.DRAFT, Movement.amount >= HIGH_VALUE_DRAFT
        )
    ).scalar_one()

    per_area = s.execute(
        select(Area.id, Area.name, Area.code, func.count(Movement.id).label("n"))
        .select_from(Movement)
        .join(Area, Area.id == Movement.area_id)
        .where(*live, Area.deleted_at.is_(None), Movement.status == MovementStatus.DRAFT)
        .group_by(Area.id, Area.name, Area.code)
        .order_by(func.count(Movement.id).desc(), Area.name.asc())
        .limit(5)
    ).all()

    alerts = [
        {
            "type": "draft_categorization",
            "area_id": aid,
            "area_name": name,
            "area_code": code,
            "count": n,
            "message": f"{n} draft movement{'s' if n > 1 else ''} awaiting categorization in {name}",
        }
        for aid, name, code, n in per_area
    ]
    return {
        "draft_movements": drafts,
        "recent_cancellations": cancellations,
        "high_value_drafts": high_value,
        "alerts": alerts,
    }
