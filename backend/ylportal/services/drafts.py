from __future__ import annotations

from sqlalchemy import case, select, func
from sqlalchemy.orm import Session

from ylportal.core.errors import InvalidStateTransition
from ylportal.models.area import Area
from ylportal.models.movement import Movement, MovementStatus
from ylportal.models.user import User
from ylportal.services import permissions
from ylportal.services.movements import delete_movement, load, update_movement, visible_query


def list_drafts(
    s: Session,
    user: User,
    area_id: str | None = None,
    needs_categorization: bool | None = None,
    limit: int = 200,
    offset: int = 0,
) -> list[Movement]:
    q = visible_query(s, user).where(Movement.status == MovementStatus.DRAFT)
    if area_id:
        q = q.where(Movement.area_id == area_id)
    if needs_categorization is True:
        q = q.where(Movement.department_id.is_(None))
    elif needs_categorization is False:
        q = q.where(Movement.department_id.is_not(None))
    q = q.order_by(Movement.transaction_date.desc(), Movement.created_at.desc()).limit(limit).offset(offset)
    return list(s.execute(q).scalars().all())


def _load_draft(s: Session, movement_id: str) -> Movement:
    m = load(s, movement_id)
    if m.status != MovementStatus.DRAFT:
        raise InvalidStateTransition(m.status, "edit draft", "Only drafts can be changed here")
    return m


def categorize_draft(
    s: Session,
    user: User,
    movement_id: str,
    area_id: str | None = None,
    department_id: str | None = None,
    category: str | None = None,
) -> Movement:
    _load_draft(s, movement_id)
    changes: dict = {}
    if area_id is not None:
        changes["area_id"] = area_id
    if department_id is not None:
        changes["department_id"] = department_id
    if category is not None:
        changes["category"] = category.strip() or None
    return update_movement(s, user, movement_id, changes)


def delete_draft(s: Session, user: User, movement_id: str) -> None:
    _load_draft(s, movement_id)
    delete_movement(s, user, movement_id)


def draft_stats(s: Session, user: User) -> dict:
    base = visible_query(s, user).where(Movement.status == MovementStatus.DRAFT).subquery()

    total = s.execute(select(func.count()).select_from(base)).scalar_one()
    uncategorized = s.execute(
        select(func.count()).select_from(base).where(base.c.department_id.is_(None))
    ).scalar_one()

    rows = s.execute(
        select(
            Area.id,
            Area.name,
            Area.code,
            func.count(base.c.id),
            func.sum(case((base.c.department_id.is_(None), 1), else_=0)),
        )
        .join(base, base.c.area_id == Area.id)
        .group_by(Area.id, Area.name, Area.code)
        .order_by(Area.name.asc())
    ).all()

    return {
        "total": total,
        "needs_categorization": uncategorized,
        "by_area": [
            {
                "area_id": aid,
                "area_name": name,
                "area_code": code,
                "count": int(count),
                "needs_categorization": int(unc or 0),
            }
            for aid, name, code, count, unc in rows
        ],
    }
