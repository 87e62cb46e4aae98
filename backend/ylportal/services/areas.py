from __future__ import annotations

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from ylportal.core.errors import Conflict, NotFound, ReferencedEntityConflict, ValidationFailed, FieldError
from ylportal.models.area import Area
from ylportal.models.bank_account import BankAccount
from ylportal.models.department import Department
from ylportal.models.movement import Movement
from ylportal.models.user import User
from ylportal.models.user_area import AreaRole, UserArea
from ylportal.services import permissions
from ylportal.services.audit import log_event
from ylportal.utils.timezone import now_utc


def get_area(s: Session, area_id: str) -> Area:
    a = s.execute(select(Area).where(Area.id == area_id, Area.deleted_at.is_(None))).scalar_one_or_none()
    if not a:
        raise NotFound("Area not found", code="area_not_found")
    return a


def get_department(s: Session, department_id: str) -> Department:
    d = s.execute(
        select(Department).where(Department.id == department_id, Department.deleted_at.is_(None))
    ).scalar_one_or_none()
    if not d:
        raise NotFound("Department not found", code="department_not_found")
    return d


def department_in_area(s: Session, department_id: str, area_id: str) -> Department | None:
    return s.execute(
        select(Department).where(
            Department.id == department_id,
            Department.area_id == area_id,
            Department.deleted_at.is_(None),
        )
    ).scalar_one_or_none()


def list_areas(s: Session, user: User) -> list[Area]:
    ids = permissions.accessible_area_ids(s, user)
    if not ids:
        return []
    return list(s.execute(select(Area).where(Area.id.in_(ids)).order_by(Area.name.asc())).scalars().all())


def list_departments(s: Session, user: User, area_id: str) -> list[Department]:
    get_area(s, area_id)
    permissions.require(s, user, permissions.Action.VIEW, permissions.AreaScoped(area_id))
    q = (
        select(Department)
        .where(Department.area_id == area_id, Department.deleted_at.is_(None))
        .order_by(Department.name.asc())
    )
    hidden = permissions.foreign_fund_department_ids(s, user)
    if hidden:
        q = q.where(Department.id.not_in(hidden))
    return list(s.execute(q).scalars().all())


def create_area(
    s: Session,
    user: User,
    name: str,
    code: str,
    currency: str = "EUR",
    description: str | None = None,
    budget: int | None = None,
    bank_account_id: str | None = None,
) -> Area:
    permissions.require(
        s, user, permissions.Action.CREATE_AREA, message="Only administrators can create areas"
    )

    nm = name.strip()
    cd = code.strip().upper()
    if not nm or not cd:
        raise ValidationFailed("Area name and code are required", [FieldError("name", "required")])

    exists = s.execute(select(Area.id).where(Area.code == cd)).scalar_one_or_none()
    if exists:
        raise Conflict(f"Area code '{cd}' already exists", code="area_code_exists")

    if bank_account_id:
        ba = s.execute(
            select(BankAccount.id).where(BankAccount.id == bank_account_id, BankAccount.deleted_at.is_(None))
        ).scalar_one_or_none()
        if not ba:
            raise NotFound("Bank account not found", code="bank_account_not_found")

    a = Area(
        name=nm,
        code=cd,
        currency=currency.upper(),
        description=description,
        budget=budget,
        bank_account_id=bank_account_id,
    )
    s.add(a)
    s.flush()

    log_event(s, user.id, "area.create", "area", a.id, {"name": a.name, "code": a.code})
    return a


def create_department(
    s: Session,
    user: User,
    area_id: str,
    name: str,
    code: str,
    description: str | None = None,
    owner_id: str | None = None,
) -> Department:
    permissions.require(
        s, user, permissions.Action.CREATE_DEPARTMENT, message="Only administrators can create departments"
    )
    get_area(s, area_id)

    nm = name.strip()
    cd = code.strip().upper()
    if not nm or not cd:
        raise ValidationFailed("Department name and code are required", [FieldError("name", "required")])

    exists = s.execute(
        select(Department.id).where(Department.area_id == area_id, Department.code == cd)
    ).scalar_one_or_none()
    if exists:
        raise Conflict(f"Department code '{cd}' already exists in this area", code="department_code_exists")

    if owner_id:
        owner = s.execute(select(User.id).where(User.id == owner_id, User.deleted_at.is_(None))).scalar_one_or_none()
        if not owner:
            raise NotFound("User not found", code="user_not_found")

    d = Department(area_id=area_id, name=nm, code=cd, description=description, user_id=owner_id)
    s.add(d)
    s.flush()

    log_event(s, user.id, "department.create", "department", d.id, {"area_id": area_id, "code": d.code})
    return d


def assign_role(s: Session, user: User, target_user_id: str, area_id: str, role: str) -> UserArea:
    """Grant (or change) a user's role in an area."""
    permissions.require(
        s, user, permissions.Action.ASSIGN_ROLE, message="Only administrators can assign area roles"
    )
    if role not in AreaRole.ALL:
        raise ValidationFailed(f"Unknown role '{role}'", [FieldError("role", "must be VIEWER, MANAGER or ADMIN")])
    get_area(s, area_id)
    target = s.execute(
        select(User.id).where(User.id == target_user_id, User.deleted_at.is_(None))
    ).scalar_one_or_none()
    if not target:
        raise NotFound("User not found", code="user_not_found")

    ua = s.execute(
        select(UserArea).where(UserArea.user_id == target_user_id, UserArea.area_id == area_id)
    ).scalar_one_or_none()
    if ua:
        ua.role = role
    else:
        ua = UserArea(user_id=target_user_id, area_id=area_id, role=role)
        s.add(ua)
    s.flush()

    log_event(s, user.id, "area.assign_role", "area", area_id, {"user_id": target_user_id, "role": role})
    return ua


def _movement_refs(s: Session, *where) -> int:
    return s.execute(select(func.count(Movement.id)).where(*where)).scalar_one()


def delete_area(s: Session, user: User, area_id: str) -> None:
    permissions.require(
        s, user, permissions.Action.DELETE_AREA, message="Only administrators can delete areas"
    )
    a = get_area(s, area_id)

    refs = _movement_refs(s, Movement.area_id == area_id)
    if refs:
        raise ReferencedEntityConflict(
            f"Cannot delete area with {refs} associated movements", "area_has_movements", refs
        )

    a.deleted_at = now_utc()
    log_event(s, user.id, "area.delete", "area", a.id, {"code": a.code})


def delete_department(s: Session, user: User, department_id: str) -> None:
    permissions.require(
        s, user, permissions.Action.DELETE_DEPARTMENT, message="Only administrators can delete departments"
    )
    d = get_department(s, department_id)

    refs = _movement_refs(s, Movement.department_id == department_id)
    if refs:
        raise ReferencedEntityConflict(
            f"Cannot delete department with {refs} associated movements", "department_has_movements", refs
        )

    d.deleted_at = now_utc()
    log_event(s, user.id, "department.delete", "department", d.id, {"area_id": d.area_id, "code": d.code})
