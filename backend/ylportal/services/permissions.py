"""Area-scoped authorization.

Every mutating service asks this module one question: may ``user`` perform
``action`` under ``condition``? Conditions are a closed set of small value
types instead of free-form dictionaries:

    AreaScoped(area_id)   the user's role in that area must grant the action
    OwnerOnly(owner_id)   the user must be that owner
    AnyOf(c1, c2, ...)    any of the nested conditions passes

A global admin (``User.is_admin``) passes every check. A check without a
condition is global-scope and only a global admin passes it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from ylportal.core.errors import Forbidden
from ylportal.models.area import Area
from ylportal.models.department import Department
from ylportal.models.movement import Movement
from ylportal.models.user import User
from ylportal.models.user_area import AreaRole, UserArea


class Action:
    VIEW = "view"
    COMMENT = "comment"
    CREATE = "create"
    CATEGORIZE = "categorize"
    FINALIZE = "finalize"
    FINALIZE_OVERRIDE = "finalize_override"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    SPLIT = "split"
    IMPORT = "import"
    DELETE = "delete"

    # reference data; no area role grants these
    CREATE_AREA = "create_area"
    DELETE_AREA = "delete_area"
    CREATE_DEPARTMENT = "create_department"
    DELETE_DEPARTMENT = "delete_department"
    ASSIGN_ROLE = "assign_role"
    CREATE_BANK_ACCOUNT = "create_bank_account"
    DELETE_BANK_ACCOUNT = "delete_bank_account"


MEMBER_ACTIONS = frozenset(
    {Action.VIEW, Action.COMMENT, Action.CREATE, Action.CATEGORIZE, Action.FINALIZE}
)
MANAGER_ACTIONS = MEMBER_ACTIONS | frozenset(
    {
        Action.FINALIZE_OVERRIDE,
        Action.APPROVE,
        Action.REJECT,
        Action.CANCEL,
        Action.SPLIT,
        Action.IMPORT,
        Action.DELETE,
    }
)

GLOBAL_ACTIONS = frozenset(
    {
        Action.CREATE_AREA,
        Action.DELETE_AREA,
        Action.CREATE_DEPARTMENT,
        Action.DELETE_DEPARTMENT,
        Action.ASSIGN_ROLE,
        Action.CREATE_BANK_ACCOUNT,
        Action.DELETE_BANK_ACCOUNT,
    }
)

ROLE_ACTIONS: dict[str, frozenset[str]] = {
    AreaRole.VIEWER: MEMBER_ACTIONS,
    AreaRole.MANAGER: MANAGER_ACTIONS,
    AreaRole.ADMIN: MANAGER_ACTIONS,
}

KNOWN_ACTIONS = MANAGER_ACTIONS | GLOBAL_ACTIONS


@dataclass(frozen=True)
class AreaScoped:
    area_id: str


@dataclass(frozen=True)
class OwnerOnly:
    owner_id: str


@dataclass(frozen=True)
class AnyOf:
    conditions: tuple["Condition", ...]

    def __init__(self, *conditions: "Condition"):
        object.__setattr__(self, "conditions", tuple(conditions))


Condition = Union[AreaScoped, OwnerOnly, AnyOf]


def area_role(s: Session, user: User, area_id: str) -> str | None:
    return (
        s.execute(
            select(UserArea.role)
            .join(Area, Area.id == UserArea.area_id)
            .where(UserArea.user_id == user.id, UserArea.area_id == area_id, Area.deleted_at.is_(None))
        )
        .scalars()
        .first()
    )


def evaluate(s: Session, user: User, action: str, condition: Condition | None = None) -> bool:
    if action not in KNOWN_ACTIONS:
        raise ValueError(f"unknown action {action!r}")
    if user.is_admin:
        return True
    if condition is None:
        return False
    if isinstance(condition, AreaScoped):
        role = area_role(s, user, condition.area_id)
        return role is not None and action in ROLE_ACTIONS.get(role, frozenset())
    if isinstance(condition, OwnerOnly):
        return condition.owner_id == user.id
    if isinstance(condition, AnyOf):
        return any(evaluate(s, user, action, c) for c in condition.conditions)
    raise TypeError(f"unknown condition {condition!r}")


def require(
    s: Session,
    user: User,
    action: str,
    condition: Condition | None = None,
    message: str | None = None,
) -> None:
    if not evaluate(s, user, action, condition):
        raise Forbidden(message or f"You do not have permission to {action} here")


def is_area_manager(s: Session, user: User, area_id: str) -> bool:
    return evaluate(s, user, Action.APPROVE, AreaScoped(area_id))


def accessible_area_ids(s: Session, user: User) -> list[str]:
    if user.is_admin:
        return list(s.execute(select(Area.id).where(Area.deleted_at.is_(None))).scalars().all())
    return list(
        s.execute(
            select(UserArea.area_id)
            .join(Area, Area.id == UserArea.area_id)
            .where(UserArea.user_id == user.id, Area.deleted_at.is_(None))
        )
        .scalars()
        .all()
    )


def foreign_fund_department_ids(s: Session, user: User) -> list[str]:
    """Special-fund departments that belong to someone else; hidden from non-admins."""
    if user.is_admin:
        return []
    return list(
        s.execute(
            select(Department.id).where(
                Department.user_id.is_not(None),
                Department.user_id != user.id,
                Department.deleted_at.is_(None),
            )
        )
        .scalars()
        .all()
    )


def _in_foreign_fund(s: Session, user: User, m: Movement) -> bool:
    if user.is_admin or m.department_id is None:
        return False
    owner = s.execute(select(Department.user_id).where(Department.id == m.department_id)).scalar_one_or_none()
    return owner is not None and owner != user.id


def require_movement(s: Session, user: User, m: Movement, action: str, owner_ok: bool = False) -> None:
    """Authorize ``action`` on a single movement, honouring private funds."""
    if _in_foreign_fund(s, user, m):
        raise Forbidden("You do not have access to this movement")
    cond: Condition = AreaScoped(m.area_id)
    if owner_ok:
        cond = AnyOf(OwnerOnly(m.user_id), cond)
    require(s, user, action, cond, f"You do not have permission to {action} this movement")
