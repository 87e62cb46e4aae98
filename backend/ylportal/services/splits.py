"""Split engine.

A movement can be divided into 2-20 allocations, each becoming a child
movement in its own area/department. The tree is exactly two levels deep:
a parent (``is_split_parent``) and its live children. While split, the
live children's amounts always add up to the parent amount.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from ylportal.core.errors import Conflict, FieldError, Forbidden, InvalidStateTransition, ValidationFailed
from ylportal.models.area import Area
from ylportal.models.movement import Movement, MovementStatus
from ylportal.models.movement_approval import ApprovalAction
from ylportal.models.user import User
from ylportal.services import permissions
from ylportal.services.areas import department_in_area
from ylportal.services.audit import log_event
from ylportal.services.movements import append_history, load
from ylportal.utils.timezone import now_utc

logger = logging.getLogger(__name__)

MIN_ALLOCATIONS = 2
MAX_ALLOCATIONS = 20
SPLITTABLE = (MovementStatus.DRAFT, MovementStatus.PENDING)


@dataclass(frozen=True)
class Allocation:
    area_id: str
    amount: int
    department_id: str | None = None
    description: str | None = None
    transaction_date: date | None = None


@dataclass(frozen=True)
class SplitResult:
    parent: Movement
    children: tuple[Movement, ...]


def _locked_children(s: Session, parent_id: str) -> list[Movement]:
    return list(
        s.execute(
            select(Movement)
            .where(Movement.parent_id == parent_id, Movement.deleted_at.is_(None))
            .order_by(Movement.created_at.asc(), Movement.id.asc())
            .with_for_update()
        )
        .scalars()
        .all()
    )


def _require_allocation_access(s: Session, user: User, allocations: list[Allocation]) -> None:
    if user.is_admin:
        return
    for area_id in dict.fromkeys(a.area_id for a in allocations if a.area_id):
        permissions.require(
            s,
            user,
            permissions.Action.CREATE,
            permissions.AreaScoped(area_id),
            f"You do not have access to area {area_id}",
        )


def _validate_allocations(s: Session, user: User, parent: Movement, allocations: list[Allocation]) -> None:
    if not MIN_ALLOCATIONS <= len(allocations) <= MAX_ALLOCATIONS:
        raise ValidationFailed(
            f"A split needs between {MIN_ALLOCATIONS} and {MAX_ALLOCATIONS} allocations",
            [FieldError("allocations", f"got {len(allocations)}")],
            code="invalid_allocations",
        )

    errors: list[FieldError] = []
    for i, a in enumerate(allocations):
        prefix = f"allocations[{i}]"
        if not isinstance(a.amount, int) or isinstance(a.amount, bool) or a.amount <= 0:
            errors.append(FieldError(f"{prefix}.amount", "Amount must be a positive integer number of cents"))
        if not a.area_id:
            errors.append(FieldError(f"{prefix}.area_id", "Area is required"))
            continue
        live = s.execute(
            select(Area.id).where(Area.id == a.area_id, Area.deleted_at.is_(None))
        ).scalar_one_or_none()
        if not live:
            errors.append(FieldError(f"{prefix}.area_id", "Area not found"))
            continue
        if a.department_id:
            dept = department_in_area(s, a.department_id, a.area_id)
            if not dept:
                errors.append(FieldError(f"{prefix}.department_id", "Department does not belong to the area"))
            elif dept.user_id and dept.user_id != user.id and not user.is_admin:
                raise Forbidden("You cannot allocate to another user's fund")
        if a.description is not None and len(a.description) > 500:
            errors.append(FieldError(f"{prefix}.description", "Description cannot exceed 500 characters"))

    if not errors:
        total = sum(a.amount for a in allocations)
        if total != parent.amount:
            errors.append(
                FieldError("allocations", f"Allocations add up to {total} but the movement amount is {parent.amount}")
            )

    if errors:
        raise ValidationFailed("Invalid split allocations", errors, code="invalid_allocations")


def _create_children(s: Session, parent: Movement, allocations: list[Allocation]) -> list[Movement]:
    children = []
    for a in allocations:
        c = Movement(
            type=parent.type,
            status=MovementStatus.PENDING if a.department_id else MovementStatus.DRAFT,
            amount=a.amount,
            currency=parent.currency,
            description=(a.description or f"Split from: {parent.description}")[:500],
            category=parent.category,
            reference=parent.reference,
            transaction_date=a.transaction_date or parent.transaction_date,
            area_id=a.area_id,
            department_id=a.department_id,
            user_id=parent.user_id,
            source_bank_account_id=parent.source_bank_account_id,
            destination_bank_account_id=parent.destination_bank_account_id,
            is_internal_transfer=parent.is_internal_transfer,
            parent_id=parent.id,
        )
        s.add(c)
        children.append(c)
    s.flush()
    return children


def _retire(children: list[Movement]) -> None:
    ts = now_utc()
    for c in children:
        c.deleted_at = ts


def _alloc_meta(allocations: list[Allocation]) -> list[dict]:
    return [{"area_id": a.area_id, "department_id": a.department_id, "amount": a.amount} for a in allocations]


def split_movement(s: Session, user: User, movement_id: str, allocations: list[Allocation]) -> SplitResult:
    parent = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, parent, permissions.Action.SPLIT)
    _require_allocation_access(s, user, allocations)

    if parent.is_split_parent:
        raise Conflict("Movement is already split; update the split instead", code="already_split")
    if parent.parent_id:
        raise Conflict("A split allocation cannot be split again", code="nested_split")
    if parent.status not in SPLITTABLE:
        raise InvalidStateTransition(parent.status, "split")

    _validate_allocations(s, user, parent, allocations)

    children = _create_children(s, parent, allocations)
    parent.is_split_parent = True
    append_history(
        s,
        parent.id,
        user.id,
        ApprovalAction.SPLIT,
        comment=f"Split into {len(children)} allocations",
        meta={"operation": "split", "allocations": _alloc_meta(allocations), "children": [c.id for c in children]},
    )
    log_event(s, user.id, "movement.split", "movement", parent.id, {"children": len(children)})
    s.flush()
    return SplitResult(parent=parent, children=tuple(children))


def update_split_movement(
    s: Session, user: User, movement_id: str, allocations: list[Allocation]
) -> SplitResult:
    parent = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, parent, permissions.Action.SPLIT)
    _require_allocation_access(s, user, allocations)

    if not parent.is_split_parent:
        raise Conflict("Movement is not split", code="not_split")

    _validate_allocations(s, user, parent, allocations)

    retired = _locked_children(s, parent.id)
    _retire(retired)
    children = _create_children(s, parent, allocations)
    append_history(
        s,
        parent.id,
        user.id,
        ApprovalAction.SPLIT,
        comment=f"Split updated to {len(children)} allocations",
        meta={
            "operation": "update",
            "allocations": _alloc_meta(allocations),
            "retired": [c.id for c in retired],
            "children": [c.id for c in children],
        },
    )
    log_event(s, user.id, "movement.split_update", "movement", parent.id, {"children": len(children)})
    s.flush()
    return SplitResult(parent=parent, children=tuple(children))


def unsplit_movement(s: Session, user: User, movement_id: str) -> Movement:
    parent = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, parent, permissions.Action.SPLIT)

    if not parent.is_split_parent:
        raise Conflict("Movement is not split", code="not_split")

    retired = _locked_children(s, parent.id)
    approved = [c.id for c in retired if c.status == MovementStatus.APPROVED]
    if approved:
        logger.warning("unsplit of %s retires approved children %s", parent.id, approved)

    _retire(retired)
    parent.is_split_parent = False
    append_history(
        s,
        parent.id,
        user.id,
        ApprovalAction.SPLIT,
        comment="Split reversed",
        meta={"operation": "unsplit", "retired": [c.id for c in retired], "approved_retired": approved},
    )
    log_event(s, user.id, "movement.unsplit", "movement", parent.id, {"retired": len(retired)})
    s.flush()
    return parent
