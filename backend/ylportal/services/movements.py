"""Movement CRUD plus the helpers every movement workflow shares.

Edits follow one rule: touching an APPROVED or REJECTED movement sends it
back to PENDING, clears the decision and records an EDITED history entry.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import Select, select, or_
from sqlalchemy.orm import Session

from ylportal.core.errors import Conflict, FieldError, Forbidden, InvalidStateTransition, NotFound, ValidationFailed
from ylportal.models.department import Department
from ylportal.models.movement import Movement, MovementStatus, MovementType, internal_transfer
from ylportal.models.movement_approval import ApprovalAction, MovementApproval
from ylportal.models.user import User
from ylportal.services import permissions
from ylportal.services.areas import department_in_area, get_area
from ylportal.services.audit import log_event
from ylportal.services.bank_accounts import get_bank_account
from ylportal.utils.timezone import now_utc

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "description",
    "amount",
    "type",
    "transaction_date",
    "category",
    "reference",
    "area_id",
    "department_id",
    "source_bank_account_id",
    "destination_bank_account_id",
)
BANK_FIELDS = ("source_bank_account_id", "destination_bank_account_id")
CLEARABLE_FIELDS = ("category", "reference", "department_id", "destination_bank_account_id")


def load(s: Session, movement_id: str, lock: bool = False) -> Movement:
    q = select(Movement).where(Movement.id == movement_id, Movement.deleted_at.is_(None))
    if lock:
        q = q.with_for_update()
    m = s.execute(q).scalar_one_or_none()
    if not m:
        raise NotFound("Movement not found", code="movement_not_found")
    return m


def append_history(
    s: Session,
    movement_id: str,
    user_id: str,
    action: str,
    comment: str | None = None,
    meta: dict | None = None,
) -> MovementApproval:
    row = MovementApproval(movement_id=movement_id, user_id=user_id, action=action, comment=comment, meta=meta)
    s.add(row)
    return row


def live_children(s: Session, parent_id: str) -> list[Movement]:
    return list(
        s.execute(
            select(Movement)
            .where(Movement.parent_id == parent_id, Movement.deleted_at.is_(None))
            .order_by(Movement.created_at.asc(), Movement.id.asc())
        )
        .scalars()
        .all()
    )


def visible_query(s: Session, user: User) -> Select:
    """Live movements in the user's areas, minus other people's special funds."""
    q = select(Movement).where(
        Movement.deleted_at.is_(None),
        Movement.area_id.in_(permissions.accessible_area_ids(s, user)),
    )
    hidden = permissions.foreign_fund_department_ids(s, user)
    if hidden:
        q = q.where(or_(Movement.department_id.is_(None), Movement.department_id.not_in(hidden)))
    return q


def list_movements(
    s: Session,
    user: User,
    area_id: str | None = None,
    department_id: str | None = None,
    status: str | None = None,
    type: str | None = None,
    start: date | None = None,
    end: date | None = None,
    parent_id: str | None = None,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Movement]:
    q = visible_query(s, user)
    if area_id:
        q = q.where(Movement.area_id == area_id)
    if department_id:
        q = q.where(Movement.department_id == department_id)
    if status:
        q = q.where(Movement.status == status)
    if type:
        q = q.where(Movement.type == type)
    if start:
        q = q.where(Movement.transaction_date >= start)
    if end:
        q = q.where(Movement.transaction_date <= end)
    if parent_id:
        q = q.where(Movement.parent_id == parent_id)
    if search:
        q = q.where(Movement.description.ilike(f"%{search.strip()}%"))

    q = q.order_by(Movement.transaction_date.desc(), Movement.created_at.desc()).limit(limit).offset(offset)
    return list(s.execute(q).scalars().all())


def get_movement(s: Session, user: User, movement_id: str) -> Movement:
    m = load(s, movement_id)
    permissions.require_movement(s, user, m, permissions.Action.VIEW)
    return m


def _validate_fields(description: str | None, amount: int | None, type: str | None) -> None:
    errors: list[FieldError] = []
    if description is not None and not (1 <= len(description.strip()) <= 500):
        errors.append(FieldError("description", "Description must be 1-500 characters"))
    if amount is not None and (not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0):
        errors.append(FieldError("amount", "Amount must be a positive integer number of cents"))
    if type is not None and type not in MovementType.ALL:
        errors.append(FieldError("type", f"Type must be one of {', '.join(MovementType.ALL)}"))
    if errors:
        raise ValidationFailed("Invalid movement", errors)


def _check_department(s: Session, user: User, department_id: str, area_id: str) -> Department:
    d = department_in_area(s, department_id, area_id)
    if not d:
        raise ValidationFailed(
            "Department does not belong to the area",
            [FieldError("department_id", "Department does not belong to the selected area")],
        )
    if d.user_id and d.user_id != user.id and not user.is_admin:
        raise Forbidden("You cannot assign movements to another user's fund")
    return d


def create_movement(
    s: Session,
    user: User,
    type: str,
    amount: int,
    description: str,
    transaction_date: date,
    area_id: str,
    source_bank_account_id: str,
    department_id: str | None = None,
    destination_bank_account_id: str | None = None,
    currency: str | None = None,
    category: str | None = None,
    reference: str | None = None,
    idempotency_key: str | None = None,
) -> Movement:
    permissions.require(s, user, permissions.Action.CREATE, permissions.AreaScoped(area_id))
    if idempotency_key:
        existing = s.execute(
            select(Movement).where(Movement.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if existing:
            # a replayed key never reveals a movement the caller cannot see
            permissions.require_movement(s, user, existing, permissions.Action.VIEW, owner_ok=True)
            return existing

    _validate_fields(description, amount, type)
    area = get_area(s, area_id)
    get_bank_account(s, source_bank_account_id)
    if destination_bank_account_id:
        get_bank_account(s, destination_bank_account_id)

    dept = _check_department(s, user, department_id, area_id) if department_id else None
    own_fund = dept is not None and dept.user_id == user.id

    m = Movement(
        type=type,
        status=MovementStatus.APPROVED if own_fund else MovementStatus.PENDING,
        amount=amount,
        currency=(currency or area.currency).upper(),
        description=description.strip(),
        category=category,
        reference=reference,
        transaction_date=transaction_date,
        area_id=area_id,
        department_id=department_id,
        user_id=user.id,
        source_bank_account_id=source_bank_account_id,
        destination_bank_account_id=destination_bank_account_id,
        is_internal_transfer=internal_transfer(source_bank_account_id, destination_bank_account_id),
        idempotency_key=idempotency_key,
    )
    if own_fund:
        m.approved_by = user.id
        m.approved_at = now_utc()
    s.add(m)
    s.flush()

    if dept is not None:
        append_history(
            s, m.id, user.id, ApprovalAction.CATEGORIZED, meta={"area_id": area_id, "department_id": department_id}
        )
    if own_fund:
        append_history(s, m.id, user.id, ApprovalAction.APPROVED, comment="Auto-approved: personal fund")

    log_event(s, user.id, "movement.create", "movement", m.id, {"amount": m.amount, "status": m.status})
    return m


def update_movement(s: Session, user: User, movement_id: str, changes: dict) -> Movement:
    m = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, m, permissions.Action.CATEGORIZE, owner_ok=True)

    if m.status == MovementStatus.CANCELLED:
        raise InvalidStateTransition(m.status, "edit")

    changes = {
        k: v for k, v in changes.items() if k in EDITABLE_FIELDS and (v is not None or k in CLEARABLE_FIELDS)
    }
    _validate_fields(changes.get("description"), changes.get("amount"), changes.get("type"))

    if "amount" in changes and changes["amount"] != m.amount and (m.is_split_parent or m.parent_id):
        raise Conflict("Edit the split allocations to change this amount", code="split_amount_locked")

    new_area = changes.get("area_id") or m.area_id
    if new_area != m.area_id:
        permissions.require(s, user, permissions.Action.CATEGORIZE, permissions.AreaScoped(new_area))
        get_area(s, new_area)
        if "department_id" not in changes and m.department_id:
            # the old department cannot follow the movement into another area
            changes["department_id"] = None
    if changes.get("department_id"):
        _check_department(s, user, changes["department_id"], new_area)

    for f in BANK_FIELDS:
        if changes.get(f):
            get_bank_account(s, changes[f])

    changed = [f for f, v in changes.items() if getattr(m, f) != v]
    if not changed:
        return m

    before = {f: getattr(m, f) for f in ("area_id", "department_id")}
    for f in changed:
        setattr(m, f, changes[f])
    if "description" in changed:
        m.description = m.description.strip()

    if any(f in changed for f in BANK_FIELDS):
        m.is_internal_transfer = internal_transfer(m.source_bank_account_id, m.destination_bank_account_id)

    if "area_id" in changed or "department_id" in changed:
        append_history(
            s,
            m.id,
            user.id,
            ApprovalAction.CATEGORIZED,
            meta={"from": before, "to": {"area_id": m.area_id, "department_id": m.department_id}},
        )

    if m.status in (MovementStatus.APPROVED, MovementStatus.REJECTED):
        previous = m.status
        m.status = MovementStatus.PENDING
        m.approved_by = None
        m.approved_at = None
        m.rejected_by = None
        m.rejected_at = None
        m.rejection_reason = None
        append_history(
            s,
            m.id,
            user.id,
            ApprovalAction.EDITED,
            comment=f"Edited after {previous.lower()}; back to pending",
            meta={"previous_status": previous, "fields": sorted(changed)},
        )
        logger.info("movement %s edited while %s; reset to PENDING", m.id, previous)

    s.flush()
    return m


def delete_movement(s: Session, user: User, movement_id: str) -> None:
    m = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, m, permissions.Action.DELETE, owner_ok=True)

    if m.is_split_parent or m.parent_id:
        raise Conflict("Split movements cannot be deleted; unsplit the parent first", code="split_movement_locked")

    m.deleted_at = now_utc()
    log_event(s, user.id, "movement.delete", "movement", m.id, {"status": m.status, "amount": m.amount})
