"""Movement lifecycle.

    DRAFT --finalize--> PENDING --approve--> APPROVED
                               +--reject---> REJECTED
    PENDING / APPROVED / REJECTED --cancel--> CANCELLED (terminal)

Every transition runs under a row lock so two concurrent decisions on the
same movement end with one success and one InvalidStateTransition.
Split parents never move through the lifecycle themselves.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ylportal.core.errors import FieldError, InvalidStateTransition, ValidationFailed
from ylportal.models.movement import Movement, MovementStatus
from ylportal.models.movement_approval import ApprovalAction, MovementApproval
from ylportal.models.user import User
from ylportal.services import permissions
from ylportal.services.movements import append_history, load
from ylportal.utils.timezone import now_utc

logger = logging.getLogger(__name__)

BULK_MAX = 50
DECIDABLE = (MovementStatus.PENDING,)
CANCELLABLE = (MovementStatus.PENDING, MovementStatus.APPROVED, MovementStatus.REJECTED)


def _guard(m: Movement, allowed: tuple[str, ...], attempted: str) -> None:
    if m.is_split_parent:
        err = InvalidStateTransition(
            m.status, attempted, f"Cannot {attempted} a split movement; act on its children instead"
        )
        err.code = "split_parent"
        raise err
    if m.status not in allowed:
        raise InvalidStateTransition(m.status, attempted)


def _check_text(field: str, value: str | None, limit: int, required: bool = False) -> str | None:
    if value is None or not value.strip():
        if required:
            raise ValidationFailed(f"{field.capitalize()} is required", [FieldError(field, "required")])
        return None
    value = value.strip()
    if len(value) > limit:
        raise ValidationFailed(
            f"{field.capitalize()} is too long", [FieldError(field, f"must be at most {limit} characters")]
        )
    return value


def finalize(s: Session, user: User, movement_id: str, override: bool = False) -> Movement:
    m = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, m, permissions.Action.FINALIZE, owner_ok=True)
    _guard(m, (MovementStatus.DRAFT,), "finalize")

    if m.department_id is None:
        if not override:
            raise ValidationFailed(
                "Assign a department before finalizing",
                [FieldError("department_id", "Department is required to finalize")],
                code="needs_categorization",
            )
        permissions.require(
            s,
            user,
            permissions.Action.FINALIZE_OVERRIDE,
            permissions.AreaScoped(m.area_id),
            "Only area managers can finalize an uncategorized movement",
        )

    m.status = MovementStatus.PENDING
    s.flush()
    logger.info("movement %s finalized by %s (override=%s)", m.id, user.id, override)
    return m


def _approve(s: Session, user: User, m: Movement, comment: str | None) -> None:
    m.status = MovementStatus.APPROVED
    m.approved_by = user.id
    m.approved_at = now_utc()
    append_history(s, m.id, user.id, ApprovalAction.APPROVED, comment=comment)


def _reject(s: Session, user: User, m: Movement, reason: str | None, comment: str | None) -> None:
    m.status = MovementStatus.REJECTED
    m.rejected_by = user.id
    m.rejected_at = now_utc()
    m.rejection_reason = reason
    append_history(s, m.id, user.id, ApprovalAction.REJECTED, comment=comment or reason)


def approve(s: Session, user: User, movement_id: str, comment: str | None = None) -> Movement:
    comment = _check_text("comment", comment, 1000)
    m = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, m, permissions.Action.APPROVE)
    _guard(m, DECIDABLE, "approve")

    _approve(s, user, m, comment)
    s.flush()
    logger.info("movement %s approved by %s", m.id, user.id)
    return m


def reject(
    s: Session, user: User, movement_id: str, reason: str | None = None, comment: str | None = None
) -> Movement:
    reason = _check_text("reason", reason, 500)
    comment = _check_text("comment", comment, 1000)
    m = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, m, permissions.Action.REJECT)
    _guard(m, DECIDABLE, "reject")

    _reject(s, user, m, reason, comment)
    s.flush()
    logger.info("movement %s rejected by %s", m.id, user.id)
    return m


def cancel(s: Session, user: User, movement_id: str, reason: str | None = None) -> Movement:
    reason = _check_text("reason", reason, 500)
    m = load(s, movement_id, lock=True)
    permissions.require_movement(s, user, m, permissions.Action.CANCEL)
    _guard(m, CANCELLABLE, "cancel")

    previous = m.status
    m.status = MovementStatus.CANCELLED
    append_history(s, m.id, user.id, ApprovalAction.CANCELLED, comment=reason, meta={"previous_status": previous})
    s.flush()
    logger.info("movement %s cancelled by %s (was %s)", m.id, user.id, previous)
    return m


def add_comment(s: Session, user: User, movement_id: str, comment: str) -> MovementApproval:
    comment = _check_text("comment", comment, 1000, required=True)
    m = load(s, movement_id)
    permissions.require_movement(s, user, m, permissions.Action.COMMENT)

    row = append_history(s, m.id, user.id, ApprovalAction.COMMENT, comment=comment)
    s.flush()
    return row


def _load_batch(s: Session, user: User, ids: list[str], action: str, attempted: str) -> list[Movement]:
    unique = list(dict.fromkeys(ids))
    if not 1 <= len(unique) <= BULK_MAX:
        raise ValidationFailed(
            f"Between 1 and {BULK_MAX} movements can be processed at once",
            [FieldError("ids", f"must contain 1-{BULK_MAX} ids")],
        )
    # lock in a stable order so overlapping batches cannot deadlock
    batch = [load(s, mid, lock=True) for mid in sorted(unique)]
    for m in batch:
        permissions.require_movement(s, user, m, action)
        _guard(m, DECIDABLE, attempted)
    return batch


def bulk_approve(s: Session, user: User, ids: list[str], comment: str | None = None) -> list[Movement]:
    comment = _check_text("comment", comment, 1000)
    batch = _load_batch(s, user, ids, permissions.Action.APPROVE, "approve")
    for m in batch:
        _approve(s, user, m, comment)
    s.flush()
    logger.info("bulk approve of %d movements by %s", len(batch), user.id)
    return batch


def bulk_reject(
    s: Session, user: User, ids: list[str], reason: str | None = None, comment: str | None = None
) -> list[Movement]:
    reason = _check_text("reason", reason, 500)
    comment = _check_text("comment", comment, 1000)
    batch = _load_batch(s, user, ids, permissions.Action.REJECT, "reject")
    for m in batch:
        _reject(s, user, m, reason, comment)
    s.flush()
    logger.info("bulk reject of %d movements by %s", len(batch), user.id)
    return batch


def get_approval_history(s: Session, user: User, movement_id: str) -> list[dict]:
    m = load(s, movement_id)
    permissions.require_movement(s, user, m, permissions.Action.VIEW)

    rows = s.execute(
        select(MovementApproval, User.name)
        .join(User, User.id == MovementApproval.user_id)
        .where(MovementApproval.movement_id == m.id)
        .order_by(MovementApproval.created_at.asc(), MovementApproval.id.asc())
    ).all()
    return [
        {
            "id": h.id,
            "movement_id": h.movement_id,
            "user_id": h.user_id,
            "user_name": name,
            "action": h.action,
            "comment": h.comment,
            "metadata": h.meta,
            "created_at": h.created_at,
        }
        for h, name in rows
    ]
