from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from datetime import date
from ylportal.api.deps import db, current_user
from ylportal.models.user import User
from ylportal.schemas.movement import (
    MovementCreate,
    MovementUpdate,
    MovementOut,
    SplitIn,
    SplitOut,
    FinalizeIn,
    ApproveIn,
    RejectIn,
    CancelIn,
    CommentIn,
    BulkApproveIn,
    BulkRejectIn,
    HistoryOut,
)
from ylportal.services import approvals, movements, splits

router = APIRouter(prefix="/movements", tags=["movements"])


def _allocations(body: SplitIn) -> list[splits.Allocation]:
    return [
        splits.Allocation(
            area_id=a.area_id,
            amount=a.amount,
            department_id=a.department_id,
            description=a.description,
            transaction_date=a.transaction_date,
        )
        for a in body.allocations
    ]


@router.get("", response_model=list[MovementOut])
def list_movements(
    s: Session = Depends(db),
    u: User = Depends(current_user),
    area_id: str | None = Query(default=None),
    department_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    type: str | None = Query(default=None),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    parent_id: str | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    return movements.list_movements(
        s,
        u,
        area_id=area_id,
        department_id=department_id,
        status=status,
        type=type,
        start=start,
        end=end,
        parent_id=parent_id,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=MovementOut)
def create_movement(body: MovementCreate, s: Session = Depends(db), u: User = Depends(current_user)):
    m = movements.create_movement(s, u, **body.model_dump())
    s.commit()
    return m


@router.post("/bulk-approve", response_model=list[MovementOut])
def bulk_approve(body: BulkApproveIn, s: Session = Depends(db), u: User = Depends(current_user)):
    out = approvals.bulk_approve(s, u, body.ids, comment=body.comment)
    s.commit()
    return out


@router.post("/bulk-reject", response_model=list[MovementOut])
def bulk_reject(body: BulkRejectIn, s: Session = Depends(db), u: User = Depends(current_user)):
    out = approvals.bulk_reject(s, u, body.ids, reason=body.reason, comment=body.comment)
    s.commit()
    return out


@router.get("/{movement_id}", response_model=MovementOut)
def get_movement(movement_id: str, s: Session = Depends(db), u: User = Depends(current_user)):
    return movements.get_movement(s, u, movement_id)


@router.patch("/{movement_id}", response_model=MovementOut)
def update_movement(
    movement_id: str, body: MovementUpdate, s: Session = Depends(db), u: User = Depends(current_user)
):
    m = movements.update_movement(s, u, movement_id, body.model_dump(exclude_unset=True))
    s.commit()
    return m


@router.delete("/{movement_id}", status_code=204)
def delete_movement(movement_id: str, s: Session = Depends(db), u: User = Depends(current_user)):
    movements.delete_movement(s, u, movement_id)
    s.commit()


@router.get("/{movement_id}/children", response_model=list[MovementOut])
def list_children(movement_id: str, s: Session = Depends(db), u: User = Depends(current_user)):
    parent = movements.get_movement(s, u, movement_id)
    return movements.live_children(s, parent.id)


@router.post("/{movement_id}/split", response_model=SplitOut)
def split(movement_id: str, body: SplitIn, s: Session = Depends(db), u: User = Depends(current_user)):
    res = splits.split_movement(s, u, movement_id, _allocations(body))
    s.commit()
    return {"parent": res.parent, "children": list(res.children)}


@router.put("/{movement_id}/split", response_model=SplitOut)
def update_split(movement_id: str, body: SplitIn, s: Session = Depends(db), u: User = Depends(current_user)):
    res = splits.update_split_movement(s, u, movement_id, _allocations(body))
    s.commit()
    return {"parent": res.parent, "children": list(res.children)}


@router.delete("/{movement_id}/split", response_model=MovementOut)
def unsplit(movement_id: str, s: Session = Depends(db), u: User = Depends(current_user)):
    m = splits.unsplit_movement(s, u, movement_id)
    s.commit()
    return m


@router.post("/{movement_id}/finalize", response_model=MovementOut)
def finalize(
    movement_id: str, body: FinalizeIn | None = None, s: Session = Depends(db), u: User = Depends(current_user)
):
    m = approvals.finalize(s, u, movement_id, override=bool(body and body.override))
    s.commit()
    return m


@router.post("/{movement_id}/approve", response_model=MovementOut)
def approve(
    movement_id: str, body: ApproveIn | None = None, s: Session = Depends(db), u: User = Depends(current_user)
):
    m = approvals.approve(s, u, movement_id, comment=body.comment if body else None)
    s.commit()
    return m


@router.post("/{movement_id}/reject", response_model=MovementOut)
def reject(
    movement_id: str, body: RejectIn | None = None, s: Session = Depends(db), u: User = Depends(current_user)
):
    body = body or RejectIn()
    m = approvals.reject(s, u, movement_id, reason=body.reason, comment=body.comment)
    s.commit()
    return m


@router.post("/{movement_id}/cancel", response_model=MovementOut)
def cancel(
    movement_id: str, body: CancelIn | None = None, s: Session = Depends(db), u: User = Depends(current_user)
):
    m = approvals.cancel(s, u, movement_id, reason=body.reason if body else None)
    s.commit()
    return m


@router.post("/{movement_id}/comments", response_model=HistoryOut)
def add_comment(movement_id: str, body: CommentIn, s: Session = Depends(db), u: User = Depends(current_user)):
    row = approvals.add_comment(s, u, movement_id, body.comment)
    s.commit()
    return {
        "id": row.id,
        "movement_id": row.movement_id,
        "user_id": row.user_id,
        "user_name": u.name,
        "action": row.action,
        "comment": row.comment,
        "metadata": row.meta,
        "created_at": row.created_at,
    }


@router.get("/{movement_id}/history", response_model=list[HistoryOut])
def history(movement_id: str, s: Session = Depends(db), u: User = Depends(current_user)):
    return approvals.get_approval_history(s, u, movement_id)
