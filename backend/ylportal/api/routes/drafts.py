from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from ylportal.api.deps import db, current_user
from ylportal.models.user import User
from ylportal.schemas.movement import CategorizeIn, DraftStatsOut, MovementOut
from ylportal.services import drafts

router = APIRouter(prefix="/drafts", tags=["drafts"])

@router.get("", response_model=list[MovementOut])
def list_drafts(
    s: Session = Depends(db),
    u: User = Depends(current_user),
    area_id: str | None = Query(default=None),
    needs_categorization: bool | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    return drafts.list_drafts(
        s, u, area_id=area_id, needs_categorization=needs_categorization, limit=limit, offset=offset
    )

@router.get("/stats", response_model=DraftStatsOut)
def draft_stats(s: Session = Depends(db), u: User = Depends(current_user)):
    return drafts.draft_stats(s, u)

@router.patch("/{movement_id}", response_model=MovementOut)
def categorize(movement_id: str, body: CategorizeIn, s: Session = Depends(db), u: User = Depends(current_user)):
    m = drafts.categorize_draft(
        s, u, movement_id, area_id=body.area_id, department_id=body.department_id, category=body.category
    )
    s.commit()
    return m

@router.delete("/{movement_id}", status_code=204)
def delete_draft(movement_id: str, s: Session = Depends(db), u: User = Depends(current_user)):
    drafts.delete_draft(s, u, movement_id)
    s.commit()
