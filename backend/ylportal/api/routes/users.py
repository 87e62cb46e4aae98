from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import select
from ylportal.api.deps import db, require_admin
from ylportal.schemas.user import UserCreate, UserOut
from ylportal.models.user import User
from ylportal.core.security import hash_password
from ylportal.services.audit import log_event

router = APIRouter(prefix="/users", tags=["users"])

@router.get("", response_model=list[UserOut])
def list_users(s: Session = Depends(db), u: User = Depends(require_admin)):
    return s.execute(select(User).where(User.deleted_at.is_(None)).order_by(User.name.asc())).scalars().all()

@router.post("", response_model=UserOut)
def create_user(body: UserCreate, s: Session = Depends(db), u: User = Depends(require_admin)):
    exists = s.execute(select(User).where(User.email == body.email)).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="user_exists")
    user = User(email=body.email, name=body.name, password_hash=hash_password(body.password), is_admin=body.is_admin)
    s.add(user)
    s.flush()
    log_event(s, u.id, "user.create", "user", user.id, {"email": user.email, "is_admin": user.is_admin})
    s.commit()
    s.refresh(user)
    return user
