from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import select
from ylportal.api.deps import db, settings_dep, current_user
from ylportal.core.config import Settings
from ylportal.schemas.auth import LoginIn, TokenOut
from ylportal.schemas.user import UserOut
from ylportal.models.user import User
from ylportal.core.security import verify_password, create_access_token

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/login", response_model=TokenOut)
def login(body: LoginIn, s: Session = Depends(db), settings: Settings = Depends(settings_dep)):
    email = body.email.strip().lower()
    u = s.execute(select(User).where(User.email == email, User.deleted_at.is_(None))).scalar_one_or_none()
    if not u or not verify_password(body.password, u.password_hash):
        raise HTTPException(status_code=401, detail="bad_credentials")
    token = create_access_token(settings, sub=u.id, is_admin=u.is_admin)
    return {"access_token": token, "user_id": u.id, "is_admin": u.is_admin}

@router.get("/me", response_model=UserOut)
def me(u: User = Depends(current_user)):
    return u
