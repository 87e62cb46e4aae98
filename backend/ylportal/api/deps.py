from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session
import jwt

from ylportal.core.config import Settings
from ylportal.core.security import decode_token
from ylportal.models.user import User

bearer = HTTPBearer(auto_error=False)


def settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def db(request: Request):
    s = request.app.state.session_factory()
    try:
        yield s
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    s: Session = Depends(db),
    settings: Settings = Depends(settings_dep),
) -> User:
    if creds is None:
        raise HTTPException(status_code=401, detail="invalid_token")
    try:
        payload = decode_token(settings, creds.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="invalid_token")

    u = s.execute(
        select(User).where(User.id == payload.get("sub"), User.deleted_at.is_(None))
    ).scalar_one_or_none()
    if not u:
        raise HTTPException(status_code=401, detail="invalid_token")
    return u


def require_admin(u: User = Depends(current_user)) -> User:
    if not u.is_admin:
        raise HTTPException(status_code=403, detail="admin_only")
    return u
