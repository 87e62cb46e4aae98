from pydantic import BaseModel, field_validator
from datetime import datetime
from typing import Literal

AreaRoleName = Literal["VIEWER", "MANAGER", "ADMIN"]

class UserCreate(BaseModel):
    email: str
    name: str
    password: str
    is_admin: bool = False

    @field_validator("email")
    @classmethod
    def email_normalize(cls, v: str):
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email is invalid")
        if len(v) > 255:
            raise ValueError("email too long")
        return v

    @field_validator("name")
    @classmethod
    def name_trim(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v

    @field_validator("password")
    @classmethod
    def password_min(cls, v: str):
        v = str(v)
        if len(v) < 8:
            raise ValueError("password must be at least 8 characters")
        return v

class RoleAssign(BaseModel):
    user_id: str
    role: AreaRoleName = "VIEWER"

    @field_validator("role", mode="before")
    @classmethod
    def role_upper(cls, v):
        return str(v or "").strip().upper()

class UserOut(BaseModel):
    id: str
    email: str
    name: str
    is_admin: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class UserAreaOut(BaseModel):
    id: str
    user_id: str
    area_id: str
    role: str

    class Config:
        from_attributes = True
