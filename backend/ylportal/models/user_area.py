from datetime import datetime
from uuid import uuid4

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from ylportal.db.base import Base


class AreaRole:
    VIEWER = "VIEWER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

    ALL = (VIEWER, MANAGER, ADMIN)


class UserArea(Base):
    __tablename__ = "user_areas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    area_id: Mapped[str] = mapped_column(ForeignKey("areas.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String(16), default=AreaRole.VIEWER)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "area_id", name="uq_user_areas_user_area"),
    )
