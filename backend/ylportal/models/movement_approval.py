from datetime import datetime

from sqlalchemy import Integer, String, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from ylportal.db.base import Base
from ylportal.utils.timezone import now_utc


class ApprovalAction:
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMMENT = "COMMENT"
    EDITED = "EDITED"
    SPLIT = "SPLIT"
    CATEGORIZED = "CATEGORIZED"
    CANCELLED = "CANCELLED"


class MovementApproval(Base):
    """Append-only history entry for a movement. Rows are never updated or deleted."""

    __tablename__ = "movement_approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    movement_id: Mapped[str] = mapped_column(ForeignKey("movements.id", ondelete="RESTRICT"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), index=True)
    action: Mapped[str] = mapped_column(String(16), index=True)
    comment: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, index=True)


Index("ix_movement_approvals_movement_created", MovementApproval.movement_id, MovementApproval.created_at)
