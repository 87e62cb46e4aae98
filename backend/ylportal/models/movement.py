from datetime import date, datetime
from uuid import uuid4

from sqlalchemy import String, BigInteger, Boolean, Date, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from ylportal.db.base import Base
from ylportal.utils.timezone import now_utc


class MovementType:
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"
    DISTRIBUTION = "DISTRIBUTION"

    ALL = (INCOME, EXPENSE, TRANSFER, DISTRIBUTION)


class MovementStatus:
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    ALL = (DRAFT, PENDING, APPROVED, REJECTED, CANCELLED)


def internal_transfer(source_id: str | None, destination_id: str | None) -> bool:
    return bool(destination_id) and destination_id == source_id


class Movement(Base):
    __tablename__ = "movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    type: Mapped[str] = mapped_column(String(16), index=True)
    status: Mapped[str] = mapped_column(String(16), default=MovementStatus.DRAFT, index=True)

    # minor currency units, always positive; direction comes from type
    amount: Mapped[int] = mapped_column(BigInteger)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")

    description: Mapped[str] = mapped_column(String(500))
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date, index=True)

    area_id: Mapped[str] = mapped_column(ForeignKey("areas.id", ondelete="RESTRICT"), index=True)
    department_id: Mapped[str | None] = mapped_column(
        ForeignKey("departments.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), index=True)

    source_bank_account_id: Mapped[str | None] = mapped_column(
        ForeignKey("bank_accounts.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    destination_bank_account_id: Mapped[str | None] = mapped_column(
        ForeignKey("bank_accounts.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    is_internal_transfer: Mapped[bool] = mapped_column(Boolean, default=False)

    parent_id: Mapped[str | None] = mapped_column(
        ForeignKey("movements.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    is_split_parent: Mapped[bool] = mapped_column(Boolean, default=False)

    approved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, onupdate=now_utc)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_movements_amount_positive"),
    )

    @property
    def needs_categorization(self) -> bool:
        return self.department_id is None


Index("ix_movements_area_date", Movement.area_id, Movement.transaction_date)
