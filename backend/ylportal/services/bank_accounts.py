from __future__ import annotations

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from ylportal.core.errors import Conflict, NotFound, ReferencedEntityConflict, ValidationFailed, FieldError
from ylportal.models.area import Area
from ylportal.models.bank_account import BankAccount
from ylportal.models.movement import Movement
from ylportal.models.user import User
from ylportal.services import permissions
from ylportal.services.audit import log_event
from ylportal.utils.timezone import now_utc


def get_bank_account(s: Session, bank_account_id: str) -> BankAccount:
    b = s.execute(
        select(BankAccount).where(BankAccount.id == bank_account_id, BankAccount.deleted_at.is_(None))
    ).scalar_one_or_none()
    if not b:
        raise NotFound("Bank account not found", code="bank_account_not_found")
    return b


def list_bank_accounts(s: Session) -> list[BankAccount]:
    return list(
        s.execute(
            select(BankAccount).where(BankAccount.deleted_at.is_(None)).order_by(BankAccount.name.asc())
        )
        .scalars()
        .all()
    )


def areas_for_account(s: Session, bank_account_id: str) -> list[Area]:
    return list(
        s.execute(
            select(Area).where(Area.bank_account_id == bank_account_id, Area.deleted_at.is_(None))
        )
        .scalars()
        .all()
    )


def create_bank_account(
    s: Session,
    user: User,
    name: str,
    account_number: str,
    bank_name: str | None = None,
    currency: str = "EUR",
) -> BankAccount:
    permissions.require(
        s, user, permissions.Action.CREATE_BANK_ACCOUNT, message="Only administrators can create bank accounts"
    )

    nm = name.strip()
    num = account_number.replace(" ", "").upper()
    if not nm or not num:
        raise ValidationFailed(
            "Bank account name and number are required", [FieldError("account_number", "required")]
        )

    exists = s.execute(select(BankAccount.id).where(BankAccount.account_number == num)).scalar_one_or_none()
    if exists:
        raise Conflict("Bank account number already exists", code="bank_account_exists")

    b = BankAccount(name=nm, account_number=num, bank_name=bank_name, currency=currency.upper())
    s.add(b)
    s.flush()

    log_event(s, user.id, "bank_account.create", "bank_account", b.id, {"name": b.name})
    return b


def delete_bank_account(s: Session, user: User, bank_account_id: str) -> None:
    permissions.require(
        s, user, permissions.Action.DELETE_BANK_ACCOUNT, message="Only administrators can delete bank accounts"
    )
    b = get_bank_account(s, bank_account_id)

    in_use = len(areas_for_account(s, bank_account_id))
    if in_use:
        raise ReferencedEntityConflict(
            f"Bank account is assigned to {in_use} area(s)", "bank_account_in_use", in_use
        )

    refs = s.execute(
        select(func.count(Movement.id)).where(
            or_(
                Movement.source_bank_account_id == bank_account_id,
                Movement.destination_bank_account_id == bank_account_id,
            )
        )
    ).scalar_one()
    if refs:
        raise ReferencedEntityConflict(
            f"Cannot delete bank account with {refs} associated movements", "bank_account_has_movements", refs
        )

    b.deleted_at = now_utc()
    log_event(s, user.id, "bank_account.delete", "bank_account", b.id, {"name": b.name})
