from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ylportal.api.deps import db, current_user, require_admin
from ylportal.models.user import User
from ylportal.schemas.bank_account import BankAccountCreate, BankAccountOut
from ylportal.services import bank_accounts as svc

router = APIRouter(prefix="/bank-accounts", tags=["bank-accounts"])

@router.get("", response_model=list[BankAccountOut])
def list_bank_accounts(s: Session = Depends(db), u: User = Depends(current_user)):
    return svc.list_bank_accounts(s)

@router.post("", response_model=BankAccountOut)
def create_bank_account(body: BankAccountCreate, s: Session = Depends(db), u: User = Depends(require_admin)):
    b = svc.create_bank_account(
        s, u, name=body.name, account_number=body.account_number, bank_name=body.bank_name, currency=body.currency
    )
    s.commit()
    return b

@router.delete("/{bank_account_id}", status_code=204)
def delete_bank_account(bank_account_id: str, s: Session = Depends(db), u: User = Depends(require_admin)):
    svc.delete_bank_account(s, u, bank_account_id)
    s.commit()
