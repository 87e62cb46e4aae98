from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ylportal.api.deps import db, current_user, require_admin
from ylportal.models.user import User
from ylportal.schemas.area import AreaCreate, AreaOut, DepartmentCreate, DepartmentOut
from ylportal.schemas.user import RoleAssign, UserAreaOut
from ylportal.services import areas as svc

router = APIRouter(tags=["areas"])

@router.get("/areas", response_model=list[AreaOut])
def list_areas(s: Session = Depends(db), u: User = Depends(current_user)):
    return svc.list_areas(s, u)

@router.post("/areas", response_model=AreaOut)
def create_area(body: AreaCreate, s: Session = Depends(db), u: User = Depends(require_admin)):
    a = svc.create_area(
        s,
        u,
        name=body.name,
        code=body.code,
        currency=body.currency,
        description=body.description,
        budget=body.budget,
        bank_account_id=body.bank_account_id,
    )
    s.commit()
    return a

@router.delete("/areas/{area_id}", status_code=204)
def delete_area(area_id: str, s: Session = Depends(db), u: User = Depends(require_admin)):
    svc.delete_area(s, u, area_id)
    s.commit()

@router.get("/areas/{area_id}/departments", response_model=list[DepartmentOut])
def list_departments(area_id: str, s: Session = Depends(db), u: User = Depends(current_user)):
    return svc.list_departments(s, u, area_id)

@router.post("/areas/{area_id}/departments", response_model=DepartmentOut)
def create_department(
    area_id: str, body: DepartmentCreate, s: Session = Depends(db), u: User = Depends(require_admin)
):
    d = svc.create_department(
        s, u, area_id, name=body.name, code=body.code, description=body.description, owner_id=body.user_id
    )
    s.commit()
    return d

@router.put("/areas/{area_id}/members", response_model=UserAreaOut)
def assign_member(area_id: str, body: RoleAssign, s: Session = Depends(db), u: User = Depends(require_admin)):
    ua = svc.assign_role(s, u, body.user_id, area_id, body.role)
    s.commit()
    return ua

@router.delete("/departments/{department_id}", status_code=204)
def delete_department(department_id: str, s: Session = Depends(db), u: User = Depends(require_admin)):
    svc.delete_department(s, u, department_id)
    s.commit()
