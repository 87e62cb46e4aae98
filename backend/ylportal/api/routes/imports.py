import base64
import binascii
from io import BytesIO

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ylportal.api.deps import db, current_user, settings_dep
from ylportal.core.config import Settings
from ylportal.core.errors import FieldError
from ylportal.models.user import User
from ylportal.schemas.imports import ExecuteImportIn, ExecuteImportOut, ValidateImportIn, ValidationOut
from ylportal.services import imports
from ylportal.services.reports import build_import_template

router = APIRouter(prefix="/imports", tags=["imports"])

XLSX_MEDIA = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _issues(items: list[FieldError]) -> list[dict]:
    return [e.as_dict() for e in items]


@router.post("/validate", response_model=ValidationOut)
def validate(
    body: ValidateImportIn,
    s: Session = Depends(db),
    u: User = Depends(current_user),
    settings: Settings = Depends(settings_dep),
):
    try:
        raw = base64.b64decode(body.file_data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="file_data_invalid")

    res = imports.validate_import(
        s,
        u,
        raw,
        body.file_name,
        body.source_bank_account_id,
        default_area_id=body.default_area_id,
        max_rows=settings.import_max_rows,
    )
    return {
        "valid": res.valid,
        "total_rows": res.total_rows,
        "valid_rows": res.valid_rows,
        "error_count": res.error_count,
        "warning_count": res.warning_count,
        "errors": _issues(res.errors),
        "rows": [
            {"data": r.data, "errors": _issues(r.errors), "warnings": _issues(r.warnings)} for r in res.rows
        ],
    }


@router.post("/execute", response_model=ExecuteImportOut)
def execute(
    body: ExecuteImportIn,
    s: Session = Depends(db),
    u: User = Depends(current_user),
    settings: Settings = Depends(settings_dep),
):
    if len(body.rows) > settings.import_max_rows:
        raise HTTPException(status_code=400, detail="too_many_rows")

    rows = [
        imports.ImportRow(
            **r.data.model_dump(),
            errors=[FieldError(e.field, e.message, e.row) for e in r.errors],
            warnings=[FieldError(w.field, w.message, w.row) for w in r.warnings],
        )
        for r in body.rows
    ]
    res = imports.execute_import(s, u, rows, skip_invalid=body.skip_invalid)
    s.commit()
    return {
        "drafts": res.drafts,
        "success": res.success,
        "failed": res.failed,
        "needs_categorization": res.needs_categorization,
        "duplicates": res.duplicates,
        "errors": _issues(res.errors),
    }


@router.get("/template")
def template(u: User = Depends(current_user)):
    buf = BytesIO()
    build_import_template(buf)
    buf.seek(0)
    return StreamingResponse(
        buf,
        media_type=XLSX_MEDIA,
        headers={"Content-Disposition": 'attachment; filename="movements_import_template.xlsx"'},
    )
