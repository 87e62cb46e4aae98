"""Bank statement import.

Two steps. ``validate_import`` parses a CSV or XLSX export, maps its
columns (English, Spanish and Catalan headers are recognised) and reports
per-row errors and warnings without writing anything. ``execute_import``
takes the validated rows back and inserts the clean ones as DRAFT
movements, one savepoint per row.

Each row carries an idempotency key derived from the bank account, the
file digest and the row number, so re-submitting the same file never
creates a second draft.
"""

from __future__ import annotations

import csv
import hashlib
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ylportal.core.errors import FieldError, PortalError, ValidationFailed
from ylportal.models.area import Area
from ylportal.models.department import Department
from ylportal.models.movement import Movement, MovementStatus, MovementType, internal_transfer
from ylportal.models.user import User
from ylportal.services import permissions
from ylportal.services.areas import department_in_area
from ylportal.services.audit import log_event
from ylportal.services.bank_accounts import areas_for_account, get_bank_account
from ylportal.utils.timezone import today_utc

logger = logging.getLogger(__name__)

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "description": (
        "description", "descripcion", "descripción", "descripció", "desc", "concepto",
        "concept", "detalle", "observaciones", "remarks", "details",
    ),
    "amount": ("amount", "cantidad", "quantitat", "importe", "monto", "valor", "total", "sum"),
    "debit": ("debe", "debit", "débito", "cargo", "salida", "gasto"),
    "credit": ("haber", "credit", "crédito", "abono", "entrada", "ingreso"),
    "type": ("type", "tipo", "tipus", "kind", "movimiento"),
    "date": (
        "date", "fecha", "data", "fecha de transacción", "transaction date", "fecha operación",
        "fecha operacion", "fecha valor", "f. operacion", "f. valor", "operation date", "value date",
    ),
    "area": ("area", "área", "àrea", "zone", "zona"),
    "department": ("department", "departamento", "departament", "dept", "dpto", "depto"),
    "category": ("category", "categoria", "categoría", "cat", "clase"),
    "reference": (
        "reference", "referencia", "referència", "ref", "numero", "número", "nº", "num", "transaction id",
    ),
}

TYPE_ALIASES = {
    "income": MovementType.INCOME,
    "ingreso": MovementType.INCOME,
    "ingrés": MovementType.INCOME,
    "entrada": MovementType.INCOME,
    "expense": MovementType.EXPENSE,
    "gasto": MovementType.EXPENSE,
    "despesa": MovementType.EXPENSE,
    "salida": MovementType.EXPENSE,
    "egreso": MovementType.EXPENSE,
}

# day-first wins over month-first for ambiguous dates
DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%m/%d/%Y",
    "%d/%m/%y",
    "%d-%m-%y",
    "%d.%m.%y",
    "%m/%d/%y",
)

EXCEL_EPOCH = date(1899, 12, 30)
LARGE_AMOUNT = 100_000_000  # 1,000,000.00
_CURRENCY_CHARS = re.compile(r"[€$£¥₹\s()]")


@dataclass
class ImportRow:
    row_number: int
    description: str
    amount: int
    type: str
    transaction_date: date | None
    source_bank_account_id: str
    area_id: str | None = None
    department_id: str | None = None
    category: str | None = None
    reference: str | None = None
    needs_categorization: bool = True
    idempotency_key: str | None = None
    errors: list[FieldError] = field(default_factory=list)
    warnings: list[FieldError] = field(default_factory=list)

    @property
    def data(self) -> dict:
        return {
            "row_number": self.row_number,
            "description": self.description,
            "amount": self.amount,
            "type": self.type,
            "transaction_date": self.transaction_date,
            "source_bank_account_id": self.source_bank_account_id,
            "area_id": self.area_id,
            "department_id": self.department_id,
            "category": self.category,
            "reference": self.reference,
            "needs_categorization": self.needs_categorization,
            "idempotency_key": self.idempotency_key,
        }


@dataclass
class ValidationResult:
    rows: list[ImportRow]
    errors: list[FieldError] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def valid_rows(self) -> int:
        return sum(1 for r in self.rows if not r.errors)

    @property
    def error_count(self) -> int:
        return len(self.errors) + sum(len(r.errors) for r in self.rows)

    @property
    def warning_count(self) -> int:
        return sum(len(r.warnings) for r in self.rows)

    @property
    def valid(self) -> bool:
        return self.error_count == 0


@dataclass
class ExecuteResult:
    drafts: int = 0
    success: int = 0
    failed: int = 0
    needs_categorization: int = 0
    duplicates: int = 0
    errors: list[FieldError] = field(default_factory=list)


def idempotency_key(bank_account_id: str, digest: str, row_number: int) -> str:
    return f"import:{bank_account_id}:{digest}:{row_number}"


def file_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:16]


# ----------------------------
# File reading
# ----------------------------

def _cell(v: Any) -> Any:
    if v is None:
        return ""
    if isinstance(v, str):
        return v.strip()
    return v


def _detect_delimiter(header_line: str) -> str:
    counts = {d: header_line.count(d) for d in (",", ";", "\t")}
    best = max(counts, key=lambda d: counts[d])
    return best if counts[best] else ","


def _read_csv(data: bytes) -> list[tuple[int, dict]]:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    if not text.strip():
        return []

    delimiter = _detect_delimiter(text.splitlines()[0])
    reader = csv.DictReader(io.StringIO(text, newline=""), delimiter=delimiter)
    out = []
    for raw in reader:
        row = {k.strip(): _cell(v) for k, v in raw.items() if k is not None}
        if any(v != "" for v in row.values()):
            out.append((reader.line_num, row))
    return out


def _read_xlsx(data: bytes) -> list[tuple[int, dict]]:
    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ValueError(f"Could not open spreadsheet: {e}") from e

    try:
        if not wb.worksheets:
            raise ValueError("No sheets found in file")
        rows = wb.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        headers = [str(h).strip() if h is not None else "" for h in header]
        out = []
        for idx, values in enumerate(rows, start=2):
            row = {h: _cell(v) for h, v in zip(headers, values) if h}
            if any(v != "" for v in row.values()):
                out.append((idx, row))
        return out
    finally:
        wb.close()


def read_rows(data: bytes, file_name: str) -> list[tuple[int, dict]]:
    """(row number, {header: value}) for every non-blank data row."""
    name = (file_name or "").lower()
    if name.endswith((".xlsx", ".xlsm")):
        return _read_xlsx(data)
    if name.endswith((".csv", ".txt")):
        return _read_csv(data)
    raise ValueError(f"Unsupported file type: {file_name}")


def _find(row: dict, key: str) -> Any:
    lowered = {k.lower().strip(): v for k, v in row.items()}
    for alias in COLUMN_ALIASES[key]:
        if alias in lowered:
            return lowered[alias]
    return ""


# ----------------------------
# Value parsing
# ----------------------------

def parse_amount(value: Any) -> tuple[int, bool]:
    """Parse a bank amount into (minor units, was_negative).

    Accepts numbers, European ("1.234,56") and US ("1,234.56") separators,
    currency symbols and accounting parentheses. Raises ValueError for
    blanks, zero, non-numbers and fractions of a cent.
    """
    if value is None or value == "" or isinstance(value, bool):
        raise ValueError("Invalid or missing amount")

    if isinstance(value, (int, float, Decimal)):
        d = Decimal(str(value))
    else:
        raw = str(value).strip()
        negative = raw.startswith("-") or (raw.startswith("(") and raw.endswith(")"))
        cleaned = _CURRENCY_CHARS.sub("", raw).lstrip("+-")
        if "," in cleaned and "." in cleaned:
            if cleaned.rfind(",") > cleaned.rfind("."):
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        elif "," in cleaned:
            parts = cleaned.split(",")
            if len(parts) == 2 and len(parts[1]) <= 2:
                cleaned = cleaned.replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        try:
            d = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError("Invalid or missing amount") from None
        if negative:
            d = -d

    if not d.is_finite():
        raise ValueError("Invalid or missing amount")
    cents = abs(d) * 100
    if cents != cents.to_integral_value():
        raise ValueError("Amount cannot have fractions of a cent")
    if cents == 0:
        raise ValueError("Amount cannot be zero")
    return int(cents), d < 0


def parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # spreadsheet serial day number
        try:
            return EXCEL_EPOCH + timedelta(days=int(value))
        except OverflowError:
            return None
    if not isinstance(value, str) or not value.strip():
        return None

    raw = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        return None


def normalize_type(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return TYPE_ALIASES.get(value.strip().lower())


# ----------------------------
# Validation
# ----------------------------

@dataclass
class _Lookup:
    areas: dict[str, Area]
    fallback_area: Area | None

    def area(self, key: str) -> Area | None:
        return self.areas.get(key.strip().lower())


def _build_lookup(s: Session, user: User, bank_account_id: str, default_area_id: str | None) -> _Lookup:
    ids = permissions.accessible_area_ids(s, user)
    accessible = list(s.execute(select(Area).where(Area.id.in_(ids))).scalars().all()) if ids else []
    by_key: dict[str, Area] = {}
    for a in accessible:
        by_key.setdefault(a.code.lower(), a)
        by_key.setdefault(a.name.lower(), a)

    by_id = {a.id: a for a in accessible}
    fallback = None
    if default_area_id:
        fallback = by_id.get(default_area_id)
    else:
        assigned = [a for a in areas_for_account(s, bank_account_id) if a.id in by_id]
        if len(assigned) == 1:
            fallback = assigned[0]
    return _Lookup(areas=by_key, fallback_area=fallback)


def _resolve_department(s: Session, area_id: str, key: str) -> Department | None:
    k = key.strip().lower()
    for d in s.execute(
        select(Department).where(Department.area_id == area_id, Department.deleted_at.is_(None))
    ).scalars():
        if d.code.lower() == k or d.name.lower() == k:
            return d
    return None


def _validate_row(
    s: Session,
    lookup: _Lookup,
    row_number: int,
    raw: dict,
    bank_account_id: str,
    digest: str,
) -> ImportRow:
    errors: list[FieldError] = []
    warnings: list[FieldError] = []

    def err(column: str, message: str) -> None:
        errors.append(FieldError(column, message, row_number))

    def warn(column: str, message: str) -> None:
        warnings.append(FieldError(column, message, row_number))

    description = str(_find(raw, "description") or "").strip()
    if not description:
        err("description", "Description is required")
    elif len(description) > 500:
        err("description", "Description cannot exceed 500 characters")

    amount = 0
    mtype: str | None = None
    negative = False
    amount_error: str | None = None

    debit, credit = _find(raw, "debit"), _find(raw, "credit")
    if debit != "" or credit != "":
        for value, side in ((debit, MovementType.EXPENSE), (credit, MovementType.INCOME)):
            if value == "":
                continue
            try:
                amount, _ = parse_amount(value)
                mtype = side
                break
            except ValueError as e:
                amount_error = str(e)

    if mtype is None:
        single = _find(raw, "amount")
        if single != "" or amount_error is None:
            try:
                amount, negative = parse_amount(single)
                amount_error = None
            except ValueError as e:
                amount_error = str(e)

    if amount_error:
        err("amount", amount_error)
    elif amount > LARGE_AMOUNT:
        warn("amount", "Unusually large amount - please verify")

    if mtype is None:
        type_value = _find(raw, "type")
        mtype = normalize_type(type_value)
        if mtype is None:
            if negative:
                mtype = MovementType.EXPENSE
                warn("type", "Type auto-detected as EXPENSE from negative amount")
            elif type_value == "":
                mtype = MovementType.EXPENSE
                warn("type", "Type not specified - defaulting to EXPENSE")
            else:
                mtype = MovementType.EXPENSE
                err("type", "Invalid type (must be INCOME or EXPENSE)")

    tx_date = parse_date(_find(raw, "date"))
    if tx_date is None:
        err("date", "Invalid or missing date")
    elif tx_date > today_utc():
        warn("date", "Future date - please verify")

    area_key = str(_find(raw, "area") or "").strip()
    area = lookup.area(area_key) if area_key else lookup.fallback_area
    if area is None:
        if area_key:
            err("area", f"Area '{area_key}' not found or you don't have access")
        else:
            err("area", "Area is required")

    department = None
    dept_key = str(_find(raw, "department") or "").strip()
    if area is not None and dept_key:
        department = _resolve_department(s, area.id, dept_key)
        if department is None:
            warn("department", f"Department '{dept_key}' not found - will need categorization after import")
    elif not dept_key:
        warn("department", "Department not specified - will need categorization after import")

    if amount and tx_date and description:
        dup = s.execute(
            select(Movement.id)
            .where(
                Movement.description == description,
                Movement.amount == amount,
                Movement.transaction_date == tx_date,
                Movement.deleted_at.is_(None),
            )
            .limit(1)
        ).scalar_one_or_none()
        if dup:
            warn("row", "Potential duplicate found with same description, amount, and date")

    category = str(_find(raw, "category") or "").strip() or None
    reference = str(_find(raw, "reference") or "").strip() or None

    return ImportRow(
        row_number=row_number,
        description=description,
        amount=amount,
        type=mtype,
        transaction_date=tx_date,
        source_bank_account_id=bank_account_id,
        area_id=area.id if area else None,
        department_id=department.id if department else None,
        category=category[:100] if category else None,
        reference=reference[:128] if reference else None,
        needs_categorization=department is None,
        idempotency_key=idempotency_key(bank_account_id, digest, row_number),
        errors=errors,
        warnings=warnings,
    )


def validate_import(
    s: Session,
    user: User,
    file_bytes: bytes,
    file_name: str,
    source_bank_account_id: str,
    default_area_id: str | None = None,
    max_rows: int = 5000,
) -> ValidationResult:
    get_bank_account(s, source_bank_account_id)

    try:
        raw_rows = read_rows(file_bytes, file_name)
    except ValueError as e:
        return ValidationResult(rows=[], errors=[FieldError("file", str(e) or "Failed to parse file", 0)])

    if len(raw_rows) > max_rows:
        return ValidationResult(
            rows=[], errors=[FieldError("file", f"File has {len(raw_rows)} rows; the limit is {max_rows}", 0)]
        )

    lookup = _build_lookup(s, user, source_bank_account_id, default_area_id)
    digest = file_digest(file_bytes)
    rows = [_validate_row(s, lookup, n, raw, source_bank_account_id, digest) for n, raw in raw_rows]
    return ValidationResult(rows=rows)


# ----------------------------
# Execution
# ----------------------------

def _insert_stmt(s: Session):
    dialect = s.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(Movement)
    if dialect == "sqlite":
        return sqlite_insert(Movement)
    raise RuntimeError(f"unsupported database dialect: {dialect}")


def _insert_row(s: Session, user: User, r: ImportRow) -> bool:
    """Insert one draft. False when the idempotency key already exists."""
    if not r.idempotency_key:
        raise ValidationFailed(
            "Row has no idempotency key; validate the file again",
            [FieldError("idempotency_key", "required", r.row_number)],
        )
    if not r.area_id:
        raise ValidationFailed("Area is required", [FieldError("area", "required", r.row_number)])
    permissions.require(
        s,
        user,
        permissions.Action.IMPORT,
        permissions.AreaScoped(r.area_id),
        "You do not have permission to import into this area",
    )
    area = s.execute(select(Area).where(Area.id == r.area_id, Area.deleted_at.is_(None))).scalar_one_or_none()
    if not area:
        raise ValidationFailed("Area not found", [FieldError("area", "not found", r.row_number)])
    get_bank_account(s, r.source_bank_account_id)

    department_id = r.department_id
    if department_id and not department_in_area(s, department_id, r.area_id):
        raise ValidationFailed(
            "Department does not belong to the area", [FieldError("department", "wrong area", r.row_number)]
        )
    if r.amount <= 0 or not r.description or r.transaction_date is None or r.type not in MovementType.ALL:
        raise ValidationFailed("Row is incomplete", [FieldError("row", "incomplete", r.row_number)])

    exists = s.execute(
        select(Movement.id).where(Movement.idempotency_key == r.idempotency_key)
    ).scalar_one_or_none()
    if exists:
        return False

    stmt = _insert_stmt(s).values(
        type=r.type,
        status=MovementStatus.DRAFT,
        amount=r.amount,
        currency=area.currency,
        description=r.description,
        category=r.category,
        reference=r.reference,
        transaction_date=r.transaction_date,
        area_id=r.area_id,
        department_id=department_id,
        user_id=user.id,
        source_bank_account_id=r.source_bank_account_id,
        destination_bank_account_id=None,
        is_internal_transfer=internal_transfer(r.source_bank_account_id, None),
        is_split_parent=False,
        idempotency_key=r.idempotency_key,
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["idempotency_key"])
    new_id = s.execute(stmt.returning(Movement.id)).scalar_one_or_none()
    return new_id is not None


def execute_import(s: Session, user: User, rows: list[ImportRow], skip_invalid: bool = True) -> ExecuteResult:
    invalid = [r for r in rows if r.errors]
    if invalid and not skip_invalid:
        raise ValidationFailed(
            f"{len(invalid)} row(s) have errors; fix them or import with skip_invalid",
            [e for r in invalid for e in r.errors],
            code="import_has_errors",
        )

    result = ExecuteResult()
    for r in rows:
        if r.errors:
            result.failed += 1
            result.errors.extend(r.errors)
            continue

        try:
            with s.begin_nested():
                created = _insert_row(s, user, r)
        except PortalError as e:
            result.failed += 1
            result.errors.append(FieldError("row", e.message, r.row_number))
            continue
        except SQLAlchemyError as e:
            logger.warning("import row %s failed: %s", r.row_number, e)
            result.failed += 1
            result.errors.append(FieldError("row", "Failed to create movement", r.row_number))
            continue

        result.success += 1
        if created:
            result.drafts += 1
            if r.department_id is None:
                result.needs_categorization += 1
        else:
            result.duplicates += 1

    if rows:
        log_event(
            s,
            user.id,
            "import.execute",
            "bank_account",
            rows[0].source_bank_account_id,
            {
                "drafts": result.drafts,
                "failed": result.failed,
                "duplicates": result.duplicates,
            },
        )
    logger.info(
        "import by %s: %d drafts, %d duplicates, %d failed",
        user.id,
        result.drafts,
        result.duplicates,
        result.failed,
    )
    return result
