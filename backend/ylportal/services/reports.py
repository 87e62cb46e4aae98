from __future__ import annotations

import csv
import io
from datetime import date, datetime, time
from collections import defaultdict

import xlsxwriter
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from ylportal.core.errors import FieldError, Forbidden, ValidationFailed
from ylportal.models.area import Area
from ylportal.models.department import Department
from ylportal.models.movement import Movement, MovementType
from ylportal.models.user import User
from ylportal.services import permissions
from ylportal.services.dashboard import settled_filters
from ylportal.utils.timezone import add_months, month_key, month_start, today_utc

TEMPLATE_HEADERS = ["Date", "Description", "Amount", "Type", "Area", "Department", "Category", "Reference"]
TEMPLATE_EXAMPLES = [
    ["2024-03-01", "Office Supplies", "100.00", "EXPENSE", "", "", "Supplies", "INV-001"],
    ["01/03/2024", "Monthly donation", "250,50", "INCOME", "", "", "", ""],
]


def _money(cents: int) -> float:
    return cents / 100


def _formats(wb):
    base_font = "Calibri"
    f = {
        "meta_label": wb.add_format({"bold": True, "font_name": base_font, "font_size": 11, "font_color": "#334155"}),
        "meta_value": wb.add_format({"font_name": base_font, "font_size": 11, "font_color": "#0f172a"}),
        "subtle": wb.add_format({"font_name": base_font, "font_size": 10, "font_color": "#64748b"}),
        "title": wb.add_format({"bold": True, "font_name": base_font, "font_size": 14, "font_color": "#0f172a"}),
        "header": wb.add_format(
            {
                "bold": True,
                "font_name": base_font,
                "font_size": 11,
                "bg_color": "#F1F5F9",
                "border": 1,
                "align": "center",
                "valign": "vcenter",
            }
        ),
        "date": wb.add_format({"font_name": base_font, "font_size": 11, "num_format": "yyyy-mm-dd", "border": 1}),
        "money": wb.add_format(
            {"font_name": base_font, "font_size": 11, "num_format": "#,##0.00", "border": 1, "align": "right"}
        ),
        "text": wb.add_format({"font_name": base_font, "font_size": 11, "border": 1, "align": "left"}),
        "total_label": wb.add_format(
            {"bold": True, "font_name": base_font, "font_size": 11, "bg_color": "#F8FAFC", "border": 1}
        ),
        "total_money": wb.add_format(
            {
                "bold": True,
                "font_name": base_font,
                "font_size": 11,
                "bg_color": "#F8FAFC",
                "border": 1,
                "num_format": "#,##0.00",
                "align": "right",
            }
        ),
    }
    stripe = wb.add_format({"bg_color": "#FBFDFF"})
    stripe.set_border(1)
    stripe.set_font_name(base_font)
    stripe.set_font_size(11)
    f["stripe"] = stripe
    return f


def _settled_rows(s: Session, user: User, start: date, end: date) -> list:
    if end < start:
        raise ValidationFailed("end must not be before start", [FieldError("end", "before start")])

    return s.execute(
        select(Movement, Area.name, Area.code, Department.name, Department.code, User.name)
        .join(Area, Area.id == Movement.area_id)
        .outerjoin(Department, Department.id == Movement.department_id)
        .outerjoin(User, User.id == Movement.user_id)
        .where(
            *settled_filters(s, user),
            Movement.transaction_date >= start,
            Movement.transaction_date <= end,
        )
        .order_by(Movement.transaction_date.asc(), Movement.created_at.asc())
    ).all()


def _decimal(cents: int) -> str:
    return f"{cents // 100}.{cents % 100:02d}"


CSV_HEADERS = [
    "Date",
    "Type",
    "Status",
    "Amount",
    "Currency",
    "Description",
    "Category",
    "Reference",
    "Area",
    "Area Code",
    "Department",
    "Department Code",
    "Created By",
    "Created At",
]


def build_movements_csv(s: Session, user: User, start: date, end: date) -> tuple[bytes, int]:
    """Settled movements in [start, end] as UTF-8 CSV with a BOM. Returns the bytes and the row count."""
    rows = _settled_rows(s, user, start, end)

    buf = io.StringIO(newline="")
    w = csv.writer(buf)
    w.writerow(CSV_HEADERS)
    for m, area_name, area_code, dept_name, dept_code, author in rows:
        w.writerow(
            [
                m.transaction_date.isoformat(),
                m.type,
                m.status,
                _decimal(m.amount),
                m.currency,
                m.description,
                m.category or "",
                m.reference or "",
                area_name,
                area_code,
                dept_name or "",
                dept_code or "",
                author or "",
                m.created_at.isoformat(timespec="seconds") if m.created_at else "",
            ]
        )
    return buf.getvalue().encode("utf-8-sig"), len(rows)


def _report_window(months: int) -> date:
    if not 1 <= months <= 24:
        raise ValidationFailed("months must be between 1 and 24", [FieldError("months", "must be 1-24")])
    return add_months(month_start(today_utc()), -(months - 1))


def monthly_summary(s: Session, user: User, months: int = 12, area_id: str | None = None) -> list[dict]:
    """Income, expenses and net per calendar month; months without movements are left out."""
    start = _report_window(months)
    area_ids = None
    if area_id:
        permissions.require(s, user, permissions.Action.VIEW, permissions.AreaScoped(area_id))
        area_ids = [area_id]

    rows = s.execute(
        select(Movement.type, Movement.transaction_date, func.sum(Movement.amount))
        .where(
            *settled_filters(s, user, area_ids),
            Movement.type.in_((MovementType.INCOME, MovementType.EXPENSE)),
            Movement.transaction_date >= start,
        )
        .group_by(Movement.type, Movement.transaction_date)
    ).all()

    buckets: dict[str, dict] = {}
    for mtype, tx_date, amount in rows:
        key = month_key(tx_date)
        b = buckets.setdefault(key, {"month": key, "income": 0, "expenses": 0})
        b["income" if mtype == MovementType.INCOME else "expenses"] += int(amount or 0)

    out = [buckets[k] for k in sorted(buckets)]
    for b in out:
        b["net"] = b["income"] - b["expenses"]
    return out


def monthly_user_expenses(s: Session, user: User, months: int = 12, user_id: str | None = None) -> list[dict]:
    """Approved expenses per author and month. Administrators only."""
    if not user.is_admin:
        raise Forbidden("Only administrators can access this report")
    start = _report_window(months)

    q = (
        select(User.id, User.name, User.email, Movement.transaction_date, Movement.amount)
        .select_from(Movement)
        .join(User, User.id == Movement.user_id)
        .where(
            *settled_filters(s, user),
            Movement.type == MovementType.EXPENSE,
            Movement.transaction_date >= start,
        )
        .order_by(User.name.asc(), User.id.asc(), Movement.transaction_date.asc())
    )
    if user_id:
        q = q.where(Movement.user_id == user_id)

    reports: dict[str, dict] = {}
    for uid, name, email, tx_date, amount in s.execute(q).all():
        r = reports.setdefault(
            uid,
            {
                "user_id": uid,
                "user_name": name,
                "user_email": email,
                "monthly": {},
                "grand_total": 0,
                "transaction_count": 0,
            },
        )
        key = month_key(tx_date)
        month = r["monthly"].setdefault(key, {"month": key, "total_expenses": 0, "count": 0})
        month["total_expenses"] += amount
        month["count"] += 1
        r["grand_total"] += amount
        r["transaction_count"] += 1

    for r in reports.values():
        r["monthly"] = [r["monthly"][k] for k in sorted(r["monthly"])]
    return list(reports.values())


def build_movements_report(s: Session, user: User, start: date, end: date, out_file) -> int:
    """Write the settled movements in [start, end] to an xlsx workbook. Returns the row count."""
    rows = _settled_rows(s, user, start, end)

    wb = xlsxwriter.Workbook(out_file, {"in_memory": True})
    fmt = _formats(wb)

    # ----------------------------
    # Sheet 1: Movements
    # ----------------------------
    ws = wb.add_worksheet("Movements")
    ws.set_column(0, 0, 12)  # Date
    ws.set_column(1, 1, 40)  # Description
    ws.set_column(2, 2, 10)  # Type
    ws.set_column(3, 4, 22)  # Area / Department
    ws.set_column(5, 5, 18)  # Category
    ws.set_column(6, 7, 16)  # Income / Expense
    ws.set_column(8, 8, 8)  # Currency
    ws.set_column(9, 9, 16)  # Reference

    ws.write(0, 0, "Report", fmt["meta_label"])
    ws.write(0, 1, "Approved movements", fmt["meta_value"])
    ws.write(1, 0, "Range", fmt["meta_label"])
    ws.write(1, 1, f"{start} to {end}", fmt["subtle"])
    ws.write(2, 0, "Generated", fmt["meta_label"])
    ws.write(2, 1, datetime.now().strftime("%Y-%m-%d %H:%M"), fmt["subtle"])

    headers = ["Date", "Description", "Type", "Area", "Department", "Category", "Income", "Expense", "Currency", "Reference"]
    ws.set_row(3, 18)
    for c, h in enumerate(headers):
        ws.write(3, c, h, fmt["header"])
    ws.freeze_panes(4, 1)

    per_area: dict[str, dict] = defaultdict(lambda: {"income": 0, "expenses": 0})
    r = 4
    for m, area_name, area_code, dept_name, _, _ in rows:
        income = m.amount if m.type == MovementType.INCOME else 0
        expense = m.amount if m.type == MovementType.EXPENSE else 0
        bucket = per_area[f"{area_code} - {area_name}"]
        bucket["income"] += income
        bucket["expenses"] += expense

        ws.write_datetime(r, 0, datetime.combine(m.transaction_date, time.min), fmt["date"])
        ws.write(r, 1, m.description, fmt["text"])
        ws.write(r, 2, m.type, fmt["text"])
        ws.write(r, 3, area_name, fmt["text"])
        ws.write(r, 4, dept_name or "", fmt["text"])
        ws.write(r, 5, m.category or "", fmt["text"])
        ws.write_number(r, 6, _money(income), fmt["money"])
        ws.write_number(r, 7, _money(expense), fmt["money"])
        ws.write(r, 8, m.currency, fmt["text"])
        ws.write(r, 9, m.reference or "", fmt["text"])
        r += 1

    last_data_row = r - 1
    if last_data_row >= 4:
        ws.autofilter(3, 0, last_data_row, len(headers) - 1)
        ws.conditional_format(
            4, 0, last_data_row, len(headers) - 1,
            {"type": "formula", "criteria": "=MOD(ROW(),2)=0", "format": fmt["stripe"]},
        )

        total_row = last_data_row + 1
        last_excel = last_data_row + 1
        ws.write(total_row, 0, "Totals", fmt["total_label"])
        for c in (1, 2, 3, 4, 5, 8, 9):
            ws.write_blank(total_row, c, None, fmt["total_label"])
        ws.write_formula(total_row, 6, f"=SUM(G5:G{last_excel})", fmt["total_money"])
        ws.write_formula(total_row, 7, f"=SUM(H5:H{last_excel})", fmt["total_money"])

        ws.set_landscape()
        ws.fit_to_pages(1, 0)

    # ----------------------------
    # Sheet 2: Summary (per area)
    # ----------------------------
    summary = wb.add_worksheet("Summary")
    summary.set_column(0, 0, 32)
    summary.set_column(1, 3, 16)
    summary.write(0, 0, "Balance by Area", fmt["title"])
    summary.write(1, 0, f"{start} to {end}", fmt["subtle"])

    for c, h in enumerate(["Area", "Income", "Expenses", "Balance"]):
        summary.write(3, c, h, fmt["header"])

    sr = 4
    for label in sorted(per_area):
        b = per_area[label]
        summary.write(sr, 0, label, fmt["text"])
        summary.write_number(sr, 1, _money(b["income"]), fmt["money"])
        summary.write_number(sr, 2, _money(b["expenses"]), fmt["money"])
        summary.write_number(sr, 3, _money(b["income"] - b["expenses"]), fmt["money"])
        sr += 1

    if sr == 4:
        summary.write(4, 0, "No approved movements in the selected range.", fmt["subtle"])

    wb.close()
    return len(rows)


def build_import_template(out_file) -> None:
    wb = xlsxwriter.Workbook(out_file, {"in_memory": True})
    fmt = _formats(wb)

    ws = wb.add_worksheet("Movements")
    ws.set_column(0, 0, 12)
    ws.set_column(1, 1, 40)
    ws.set_column(2, 7, 16)
    for c, h in enumerate(TEMPLATE_HEADERS):
        ws.write(0, c, h, fmt["header"])
    for r, values in enumerate(TEMPLATE_EXAMPLES, start=1):
        for c, v in enumerate(values):
            ws.write_string(r, c, v)
    ws.freeze_panes(1, 0)

    notes = wb.add_worksheet("Instructions")
    notes.set_column(0, 0, 18)
    notes.set_column(1, 1, 80)
    notes.write(0, 0, "Import template", fmt["title"])
    lines = [
        ("Date", "dd/mm/yyyy, yyyy-mm-dd or dd.mm.yyyy"),
        ("Description", "Required, up to 500 characters"),
        ("Amount", "Positive number; 1.234,56 and 1,234.56 are both accepted. Negative means expense"),
        ("Type", "INCOME or EXPENSE (Spanish and Catalan names also work). Defaults to EXPENSE"),
        ("Area", "Area code or name. Optional when the bank account belongs to a single area"),
        ("Department", "Department code or name. Leave empty to categorize later"),
        ("Debe / Haber", "Separate debit and credit columns may replace Amount and Type"),
    ]
    for i, (k, v) in enumerate(lines, start=2):
        notes.write(i, 0, k, fmt["meta_label"])
        notes.write(i, 1, v, fmt["meta_value"])

    wb.close()
