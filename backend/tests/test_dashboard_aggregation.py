from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ylportal.core.errors import ValidationFailed
from ylportal.db.base import Base
from ylportal.models.area import Area
from ylportal.models.bank_account import BankAccount
from ylportal.models.department import Department
from ylportal.models.movement import Movement, MovementStatus, MovementType
from ylportal.models.user import User
from ylportal.models.user_area import AreaRole, UserArea
from ylportal.services import approvals, dashboard, movements
from ylportal.services.splits import Allocation, split_movement
from ylportal.utils.timezone import add_months, month_key, month_start, today_utc


@pytest.fixture()
def engine():
    eng = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    s = Session()
    try:
        yield s
    finally:
        s.close()


def _mk_user(session, is_admin: bool = False) -> User:
    u = User(email=f"{uuid4().hex[:10]}@example.org", name="User", password_hash="x", is_admin=is_admin)
    session.add(u)
    session.flush()
    return u


def _mk_world(session):
    bank = BankAccount(name="Main", account_number=f"ES{uuid4().hex[:20].upper()}")
    other_bank = BankAccount(name="Savings", account_number=f"ES{uuid4().hex[:20].upper()}")
    a = Area(name="Alpha", code="ALP")
    b = Area(name="Beta", code="BET")
    c = Area(name="Gamma", code="GAM")
    session.add_all([bank, other_bank, a, b, c])
    session.flush()

    admin = _mk_user(session, is_admin=True)
    manager = _mk_user(session)
    viewer = _mk_user(session)
    owner = _mk_user(session)

    food = Department(area_id=a.id, name="Food", code="FOOD")
    fund = Department(area_id=a.id, name="Owner fund", code="OWN", user_id=owner.id)
    session.add_all([food, fund])
    session.add_all(
        [
            UserArea(user_id=manager.id, area_id=a.id, role=AreaRole.MANAGER),
            UserArea(user_id=manager.id, area_id=b.id, role=AreaRole.MANAGER),
            UserArea(user_id=viewer.id, area_id=a.id, role=AreaRole.VIEWER),
            UserArea(user_id=owner.id, area_id=a.id, role=AreaRole.VIEWER),
        ]
    )
    session.flush()
    return {
        "bank": bank,
        "other_bank": other_bank,
        "a": a,
        "b": b,
        "c": c,
        "food": food,
        "fund": fund,
        "admin": admin,
        "manager": manager,
        "viewer": viewer,
        "owner": owner,
    }


def _mk(
    session,
    w,
    area: Area,
    amount: int,
    type: str = MovementType.EXPENSE,
    status: str = MovementStatus.APPROVED,
    department: Department | None = None,
    category: str | None = None,
    tx_date: date | None = None,
    internal: bool = False,
    split_parent: bool = False,
    parent: Movement | None = None,
) -> Movement:
    m = Movement(
        type=type,
        status=status,
        amount=amount,
        description=f"{type.lower()} {amount}",
        category=category,
        transaction_date=tx_date or today_utc(),
        area_id=area.id,
        department_id=department.id if department else None,
        user_id=w["manager"].id,
        source_bank_account_id=w["bank"].id,
        destination_bank_account_id=w["bank"].id if internal else None,
        is_internal_transfer=internal,
        is_split_parent=split_parent,
        parent_id=parent.id if parent else None,
    )
    session.add(m)
    session.flush()
    return m


def _balance(rows: list[dict], area: Area) -> dict:
    return next(r for r in rows if r["area"]["id"] == area.id)


def test_overview_counts_only_settled_money(session):
    w = _mk_world(session)
    _mk(session, w, w["a"], 50000, type=MovementType.INCOME)
    _mk(session, w, w["a"], 12000)
    _mk(session, w, w["a"], 7000, internal=True)
    _mk(session, w, w["a"], 3000, status=MovementStatus.PENDING)
    _mk(session, w, w["a"], 1000, status=MovementStatus.DRAFT)
    _mk(session, w, w["a"], 9000, status=MovementStatus.REJECTED)
    gone = _mk(session, w, w["a"], 4000)
    gone.deleted_at = gone.created_at
    session.flush()

    stats = dashboard.get_overview_stats(session, w["manager"])

    assert stats["total_income"] == 50000
    assert stats["total_expenses"] == 12000
    assert stats["balance"] == 38000
    assert stats["pending_count"] == 1
    assert stats["draft_count"] == 1
    assert stats["areas_count"] == 2


def test_internal_transfer_flag_follows_bank_accounts(session):
    w = _mk_world(session)
    m = movements.create_movement(
        session,
        w["manager"],
        type=MovementType.TRANSFER,
        amount=5000,
        description="Move to savings",
        transaction_date=today_utc(),
        area_id=w["a"].id,
        source_bank_account_id=w["bank"].id,
        destination_bank_account_id=w["bank"].id,
    )
    assert m.is_internal_transfer

    movements.update_movement(
        session, w["manager"], m.id, {"destination_bank_account_id": w["other_bank"].id}
    )
    assert not m.is_internal_transfer


def test_split_parent_amount_is_not_counted_twice(session):
    w = _mk_world(session)
    parent = _mk(session, w, w["a"], 10000, split_parent=True)
    _mk(session, w, w["a"], 6000, parent=parent)
    _mk(session, w, w["b"], 4000, parent=parent)

    rows = dashboard.get_balances(session, w["admin"])

    assert _balance(rows, w["a"])["expenses"] == 6000
    assert _balance(rows, w["b"])["expenses"] == 4000
    assert dashboard.get_overview_stats(session, w["admin"])["total_expenses"] == 10000


def test_split_round_trip_lands_in_each_area(session):
    w = _mk_world(session)
    m = movements.create_movement(
        session,
        w["admin"],
        type=MovementType.EXPENSE,
        amount=10000,
        description="Shared coach hire",
        transaction_date=today_utc(),
        area_id=w["a"].id,
        source_bank_account_id=w["bank"].id,
    )
    res = split_movement(
        session,
        w["admin"],
        m.id,
        [Allocation(area_id=w["a"].id, amount=6000), Allocation(area_id=w["b"].id, amount=4000)],
    )
    for child in res.children:
        approvals.finalize(session, w["admin"], child.id, override=True)
        approvals.approve(session, w["admin"], child.id)

    rows = dashboard.get_balances(session, w["admin"])
    assert _balance(rows, w["a"])["expenses"] == 6000
    assert _balance(rows, w["b"])["expenses"] == 4000
    assert _balance(rows, w["a"])["balance"] == -6000


def test_pending_count_leaves_out_split_parents(session):
    w = _mk_world(session)
    kitchen = Department(area_id=w["b"].id, name="Kitchen", code="KIT")
    session.add(kitchen)
    session.flush()
    m = movements.create_movement(
        session,
        w["admin"],
        type=MovementType.EXPENSE,
        amount=10000,
        description="Shared groceries",
        transaction_date=today_utc(),
        area_id=w["a"].id,
        department_id=w["food"].id,
        source_bank_account_id=w["bank"].id,
    )
    assert dashboard.get_overview_stats(session, w["admin"])["pending_count"] == 1

    split_movement(
        session,
        w["admin"],
        m.id,
        [
            Allocation(area_id=w["a"].id, amount=7000, department_id=w["food"].id),
            Allocation(area_id=w["b"].id, amount=3000, department_id=kitchen.id),
        ],
    )

    assert dashboard.get_overview_stats(session, w["admin"])["pending_count"] == 2


def test_balances_include_areas_without_movements(session):
    w = _mk_world(session)
    _mk(session, w, w["a"], 2000, type=MovementType.INCOME)

    rows = dashboard.get_balances(session, w["admin"])

    assert [r["area"]["code"] for r in rows] == ["ALP", "BET", "GAM"]
    gamma = _balance(rows, w["c"])
    assert (gamma["income"], gamma["expenses"], gamma["balance"]) == (0, 0, 0)

    assert [r["area"]["code"] for r in dashboard.get_balances(session, w["viewer"])] == ["ALP"]


def test_other_users_fund_is_private(session):
    w = _mk_world(session)
    m = movements.create_movement(
        session,
        w["owner"],
        type=MovementType.INCOME,
        amount=8000,
        description="Personal contribution",
        transaction_date=today_utc(),
        area_id=w["a"].id,
        source_bank_account_id=w["bank"].id,
        department_id=w["fund"].id,
    )
    assert m.status == MovementStatus.APPROVED
    _mk(session, w, w["a"], 1000, type=MovementType.INCOME)

    assert dashboard.get_overview_stats(session, w["viewer"])["total_income"] == 1000
    assert dashboard.get_overview_stats(session, w["owner"])["total_income"] == 9000
    assert dashboard.get_overview_stats(session, w["admin"])["total_income"] == 9000

    funds = dashboard.get_personal_funds(session, w["owner"])
    assert funds["department"]["id"] == w["fund"].id
    assert funds["income"] == 8000
    assert funds["balance"] == 8000
    assert funds["movement_count"] == 1
    assert dashboard.get_personal_funds(session, w["viewer"]) is None


def test_window_start_bounds():
    assert dashboard.window_start(1, date(2024, 3, 15)) == date(2024, 3, 1)
    assert dashboard.window_start(12, date(2024, 3, 15)) == date(2023, 4, 1)
    for months in (0, 13):
        with pytest.raises(ValidationFailed):
            dashboard.window_start(months)


def test_income_vs_expense_fills_every_month(session):
    w = _mk_world(session)
    today = today_utc()
    _mk(session, w, w["a"], 3000, type=MovementType.INCOME, tx_date=today)
    _mk(session, w, w["a"], 1200, tx_date=today)
    _mk(session, w, w["a"], 9999, tx_date=add_months(month_start(today), -5))

    series = dashboard.get_income_vs_expense(session, w["manager"], months=3)

    assert len(series) == 3
    assert series[-1]["month"] == month_key(today)
    assert series[0]["month"] == month_key(add_months(month_start(today), -2))
    assert (series[-1]["income"], series[-1]["expenses"]) == (3000, 1200)
    assert all(p["income"] == 0 and p["expenses"] == 0 for p in series[:-1])


def test_expense_breakdown_groups_uncategorized(session):
    w = _mk_world(session)
    _mk(session, w, w["a"], 3000, category="Food")
    _mk(session, w, w["a"], 2000, category="Food")
    _mk(session, w, w["b"], 5000, category="Travel")
    _mk(session, w, w["a"], 1000)
    _mk(session, w, w["a"], 4000, type=MovementType.INCOME, category="Food")

    out = dashboard.get_expense_breakdown(session, w["manager"], months=6)

    assert out["total"] == 11000
    assert [(r["category"], r["amount"]) for r in out["breakdown"]] == [
        ("Food", 5000),
        ("Travel", 5000),
        ("Uncategorized", 1000),
    ]
    assert out["breakdown"][0]["percentage"] == 45.45
    assert out["breakdown"][2]["percentage"] == 9.09


def test_expenses_by_area_and_department(session):
    w = _mk_world(session)
    _mk(session, w, w["a"], 3000, department=w["food"])
    _mk(session, w, w["a"], 1000)
    _mk(session, w, w["b"], 4000)

    by_area = dashboard.get_expenses_by_area(session, w["manager"], months=1)
    assert by_area["total"] == 8000
    assert [(r["area_code"], r["amount"]) for r in by_area["breakdown"]] == [("ALP", 4000), ("BET", 4000)]
    assert by_area["breakdown"][0]["percentage"] == 50.0

    by_dept = dashboard.get_expenses_by_department(session, w["manager"], months=1)
    assert by_dept["total"] == 3000
    assert by_dept["breakdown"][0]["department_code"] == "FOOD"
    assert by_dept["breakdown"][0]["percentage"] == 100.0

    assert dashboard.get_expenses_by_department(session, w["viewer"], area_id=w["b"].id) == {
        "breakdown": [],
        "total": 0,
    }


def test_recent_movements_and_alerts(session):
    w = _mk_world(session)
    _mk(session, w, w["a"], 15000, status=MovementStatus.DRAFT)
    _mk(session, w, w["a"], 500, status=MovementStatus.DRAFT)
    _mk(session, w, w["b"], 700, status=MovementStatus.DRAFT)
    _mk(session, w, w["b"], 700, status=MovementStatus.CANCELLED)

    assert len(dashboard.get_recent_movements(session, w["manager"], limit=3)) == 3

    none = dashboard.get_organization_alerts(session, w["manager"])
    assert none["alerts"] == []
    assert none["draft_movements"] == 0

    out = dashboard.get_organization_alerts(session, w["admin"])
    assert out["draft_movements"] == 3
    assert out["high_value_drafts"] == 1
    assert out["recent_cancellations"] == 1
    assert [(a["area_code"], a["count"]) for a in out["alerts"]] == [("ALP", 2), ("BET", 1)]
