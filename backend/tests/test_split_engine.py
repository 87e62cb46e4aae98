import logging
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from ylportal.core.errors import Conflict, Forbidden, InvalidStateTransition, ValidationFailed
from ylportal.db.base import Base
from ylportal.models.area import Area
from ylportal.models.bank_account import BankAccount
from ylportal.models.department import Department
from ylportal.models.movement import Movement, MovementStatus, MovementType
from ylportal.models.movement_approval import ApprovalAction, MovementApproval
from ylportal.models.user import User
from ylportal.models.user_area import AreaRole, UserArea
from ylportal.services import approvals, movements
from ylportal.services.movements import live_children
from ylportal.services.splits import Allocation, split_movement, unsplit_movement, update_split_movement


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
    session.add(bank)
    a = Area(name="Scouts", code="SCT")
    b = Area(name="Choir", code="CHR")
    session.add_all([a, b])
    session.flush()
    dept = Department(area_id=a.id, name="Transport", code="TRN")
    session.add(dept)

    admin = _mk_user(session, is_admin=True)
    manager = _mk_user(session)
    viewer = _mk_user(session)
    session.add_all(
        [
            UserArea(user_id=manager.id, area_id=a.id, role=AreaRole.MANAGER),
            UserArea(user_id=manager.id, area_id=b.id, role=AreaRole.MANAGER),
            UserArea(user_id=viewer.id, area_id=a.id, role=AreaRole.VIEWER),
        ]
    )
    session.flush()
    return {"bank": bank, "a": a, "b": b, "dept": dept, "admin": admin, "manager": manager, "viewer": viewer}


def _mk_movement(session, w, amount: int = 10000) -> Movement:
    return movements.create_movement(
        session,
        w["manager"],
        type=MovementType.EXPENSE,
        amount=amount,
        description="Camp bus",
        transaction_date=date(2024, 3, 1),
        area_id=w["a"].id,
        source_bank_account_id=w["bank"].id,
    )


def _history(session, movement_id: str, action: str) -> list[MovementApproval]:
    return list(
        session.execute(
            select(MovementApproval)
            .where(MovementApproval.movement_id == movement_id, MovementApproval.action == action)
            .order_by(MovementApproval.id)
        )
        .scalars()
        .all()
    )


def test_split_creates_children_that_add_up(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)

    res = split_movement(
        session,
        w["manager"],
        m.id,
        [
            Allocation(area_id=w["a"].id, amount=6000, department_id=w["dept"].id),
            Allocation(area_id=w["b"].id, amount=4000),
        ],
    )

    assert res.parent.is_split_parent
    assert len(res.children) == 2
    assert sum(c.amount for c in res.children) == m.amount
    assert all(c.parent_id == m.id for c in res.children)
    assert all(c.type == m.type and c.source_bank_account_id == m.source_bank_account_id for c in res.children)

    by_area = {c.area_id: c for c in res.children}
    assert by_area[w["a"].id].status == MovementStatus.PENDING
    assert by_area[w["b"].id].status == MovementStatus.DRAFT
    assert by_area[w["b"].id].description == "Split from: Camp bus"

    entries = _history(session, m.id, ApprovalAction.SPLIT)
    assert len(entries) == 1
    assert entries[0].meta["operation"] == "split"
    assert sorted(entries[0].meta["children"]) == sorted(c.id for c in res.children)


def test_allocations_must_add_up_exactly(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)

    with pytest.raises(ValidationFailed) as exc:
        split_movement(
            session,
            w["manager"],
            m.id,
            [Allocation(area_id=w["a"].id, amount=6000), Allocation(area_id=w["b"].id, amount=3000)],
        )

    assert exc.value.code == "invalid_allocations"
    assert exc.value.errors[0].field == "allocations"
    assert not m.is_split_parent
    assert live_children(session, m.id) == []


@pytest.mark.parametrize("count", [1, 21])
def test_allocation_count_is_bounded(session, count):
    w = _mk_world(session)
    m = _mk_movement(session, w, amount=count * 100)

    with pytest.raises(ValidationFailed) as exc:
        split_movement(session, w["manager"], m.id, [Allocation(area_id=w["a"].id, amount=100)] * count)
    assert exc.value.code == "invalid_allocations"


def test_allocation_fields_are_checked(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)

    with pytest.raises(ValidationFailed) as exc:
        split_movement(
            session,
            w["manager"],
            m.id,
            [
                Allocation(area_id=w["b"].id, amount=5000, department_id=w["dept"].id),
                Allocation(area_id=w["a"].id, amount=0),
            ],
        )

    fields = {e.field for e in exc.value.errors}
    assert "allocations[0].department_id" in fields
    assert "allocations[1].amount" in fields


def test_cannot_split_twice_or_split_a_child(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)
    res = split_movement(
        session,
        w["manager"],
        m.id,
        [Allocation(area_id=w["a"].id, amount=5000), Allocation(area_id=w["a"].id, amount=5000)],
    )

    with pytest.raises(Conflict) as exc:
        split_movement(
            session,
            w["manager"],
            m.id,
            [Allocation(area_id=w["a"].id, amount=5000), Allocation(area_id=w["a"].id, amount=5000)],
        )
    assert exc.value.code == "already_split"

    child = res.children[0]
    with pytest.raises(Conflict) as exc:
        split_movement(
            session,
            w["manager"],
            child.id,
            [Allocation(area_id=w["a"].id, amount=2500), Allocation(area_id=w["a"].id, amount=2500)],
        )
    assert exc.value.code == "nested_split"


def test_only_draft_or_pending_can_be_split(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)
    approvals.approve(session, w["manager"], m.id)

    with pytest.raises(InvalidStateTransition) as exc:
        split_movement(
            session,
            w["manager"],
            m.id,
            [Allocation(area_id=w["a"].id, amount=5000), Allocation(area_id=w["b"].id, amount=5000)],
        )
    assert exc.value.current_status == MovementStatus.APPROVED


def test_viewer_cannot_split(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)

    with pytest.raises(Forbidden):
        split_movement(
            session,
            w["viewer"],
            m.id,
            [Allocation(area_id=w["a"].id, amount=5000), Allocation(area_id=w["a"].id, amount=5000)],
        )
    assert live_children(session, m.id) == []


def test_split_into_an_area_without_access_is_forbidden(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)
    outsider = Area(name="Elsewhere", code="ELS")
    session.add(outsider)
    session.flush()

    with pytest.raises(Forbidden):
        split_movement(
            session,
            w["manager"],
            m.id,
            [Allocation(area_id=w["a"].id, amount=5000), Allocation(area_id=outsider.id, amount=5000)],
        )


def test_update_split_replaces_children(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)
    first = split_movement(
        session,
        w["manager"],
        m.id,
        [Allocation(area_id=w["a"].id, amount=6000), Allocation(area_id=w["b"].id, amount=4000)],
    )

    second = update_split_movement(
        session,
        w["manager"],
        m.id,
        [
            Allocation(area_id=w["a"].id, amount=2000),
            Allocation(area_id=w["a"].id, amount=3000),
            Allocation(area_id=w["b"].id, amount=5000),
        ],
    )

    assert all(c.deleted_at is not None for c in first.children)
    live = live_children(session, m.id)
    assert {c.id for c in live} == {c.id for c in second.children}
    assert sum(c.amount for c in live) == m.amount

    entries = _history(session, m.id, ApprovalAction.SPLIT)
    assert [e.meta["operation"] for e in entries] == ["split", "update"]


def test_update_split_requires_a_split_movement(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)

    with pytest.raises(Conflict) as exc:
        update_split_movement(
            session,
            w["manager"],
            m.id,
            [Allocation(area_id=w["a"].id, amount=5000), Allocation(area_id=w["a"].id, amount=5000)],
        )
    assert exc.value.code == "not_split"


def test_unsplit_retires_children_and_warns_about_approved_ones(session, caplog):
    w = _mk_world(session)
    m = _mk_movement(session, w)
    res = split_movement(
        session,
        w["manager"],
        m.id,
        [
            Allocation(area_id=w["a"].id, amount=7000, department_id=w["dept"].id),
            Allocation(area_id=w["b"].id, amount=3000),
        ],
    )
    approved_child = next(c for c in res.children if c.status == MovementStatus.PENDING)
    approvals.approve(session, w["manager"], approved_child.id)

    with caplog.at_level(logging.WARNING, logger="ylportal.services.splits"):
        parent = unsplit_movement(session, w["manager"], m.id)

    assert not parent.is_split_parent
    assert live_children(session, m.id) == []
    assert approved_child.id in caplog.text

    entry = _history(session, m.id, ApprovalAction.SPLIT)[-1]
    assert entry.meta["operation"] == "unsplit"
    assert entry.meta["approved_retired"] == [approved_child.id]


def test_split_parent_is_locked_for_lifecycle_amount_and_delete(session):
    w = _mk_world(session)
    m = _mk_movement(session, w)
    res = split_movement(
        session,
        w["manager"],
        m.id,
        [Allocation(area_id=w["a"].id, amount=5000), Allocation(area_id=w["a"].id, amount=5000)],
    )

    with pytest.raises(InvalidStateTransition) as exc:
        approvals.approve(session, w["manager"], m.id)
    assert exc.value.code == "split_parent"

    with pytest.raises(Conflict) as exc:
        movements.update_movement(session, w["manager"], res.children[0].id, {"amount": 1234})
    assert exc.value.code == "split_amount_locked"

    with pytest.raises(Conflict) as exc:
        movements.delete_movement(session, w["manager"], m.id)
    assert exc.value.code == "split_movement_locked"
