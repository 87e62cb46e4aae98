from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ylportal.core.errors import InvalidStateTransition, NotFound, ValidationFailed
from ylportal.db.base import Base
from ylportal.models.area import Area
from ylportal.models.department import Department
from ylportal.models.movement import Movement, MovementStatus, MovementType
from ylportal.models.movement_approval import ApprovalAction
from ylportal.models.user import User
from ylportal.models.user_area import AreaRole, UserArea
from ylportal.services import approvals, drafts, movements


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


def _mk_world(session):
    a = Area(name="Alpha", code="ALP")
    b = Area(name="Beta", code="BET")
    session.add_all([a, b])
    session.flush()
    dept_a = Department(area_id=a.id, name="Kitchen", code="KIT")
    dept_b = Department(area_id=b.id, name="Garden", code="GAR")
    user = User(email=f"{uuid4().hex[:8]}@example.org", name="Clerk", password_hash="x")
    session.add_all([dept_a, dept_b, user])
    session.flush()
    session.add_all(
        [
            UserArea(user_id=user.id, area_id=a.id, role=AreaRole.MANAGER),
            UserArea(user_id=user.id, area_id=b.id, role=AreaRole.VIEWER),
        ]
    )
    session.flush()
    return {"a": a, "b": b, "dept_a": dept_a, "dept_b": dept_b, "user": user}


def _draft(session, w, area: Area, department: Department | None = None, status: str = MovementStatus.DRAFT):
    m = Movement(
        type=MovementType.EXPENSE,
        status=status,
        amount=1200,
        description="Imported row",
        transaction_date=date(2024, 4, 10),
        area_id=area.id,
        department_id=department.id if department else None,
        user_id=w["user"].id,
    )
    session.add(m)
    session.flush()
    return m


def test_list_drafts_filters(session):
    w = _mk_world(session)
    d1 = _draft(session, w, w["a"])
    d2 = _draft(session, w, w["a"], w["dept_a"])
    d3 = _draft(session, w, w["b"])
    _draft(session, w, w["a"], status=MovementStatus.PENDING)

    assert {m.id for m in drafts.list_drafts(session, w["user"])} == {d1.id, d2.id, d3.id}
    assert {m.id for m in drafts.list_drafts(session, w["user"], area_id=w["a"].id)} == {d1.id, d2.id}
    assert {m.id for m in drafts.list_drafts(session, w["user"], needs_categorization=True)} == {d1.id, d3.id}
    assert {m.id for m in drafts.list_drafts(session, w["user"], needs_categorization=False)} == {d2.id}


def test_categorize_keeps_the_draft_status(session):
    w = _mk_world(session)
    d = _draft(session, w, w["a"])

    drafts.categorize_draft(session, w["user"], d.id, department_id=w["dept_a"].id, category=" Food ")

    assert d.status == MovementStatus.DRAFT
    assert d.department_id == w["dept_a"].id
    assert d.category == "Food"
    assert not d.needs_categorization

    history = approvals.get_approval_history(session, w["user"], d.id)
    assert [h["action"] for h in history] == [ApprovalAction.CATEGORIZED]


def test_categorize_into_another_area_drops_the_old_department(session):
    w = _mk_world(session)
    d = _draft(session, w, w["a"], w["dept_a"])

    drafts.categorize_draft(session, w["user"], d.id, area_id=w["b"].id)

    assert d.area_id == w["b"].id
    assert d.department_id is None


def test_categorize_rejects_department_from_another_area(session):
    w = _mk_world(session)
    d = _draft(session, w, w["a"])

    with pytest.raises(ValidationFailed):
        drafts.categorize_draft(session, w["user"], d.id, department_id=w["dept_b"].id)


def test_only_drafts_go_through_the_draft_endpoints(session):
    w = _mk_world(session)
    m = _draft(session, w, w["a"], w["dept_a"], status=MovementStatus.PENDING)

    with pytest.raises(InvalidStateTransition):
        drafts.categorize_draft(session, w["user"], m.id, category="x")
    with pytest.raises(InvalidStateTransition):
        drafts.delete_draft(session, w["user"], m.id)


def test_delete_draft(session):
    w = _mk_world(session)
    d = _draft(session, w, w["a"])

    drafts.delete_draft(session, w["user"], d.id)
    session.flush()

    with pytest.raises(NotFound):
        movements.get_movement(session, w["user"], d.id)


def test_draft_stats(session):
    w = _mk_world(session)
    _draft(session, w, w["a"])
    _draft(session, w, w["a"], w["dept_a"])
    _draft(session, w, w["b"])

    stats = drafts.draft_stats(session, w["user"])

    assert stats["total"] == 3
    assert stats["needs_categorization"] == 2
    assert stats["by_area"] == [
        {"area_id": w["a"].id, "area_name": "Alpha", "area_code": "ALP", "count": 2, "needs_categorization": 1},
        {"area_id": w["b"].id, "area_name": "Beta", "area_code": "BET", "count": 1, "needs_categorization": 1},
    ]
